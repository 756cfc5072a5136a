from abc import ABC, abstractmethod
from azure.storage.blob import BlobServiceClient
from azure.core.exceptions import ResourceExistsError
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union
import logging
import json
import io
import joblib

from .errors import NotFound
from .scaler import ScalerState
from .sequence_model import LightningSequenceModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArtifactHandle:
    name: str
    model_path: str
    scaler_path: Optional[str] = None
    metrics_path: Optional[str] = None


@dataclass(frozen=True)
class LoadedArtifact:
    name: str
    model: object
    scaler_state: Optional[ScalerState] = None
    metrics: Optional[dict] = None


def model_path(name: str) -> str:
    return f"models/{name}.ckpt"


def scaler_path(name: str) -> str:
    return f"models/{name}_scaler.pkl"


def metrics_path(name: str) -> str:
    return f"models/{name}_metrics.pkl"


def _to_joblib_bytes(obj) -> bytes:
    buffer = io.BytesIO()
    joblib.dump(obj, buffer)
    buffer.seek(0)
    return buffer.read()


class ModelStore(ABC):
    """
    Armazenamento de artefatos por nome

    Subclasses implementam somente _read/_write/_exists sobre caminhos relativos.
    """

    @abstractmethod
    def _read(self, path: str) -> bytes:
        ...

    @abstractmethod
    def _write(self, path: str, data: bytes):
        ...

    @abstractmethod
    def _exists(self, path: str) -> bool:
        ...

    def save(self, model, name: str, scaler_state: ScalerState = None, metrics: dict = None) -> ArtifactHandle:
        """
        Salva modelo, scaler e métricas

        Args:
            model: Modelo com serialize()
            name: Nome do artefato (ex: "commodities")
            scaler_state: Estado do scaler usado no treinamento (opcional)
            metrics: Métricas e configuração do treinamento (opcional)

        Returns:
            ArtifactHandle: Caminhos dos arquivos salvos
        """
        try:
            paths = {"model_path": model_path(name)}
            self._write(paths["model_path"], model.serialize())
            logger.info(f"Modelo salvo: {paths['model_path']}")

            if scaler_state is not None:
                paths["scaler_path"] = scaler_path(name)
                self._write(paths["scaler_path"], _to_joblib_bytes(scaler_state))
                logger.info(f"Scaler salvo: {paths['scaler_path']}")

            if metrics is not None:
                paths["metrics_path"] = metrics_path(name)
                self._write(paths["metrics_path"], _to_joblib_bytes(metrics))
                logger.info(f"Métricas salvas: {paths['metrics_path']}")

            return ArtifactHandle(name=name, **paths)

        except Exception as e:
            logger.exception(f"Erro ao salvar modelo {name}")
            raise

    def load(self, name: str, model_cls=LightningSequenceModel) -> Union[LoadedArtifact, NotFound]:
        """
        Carrega modelo, scaler e métricas salvos sob o nome

        Returns:
            LoadedArtifact, ou NotFound se não houver modelo salvo com esse nome
        """
        try:
            if not self._exists(model_path(name)):
                logger.info(f"Modelo não encontrado: {model_path(name)}")
                return NotFound(name)

            model = model_cls.deserialize(self._read(model_path(name)))

            scaler_state = None
            if self._exists(scaler_path(name)):
                scaler_state = joblib.load(io.BytesIO(self._read(scaler_path(name))))

            metrics = None
            if self._exists(metrics_path(name)):
                metrics = joblib.load(io.BytesIO(self._read(metrics_path(name))))

            logger.info(f"Modelo carregado: {model_path(name)}")
            return LoadedArtifact(name=name, model=model, scaler_state=scaler_state, metrics=metrics)

        except Exception as e:
            logger.exception(f"Erro ao carregar modelo {name}")
            raise

    def load_metrics(self, name: str) -> dict:
        """Carrega somente as métricas (sem desserializar o modelo)"""
        path = metrics_path(name)
        if not self._exists(path):
            raise FileNotFoundError(f"Métricas não encontradas: {path}")
        metrics = joblib.load(io.BytesIO(self._read(path)))
        logger.info(f"Métricas carregadas: {path}")
        return metrics

    def load_hyperparameters(self, name: str) -> dict:
        """
        Carrega hiperparâmetros de hyperparameters/{name}.json

        Raises:
            FileNotFoundError: Arquivo inexistente
        """
        path = f"hyperparameters/{name}.json"
        if not self._exists(path):
            raise FileNotFoundError(f"Hiperparâmetros não encontrados para {name}")
        hyperparams = json.loads(self._read(path).decode('utf-8'))
        logger.info(f"Hiperparâmetros carregados: {path}")
        return hyperparams

    def save_hyperparameters(self, name: str, hyperparams: dict) -> str:
        path = f"hyperparameters/{name}.json"
        self._write(path, json.dumps(hyperparams, indent=2).encode('utf-8'))
        logger.info(f"Hiperparâmetros salvos: {path}")
        return path

    def load_history_csv(self, name: str) -> str:
        """
        Carrega o CSV bruto de history/{name}.csv

        Raises:
            FileNotFoundError: Arquivo inexistente
        """
        path = f"history/{name}.csv"
        if not self._exists(path):
            raise FileNotFoundError(f"Dados históricos não encontrados: {path}")
        raw_text = self._read(path).decode('utf-8')
        logger.info(f"Dados históricos carregados: {path}")
        return raw_text

    def save_history_csv(self, name: str, raw_text: str) -> str:
        path = f"history/{name}.csv"
        self._write(path, raw_text.encode('utf-8'))
        logger.info(f"Dados históricos salvos: {path}")
        return path


class LocalModelStore(ModelStore):
    """Artefatos em um diretório local"""

    def __init__(self, root_dir):
        self.root_dir = Path(root_dir)

    def _full_path(self, path: str) -> Path:
        return self.root_dir / path

    def _read(self, path: str) -> bytes:
        return self._full_path(path).read_bytes()

    def _write(self, path: str, data: bytes):
        full_path = self._full_path(path)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_bytes(data)

    def _exists(self, path: str) -> bool:
        return self._full_path(path).is_file()


class BlobModelStore(ModelStore):
    """Artefatos em um container do Azure Blob Storage"""

    def __init__(self, container_client):
        self.container_client = container_client

    def _read(self, path: str) -> bytes:
        return self.container_client.get_blob_client(path).download_blob().readall()

    def _write(self, path: str, data: bytes):
        self.container_client.get_blob_client(path).upload_blob(data, overwrite=True)

    def _exists(self, path: str) -> bool:
        return self.container_client.get_blob_client(path).exists()


def get_storage_client(conn_str: str, container_name: str):
    """Retorna container client configurado"""
    try:
        blob_service = BlobServiceClient.from_connection_string(conn_str)
        container_client = blob_service.get_container_client(container_name)

        try:
            container_client.create_container()
            logger.info(f"Container {container_name} criado")
        except ResourceExistsError:
            logger.info(f"Container {container_name} já existe")

        return container_client
    except Exception as e:
        logger.exception("Falha ao conectar no Azure Blob Storage")
        raise


def get_model_store(storage_config: dict) -> ModelStore:
    """Blob Storage quando há connection string; caso contrário, diretório local"""
    if storage_config.get("conn_str"):
        return BlobModelStore(get_storage_client(storage_config["conn_str"], storage_config["container"]))
    logger.info(f"AzureWebJobsStorage não definido, usando diretório local: {storage_config['local_dir']}")
    return LocalModelStore(storage_config["local_dir"])
