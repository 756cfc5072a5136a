import logging
import json
import azure.functions as func
from datetime import datetime
from zoneinfo import ZoneInfo

from .utils.config import Config
from .utils.errors import FormatError, InsufficientDataError, NotFound
from .utils.loader import parse_csv
from .utils.storage import get_model_store
from .utils.cosmos_client import get_cosmos_client, get_next_version, save_model_version, save_training_history
from .utils.trainer import ModelTrainer
from .utils.sequence_model import LightningSequenceModel
from .utils.predictor import predict_next

app = func.FunctionApp(http_auth_level=func.AuthLevel.FUNCTION)

TIMEZONE = ZoneInfo("America/Sao_Paulo")


def setup_logger(name: str):
    """Configura logger estruturado"""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    return logging.getLogger(name)


logger = logging.getLogger(__name__)


def json_response(payload: dict, status_code: int = 200) -> func.HttpResponse:
    return func.HttpResponse(
        body=json.dumps(payload, indent=2),
        status_code=status_code,
        mimetype="application/json"
    )


def error_status(error: Exception) -> int:
    """Mapeia exceções do pipeline para status HTTP"""
    if isinstance(error, FileNotFoundError):
        return 404
    if isinstance(error, (FormatError, InsufficientDataError, ValueError)):
        return 400
    return 500


def parse_body(body_bytes: bytes) -> dict:
    try:
        body = json.loads(body_bytes.decode()) if body_bytes else {}
    except json.JSONDecodeError as e:
        raise ValueError(f"Body JSON inválido: {e}")
    if not isinstance(body, dict):
        raise ValueError("Body deve ser um objeto JSON")

    name = body.get("name")
    if not name or not str(name).strip():
        raise ValueError("Parâmetro 'name' é obrigatório")
    body["name"] = str(name).strip()
    return body


def _load_table(store, body: dict, required_columns):
    """CSV do body ou, se ausente, history/{name}.csv do store"""
    raw_text = body.get("csv")
    if raw_text is None:
        raw_text = store.load_history_csv(body["name"])
    return parse_csv(raw_text, delimiter=Config.get_delimiter(), required_columns=required_columns)


def _required_columns(params: dict):
    return list(dict.fromkeys(list(params["FEATURE_COLS"]) + list(params["TARGET_COLS"])))


def _load_hyperparameters(store, name: str) -> dict:
    try:
        return store.load_hyperparameters(name)
    except FileNotFoundError:
        logger.info(f"Sem hiperparâmetros para {name}, usando padrões")
        return {}


def _mark_failed(container_model_versions, name: str, version: str, hyperparams: dict):
    try:
        save_model_version(
            container_model_versions,
            name=name,
            version=version,
            metrics={},
            hyperparams=hyperparams,
            paths={},
            status="failed"
        )
    except Exception as e:
        logger.warning(f"Não foi possível marcar {name}_{version} como failed: {e}")


def health_status() -> dict:
    return {
        "status": "healthy",
        "service": "commodity-service",
        "timestamp": datetime.now(TIMEZONE).isoformat()
    }


def run_training(body: dict, store=None) -> dict:
    """
    Treina e salva o modelo de body["name"]

    Returns:
        dict: Corpo da resposta
    """
    name = body["name"]
    timestamp_start = datetime.now(TIMEZONE).isoformat()
    store = store or get_model_store(Config.get_storage_config())

    hyperparams = {**_load_hyperparameters(store, name), **body.get("hyperparams", {})}
    table = _load_table(store, body, _required_columns({**Config.get_training_defaults(), **hyperparams}))

    cosmos_config = Config.get_cosmos_config()
    container_model_versions = container_training_history = None
    version = None
    if cosmos_config["conn_str"]:
        _, _, container_model_versions, container_training_history = get_cosmos_client(
            cosmos_config["conn_str"],
            cosmos_config["database"],
            cosmos_config["container_model_versions"],
            cosmos_config["container_training_history"]
        )
        version = get_next_version(container_model_versions, name)
        logger.info(f"Próxima versão do modelo: {version}")

    try:
        result = ModelTrainer().train(LightningSequenceModel(), name, hyperparams, table)
    except Exception:
        if version:
            _mark_failed(container_model_versions, name, version, hyperparams)
        raise

    metrics_payload = {
        **result.metrics,
        "state": result.state.value,
        "epochs": len(result.history),
        "stopped_early": result.stopped_early,
        "config": result.hyperparams
    }
    handle = store.save(result.model, name, scaler_state=result.scaler_state, metrics=metrics_payload)
    paths = {
        "model_path": handle.model_path,
        "scaler_path": handle.scaler_path,
        "metrics_path": handle.metrics_path
    }

    if version:
        save_model_version(
            container_model_versions,
            name=name,
            version=version,
            metrics=result.metrics,
            hyperparams=result.hyperparams,
            paths=paths,
            status=result.state.value
        )
        save_training_history(container_training_history, name, version, result.history, result.state.value)

    return {
        "success": True,
        "name": name,
        "version": version,
        "state": result.state.value,
        "epochs": len(result.history),
        "stopped_early": result.stopped_early,
        "metrics": result.metrics,
        **paths,
        "timestamp_start": timestamp_start,
        "timestamp_end": datetime.now(TIMEZONE).isoformat()
    }


def run_prediction(body: dict, store=None) -> dict:
    """Prediz o próximo valor de cada coluna alvo para body["name"]"""
    name = body["name"]
    store = store or get_model_store(Config.get_storage_config())

    artifact = store.load(name)
    if isinstance(artifact, NotFound):
        raise FileNotFoundError(f"Modelo não encontrado para {name}")
    if artifact.scaler_state is None:
        raise FileNotFoundError(f"Scaler não encontrado para {name}")

    config = artifact.model.config
    table = _load_table(store, body, _required_columns(config))
    prediction = predict_next(
        artifact.model,
        table,
        artifact.scaler_state,
        feature_columns=config["FEATURE_COLS"],
        target_columns=config["TARGET_COLS"],
        sequence_length=int(config["SEQUENCE_LENGTH"]),
        label_mode=config.get("LABEL_MODE", "value")
    )

    return {
        "success": True,
        "name": name,
        "label_mode": config.get("LABEL_MODE", "value"),
        "prediction": prediction,
        "prediction_timestamp": datetime.now(TIMEZONE).isoformat()
    }


def read_metrics(body: dict, store=None) -> dict:
    name = body["name"]
    store = store or get_model_store(Config.get_storage_config())
    return {
        "success": True,
        "name": name,
        "metrics": store.load_metrics(name)
    }


def _handle(req: func.HttpRequest, handler, endpoint: str) -> func.HttpResponse:
    logger = setup_logger(endpoint)
    logger.info(f"Iniciando execução do endpoint /{endpoint}")
    try:
        body = parse_body(req.get_body())
        response = handler(body)
        logger.info(f"Endpoint /{endpoint} concluído para {body['name']}")
        return json_response(response)

    except Exception as e:
        status_code = error_status(e)
        if status_code == 500:
            logger.exception(f"Erro inesperado no endpoint /{endpoint}")
        else:
            logger.error(f"Erro no endpoint /{endpoint}: {e}")
        return json_response({"success": False, "error": str(e)}, status_code)


@app.function_name(name="health_check")
@app.route(route="health", methods=["GET"])
def health_check(req: func.HttpRequest) -> func.HttpResponse:
    """Verifica se o serviço está funcionando"""
    return json_response(health_status())


@app.function_name(name="train")
@app.route(route="train", methods=["POST"])
def train(req: func.HttpRequest) -> func.HttpResponse:
    """Treina o modelo recorrente para o conjunto informado"""
    return _handle(req, run_training, "train")


@app.function_name(name="predict")
@app.route(route="predict", methods=["POST"])
def predict(req: func.HttpRequest) -> func.HttpResponse:
    """Retorna a predição do próximo passo"""
    return _handle(req, run_prediction, "predict")


@app.function_name(name="metrics")
@app.route(route="metrics", methods=["POST"])
def metrics(req: func.HttpRequest) -> func.HttpResponse:
    """Retorna métricas de um modelo treinado"""
    return _handle(req, read_metrics, "metrics")
