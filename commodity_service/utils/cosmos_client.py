from azure.cosmos import CosmosClient, PartitionKey
import logging
from datetime import datetime
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

TIMEZONE = ZoneInfo("America/Sao_Paulo")


def get_cosmos_client(conn_str: str, database_name: str,
                      model_versions_name: str = "model_versions",
                      training_history_name: str = "training_history"):
    """
    Retorna Cosmos DB client e garante que database e containers existem

    Returns:
        tuple: (CosmosClient, Database, Container model_versions, Container training_history)
    """
    try:
        client = CosmosClient.from_connection_string(conn_str)

        database = client.create_database_if_not_exists(id=database_name)
        logger.info(f"Database {database_name} verificado/criado")

        containers = []
        for container_name in (model_versions_name, training_history_name):
            containers.append(database.create_container_if_not_exists(
                id=container_name,
                partition_key=PartitionKey(path="/name"),
                offer_throughput=400
            ))
            logger.info(f"Container {container_name} verificado/criado")

        return client, database, containers[0], containers[1]

    except Exception as e:
        logger.exception("Falha ao conectar no Cosmos DB")
        raise


def _query_versions(container_model_versions, name: str, completed_only: bool = False):
    query = "SELECT * FROM c WHERE c.name = @name"
    if completed_only:
        query += " AND c.status = 'completed'"
    query += " ORDER BY c.version_number DESC"

    return list(container_model_versions.query_items(
        query=query,
        parameters=[{"name": "@name", "value": name}],
        partition_key=name
    ))


def get_next_version(container_model_versions, name: str) -> str:
    """
    Consulta última versão do modelo e retorna a próxima (ex: "v1", "v2")
    """
    try:
        items = _query_versions(container_model_versions, name)
        if not items:
            return "v1"
        return f"v{int(items[0].get('version_number', 0)) + 1}"

    except Exception as e:
        logger.exception(f"Erro ao obter próxima versão para {name}")
        logger.warning(f"Retornando v1 como fallback para {name}")
        return "v1"


def get_latest_version(container_model_versions, name: str):
    """
    Returns:
        str: Versão concluída mais recente (ex: "v3") ou None
    """
    try:
        items = _query_versions(container_model_versions, name, completed_only=True)
        if not items:
            return None

        latest_version = items[0].get("version")
        logger.info(f"Versão mais recente encontrada para {name}: {latest_version}")
        return latest_version

    except Exception as e:
        logger.exception(f"Erro ao obter versão mais recente para {name}")
        return None


def save_model_version(container_model_versions, name: str, version: str, metrics: dict,
                       hyperparams: dict, paths: dict, status: str = "completed"):
    """
    Salva registro de versão do modelo no Cosmos DB

    Args:
        container_model_versions: Container do Cosmos DB
        name: Nome do modelo
        version: Versão do modelo (ex: "v1")
        metrics: Métricas do conjunto de teste
        hyperparams: Hiperparâmetros usados
        paths: Caminhos dos artefatos no Storage
        status: "completed", "cancelled" ou "failed"
    """
    try:
        document = {
            "id": f"{name}_{version}",
            "name": name,
            "version": version,
            "version_number": int(version.lstrip("v")),
            "timestamp": datetime.now(TIMEZONE).isoformat(),
            "status": status,
            "metrics": metrics,
            "hyperparams": hyperparams,
            **paths
        }

        container_model_versions.upsert_item(document)
        logger.info(f"Versão do modelo salva no Cosmos DB: {name}_{version}")

    except Exception as e:
        logger.exception(f"Erro ao salvar versão do modelo no Cosmos DB: {name}_{version}")
        raise


def save_training_history(container_training_history, name: str, version: str, history, state: str):
    """
    Salva curvas de loss por epoch (opcional; falhas são apenas registradas)

    Args:
        history: TrainingHistory da execução
        state: Estado terminal do controller
    """
    try:
        timestamp = datetime.now(TIMEZONE).isoformat()
        curves = history.to_dict()

        document = {
            "id": f"{name}_{version}_{timestamp}",
            "name": name,
            "version": version,
            "timestamp": timestamp,
            "state": state,
            "epochs": curves["epoch"],
            "train_loss": curves["loss"],
            "val_loss": curves["val_loss"],
            "learning_rates": [r.metrics.get("lr") for r in history]
        }

        container_training_history.upsert_item(document)
        logger.info(f"Histórico de treinamento salvo no Cosmos DB: {name}_{version}")

    except Exception as e:
        logger.exception(f"Erro ao salvar histórico de treinamento no Cosmos DB: {name}_{version}")
        logger.warning("Continuando sem salvar histórico detalhado")
