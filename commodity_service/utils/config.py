import os

class Config:
    """Configurações centralizadas"""

    @staticmethod
    def get_storage_config():
        return {
            "conn_str": os.getenv("AzureWebJobsStorage"),
            "container": os.getenv("BLOB_CONTAINER", "commodityservicestorage"),
            "local_dir": os.getenv("LOCAL_STORE_DIR", "artifacts")
        }

    @staticmethod
    def get_cosmos_config():
        return {
            "conn_str": os.getenv("COSMOS_DB_CONNECTION_STRING"),
            "database": os.getenv("COSMOS_DB_DATABASE", "commodityservice"),
            "container_model_versions": os.getenv("COSMOS_DB_CONTAINER_MODEL_VERSIONS", "model_versions"),
            "container_training_history": os.getenv("COSMOS_DB_CONTAINER_TRAINING_HISTORY", "training_history")
        }

    @staticmethod
    def get_training_defaults():
        """
        Hiperparâmetros padrão do pipeline

        Valores por nome (hyperparameters/{name}.json) sobrescrevem estes.
        """
        return {
            "FEATURE_COLS": ["WTI", "GOLD", "US DOLLAR INDEX"],
            "TARGET_COLS": ["WTI"],
            "SEQUENCE_LENGTH": 30,
            "TRAIN_FRACTION": 0.8,
            "HORIZON": 0,
            "LABEL_MODE": "value",
            "SCALER": "minmax",
            "EPOCHS": 40,
            "BATCH_SIZE": 32,
            "EARLY_STOPPING": True,
            "ES_PATIENCE": 5,
            "ES_MIN_DELTA": 0.0,
            "YIELD_EVERY": 5,
            "CELL": "lstm",
            "INIT_HIDDEN_SIZE": 64,
            "SECOND_HIDDEN_SIZE": 32,
            "DROPOUT_VALUE": 0.2,
            "LEARNING_RATE": 0.0005,
            "WEIGHT_DECAY": 0.0001,
            "GRADIENT_CLIP_VAL": 1.0,
            "RLR_FACTOR": 0.5,
            "RLR_PATIENCE": 3,
            "SEED": 42
        }

    @staticmethod
    def get_delimiter():
        """Delimitador do CSV (';' ou ','). None = detectar pelo cabeçalho"""
        delimiter = os.getenv("CSV_DELIMITER", "").strip()
        if delimiter in (";", ","):
            return delimiter
        return None

    @staticmethod
    def log_every_n_epochs():
        value = os.getenv("LOG_EVERY_N_EPOCHS", "1")
        try:
            return max(1, int(value))
        except ValueError:
            # Se não conseguir converter, retorna valor padrão
            return 1

    @staticmethod
    def enable_progress_bar():
        """
        Progress bar do Lightning. Desabilitado por padrão em produção (Azure Functions)
        """
        env_value = os.getenv("ENABLE_PROGRESS_BAR", "").lower()
        if env_value in ("true", "1", "yes"):
            return True
        if env_value in ("false", "0", "no"):
            return False

        # Azure Functions define WEBSITE_INSTANCE_ID
        return os.getenv("WEBSITE_INSTANCE_ID") is None

    @staticmethod
    def get_accelerator():
        """Acelerador do pl.Trainer ('auto' detecta GPU/MPS/CPU)"""
        return os.getenv("TRAINER_ACCELERATOR", "auto")
