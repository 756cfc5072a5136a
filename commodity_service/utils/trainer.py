import logging
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from . import scaler
from .config import Config
from .controller import EarlyStopping, TrainingController, TrainingHistory, TrainingOptions, TrainingState
from .dataset import WindowedDataset, build_dataset, train_visible_rows
from .metrics import calculate_metrics
from .predictor import DIRECTION_THRESHOLD
from .scaler import ScalerState

logger = logging.getLogger(__name__)


@dataclass
class TrainingResult:
    name: str
    model: object
    scaler_state: ScalerState
    dataset: WindowedDataset
    history: TrainingHistory
    state: TrainingState
    stopped_early: bool
    metrics: dict = field(default_factory=dict)
    hyperparams: dict = field(default_factory=dict)


class ModelTrainer:
    """
    Orquestra o pipeline completo de treinamento:
    scaler -> janelas -> controller -> predição no teste -> métricas
    """

    def __init__(self):
        self.controller = None

    def cancel(self):
        """Cancela o treinamento em andamento (efetivo no próximo epoch)"""
        if self.controller is not None:
            self.controller.cancel()

    def train(self, model, name: str, hyperparams: dict, table: pd.DataFrame, observer=None) -> TrainingResult:
        """
        Executa pipeline completo de treinamento

        Args:
            model: Capacidade de modelo (ex: LightningSequenceModel)
            name: Nome do conjunto de dados / modelo
            hyperparams: Hiperparâmetros; ausentes usam Config.get_training_defaults()
            table: DataFrame validado pelo loader
            observer: Callable (epoch, train_loss, val_loss, history), opcional

        Returns:
            TrainingResult: Modelo treinado, scaler, histórico e métricas de teste
        """
        try:
            params = {**Config.get_training_defaults(), **(hyperparams or {})}
            feature_cols = list(params["FEATURE_COLS"])
            target_cols = list(params["TARGET_COLS"])
            sequence_length = int(params["SEQUENCE_LENGTH"])
            train_fraction = float(params["TRAIN_FRACTION"])
            horizon = int(params["HORIZON"])
            label_mode = params["LABEL_MODE"]

            # 1. Ajustar scaler somente nas linhas visíveis ao treino
            visible = train_visible_rows(len(table), sequence_length, train_fraction, horizon)
            scale_cols = list(dict.fromkeys(feature_cols + target_cols))
            logger.info(f"Ajustando scaler nas primeiras {visible} de {len(table)} linhas...")
            scaler_state = scaler.fit(table.iloc[:visible], scale_cols, params["SCALER"])
            scaled = scaler.transform(table, scaler_state)

            # 2. Criar janelas e split cronológico
            logger.info("Criando janelas de treino e teste...")
            dataset = build_dataset(
                scaled,
                sequence_length=sequence_length,
                train_fraction=train_fraction,
                feature_columns=feature_cols,
                target_columns=target_cols,
                horizon=horizon,
                label_mode=label_mode,
                reference=table
            )

            # 3. Treinar
            early_stopping = None
            if params["EARLY_STOPPING"]:
                early_stopping = EarlyStopping(
                    max_patience=int(params["ES_PATIENCE"]),
                    min_delta=float(params["ES_MIN_DELTA"])
                )
            options = TrainingOptions(
                hyperparameters=params,
                early_stopping=early_stopping,
                observer=observer,
                yield_every=int(params["YIELD_EVERY"]),
                log_every=Config.log_every_n_epochs()
            )

            logger.info(f"Iniciando treinamento para {name}...")
            self.controller = TrainingController(model)
            history = self.controller.train(
                dataset.train, dataset.test,
                max_epochs=int(params["EPOCHS"]),
                batch_size=int(params["BATCH_SIZE"]),
                options=options
            )

            if self.controller.state == TrainingState.CANCELLED:
                logger.warning(f"Treinamento de {name} cancelado após {len(history)} epochs")

            # 4. Avaliar no conjunto de teste
            metrics = {}
            if len(history):
                logger.info("Gerando predições e calculando métricas...")
                metrics = self._evaluate(model, dataset, scaler_state, label_mode)

            return TrainingResult(
                name=name,
                model=model,
                scaler_state=scaler_state,
                dataset=dataset,
                history=history,
                state=self.controller.state,
                stopped_early=self.controller.stopped_early,
                metrics=metrics,
                hyperparams=params
            )

        except Exception as e:
            logger.exception(f"Erro durante treinamento para {name}")
            raise

    def _evaluate(self, model, dataset: WindowedDataset, scaler_state: ScalerState, label_mode: str):
        """Métricas do teste em unidades originais (ou acurácia, para rótulos de direção)"""
        raw = model.predict(dataset.test.windows)
        targets = dataset.test.targets

        if label_mode == "direction":
            predicted = (raw > DIRECTION_THRESHOLD).astype(float)
            accuracy = float((predicted == targets).mean())
            logger.info(f"Acurácia de direção no teste: {accuracy*100:.2f}%")
            return {"test": {"accuracy": accuracy}}

        target_stats = scaler_state.select(dataset.target_columns)
        predictions = scaler.inverse_transform(raw, target_stats)
        y_real = scaler.inverse_transform(targets, target_stats)
        return {"test": calculate_metrics(np.asarray(y_real), np.asarray(predictions), "Teste")}
