"""
Loop de treinamento cooperativo, cancelável e com histórico por epoch.

Estados: IDLE -> PREPARING -> RUNNING -> {COMPLETED | CANCELLED | FAILED}.
O cancelamento só é observado na fronteira entre epochs; o epoch em
andamento sempre termina antes.
"""
import asyncio
import logging
import math
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from .errors import InsufficientDataError, NumericInstabilityError, PreconditionViolation

logger = logging.getLogger(__name__)


class TrainingState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


ACTIVE_STATES = (TrainingState.PREPARING, TrainingState.RUNNING)


@dataclass(frozen=True)
class EpochRecord:
    epoch: int
    train_loss: float
    val_loss: float
    metrics: dict = field(default_factory=dict)


class TrainingHistory:
    """Sequência append-only de EpochRecord (uma por execução)"""

    def __init__(self):
        self._records = []

    def append(self, record: EpochRecord):
        if self._records and record.epoch <= self._records[-1].epoch:
            raise PreconditionViolation(
                f"Epoch {record.epoch} fora de ordem (último: {self._records[-1].epoch})"
            )
        self._records.append(record)

    def __len__(self):
        return len(self._records)

    def __iter__(self):
        return iter(self._records)

    def __getitem__(self, idx):
        return self._records[idx]

    @property
    def train_loss(self):
        return [r.train_loss for r in self._records]

    @property
    def val_loss(self):
        return [r.val_loss for r in self._records]

    def best_epoch(self) -> Optional[EpochRecord]:
        if not self._records:
            return None
        return min(self._records, key=lambda r: r.val_loss)

    def to_dict(self):
        """Formato colunar (epoch, loss, val_loss) usado em CSV e no Cosmos"""
        return {
            "epoch": [r.epoch for r in self._records],
            "loss": self.train_loss,
            "val_loss": self.val_loss,
        }


@dataclass(frozen=True)
class EarlyStopping:
    max_patience: int = 5
    min_delta: float = 0.0


@dataclass
class TrainingOptions:
    """
    Args:
        hyperparameters: Repassados para model.configure()
        early_stopping: None desliga a parada antecipada
        observer: Callable (epoch, train_loss, val_loss, history). Exceções são registradas e ignoradas
        scheduler: Callable sem argumentos chamado a cada yield_every epochs
        yield_every: Cadência dos pontos de yield para o scheduler
        configure: False reaproveita um modelo já configurado (ex: carregado do storage)
        log_every: Cadência dos logs de progresso
    """
    hyperparameters: dict = field(default_factory=dict)
    early_stopping: Optional[EarlyStopping] = field(default_factory=EarlyStopping)
    observer: Optional[Callable] = None
    scheduler: Optional[Callable[[], None]] = None
    yield_every: int = 5
    configure: bool = True
    log_every: int = 1


@dataclass
class _TrainingRun:
    train_set: object
    test_set: object
    max_epochs: int
    batch_size: int
    options: TrainingOptions


class TrainingController:
    """Conduz o modelo epoch a epoch. Uma execução ativa por controller."""

    def __init__(self, model):
        self.model = model
        self.state = TrainingState.IDLE
        self.history = TrainingHistory()
        self.stopped_early = False
        self._cancel_requested = threading.Event()
        self._run = None

    def cancel(self):
        """Pede o cancelamento; atendido no início do próximo epoch"""
        if self.state in ACTIVE_STATES:
            logger.info("Cancelamento solicitado")
            self._cancel_requested.set()

    def train(self, train_set, test_set, max_epochs: int, batch_size: int = 32,
              options: TrainingOptions = None) -> TrainingHistory:
        """
        Executa o treinamento de forma síncrona

        Args:
            train_set: WindowSet de treino
            test_set: WindowSet de validação
            max_epochs: Número máximo de epochs
            batch_size: Tamanho do mini-batch
            options: TrainingOptions

        Returns:
            TrainingHistory: Histórico até o estado terminal
        """
        options = options or TrainingOptions()
        for epoch in self.run_epochs(train_set, test_set, max_epochs, batch_size, options):
            if options.scheduler is not None and (epoch + 1) % options.yield_every == 0:
                options.scheduler()
        return self.history

    async def train_async(self, train_set, test_set, max_epochs: int, batch_size: int = 32,
                          options: TrainingOptions = None) -> TrainingHistory:
        """Mesmo loop de train(), devolvendo o controle ao event loop nos pontos de yield"""
        options = options or TrainingOptions()
        for epoch in self.run_epochs(train_set, test_set, max_epochs, batch_size, options):
            if (epoch + 1) % options.yield_every == 0:
                await asyncio.sleep(0)
        return self.history

    def run_epochs(self, train_set, test_set, max_epochs: int, batch_size: int = 32,
                   options: TrainingOptions = None):
        """
        Gerador que produz o índice de cada epoch concluído

        A preparação acontece no primeiro next(); um gerador descartado sem ser
        iterado não ocupa o controller. Fechar o gerador antes do fim equivale a cancelar.
        """
        options = options or TrainingOptions()
        self._prepare(train_set, test_set, max_epochs, batch_size, options)
        yield from self._epoch_loop()

    def _prepare(self, train_set, test_set, max_epochs, batch_size, options):
        if self.state in ACTIVE_STATES:
            raise PreconditionViolation(f"Treinamento já em andamento (estado: {self.state.value})")

        self.state = TrainingState.PREPARING
        self.history = TrainingHistory()
        self.stopped_early = False
        self._cancel_requested.clear()

        try:
            if max_epochs < 0:
                raise ValueError(f"max_epochs deve ser >= 0, recebido {max_epochs}")
            if options.yield_every < 1:
                raise ValueError(f"yield_every deve ser >= 1, recebido {options.yield_every}")
            if len(train_set) == 0:
                raise InsufficientDataError("Conjunto de treino vazio")
            if len(test_set) == 0:
                raise InsufficientDataError("Conjunto de validação vazio")

            input_shape = tuple(train_set.windows.shape[1:])
            if tuple(test_set.windows.shape[1:]) != input_shape:
                raise ValueError(
                    f"Formato das janelas de validação {tuple(test_set.windows.shape[1:])} "
                    f"difere do treino {input_shape}"
                )

            if options.configure:
                self.model.configure(input_shape, options.hyperparameters)

        except Exception as e:
            self.state = TrainingState.FAILED
            logger.exception("Erro ao preparar treinamento")
            raise

        self._run = _TrainingRun(train_set, test_set, max_epochs, batch_size, options)
        self.state = TrainingState.RUNNING
        logger.info(
            f"Treinamento iniciado: {max_epochs} epochs, batch_size={batch_size}, "
            f"treino={len(train_set)}, validação={len(test_set)}"
        )

    def _epoch_loop(self):
        run = self._run
        early_stopping = run.options.early_stopping
        best_val_loss = math.inf
        patience = 0

        try:
            for epoch in range(run.max_epochs):
                if self._cancel_requested.is_set():
                    self.state = TrainingState.CANCELLED
                    logger.info(f"Treinamento cancelado após {len(self.history)} epochs")
                    return

                result = self.model.train_one_epoch(
                    run.train_set.windows, run.train_set.targets,
                    run.test_set.windows, run.test_set.targets,
                    batch_size=run.batch_size
                )
                train_loss = float(result["loss"])
                val_loss = float(result["val_loss"])

                if not (math.isfinite(train_loss) and math.isfinite(val_loss)):
                    raise NumericInstabilityError(
                        f"Loss não finito no epoch {epoch}: loss={train_loss}, val_loss={val_loss}",
                        epoch=epoch
                    )

                extra = {k: v for k, v in result.items() if k not in ("loss", "val_loss")}
                record = EpochRecord(epoch=epoch, train_loss=train_loss, val_loss=val_loss, metrics=extra)
                self.history.append(record)

                if (epoch + 1) % run.options.log_every == 0:
                    logger.info(f"Epoch {epoch + 1}/{run.max_epochs}: loss={train_loss:.6f}, val_loss={val_loss:.6f}")

                self._notify(run.options.observer, record)

                stop = False
                if early_stopping is not None:
                    if val_loss < best_val_loss - early_stopping.min_delta:
                        best_val_loss = val_loss
                        patience = 0
                    else:
                        patience += 1
                    stop = patience >= early_stopping.max_patience

                yield epoch

                if stop:
                    self.stopped_early = True
                    logger.info(
                        f"Early stopping no epoch {epoch + 1}: {patience} epochs sem melhora "
                        f"(melhor val_loss={best_val_loss:.6f})"
                    )
                    break

            self.state = TrainingState.COMPLETED
            logger.info(f"Treinamento concluído: {len(self.history)} epochs")

        except Exception as e:
            self.state = TrainingState.FAILED
            logger.exception(f"Erro durante treinamento no epoch {len(self.history)}")
            raise
        finally:
            # Gerador fechado antes do fim
            if self.state == TrainingState.RUNNING:
                self.state = TrainingState.CANCELLED
                logger.info(f"Treinamento interrompido após {len(self.history)} epochs")
            self._release()

    def _notify(self, observer, record: EpochRecord):
        if observer is None:
            return
        try:
            observer(record.epoch, record.train_loss, record.val_loss, self.history)
        except Exception as e:
            logger.warning(f"Observer falhou no epoch {record.epoch}: {e}", exc_info=True)

    def _release(self):
        self._run = None
        self._cancel_requested.clear()
