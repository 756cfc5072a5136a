import io
import logging

import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F
import pytorch_lightning as pl
from torch.utils.data import DataLoader

from .config import Config
from .dataset import SequenceDataset, WindowSet
from .errors import InsufficientDataError, PreconditionViolation

logger = logging.getLogger(__name__)

CELLS = {
    "lstm": nn.LSTM,
    "gru": nn.GRU,
}


class SequenceRegressor(pl.LightningModule):
    """
    Regressor recorrente para séries de commodities
    Arquitetura: 2 camadas recorrentes (LSTM ou GRU) com dropout e cabeça densa
    """

    def __init__(self, config):
        """
        Args:
            config: Dicionário com hiperparâmetros
                   Deve ter: INPUT_SIZE, OUTPUT_SIZE, CELL, INIT_HIDDEN_SIZE,
                            SECOND_HIDDEN_SIZE, DROPOUT_VALUE, LEARNING_RATE,
                            WEIGHT_DECAY, RLR_FACTOR, RLR_PATIENCE
        """
        super().__init__()
        self.config = config

        cell_name = str(self.get_config("CELL", "lstm")).lower()
        if cell_name not in CELLS:
            raise ValueError(f"Célula recorrente desconhecida: {cell_name}. Use {list(CELLS)}")
        cell = CELLS[cell_name]

        init_hidden_size = self.get_config("INIT_HIDDEN_SIZE")
        second_hidden_size = self.get_config("SECOND_HIDDEN_SIZE")
        dropout_value = self.get_config("DROPOUT_VALUE")
        dense_size = self.get_config("DENSE_SIZE", 16)

        self.rnn1 = cell(
            input_size=self.get_config("INPUT_SIZE"),
            hidden_size=init_hidden_size,
            batch_first=True
        )
        self.rnn2 = cell(
            init_hidden_size,
            second_hidden_size,
            batch_first=True
        )
        self.dropout = nn.Dropout(p=dropout_value)
        self.fc = nn.Sequential(
            nn.Linear(second_hidden_size, dense_size),
            nn.ReLU(),
            nn.Dropout(dropout_value),
            nn.Linear(dense_size, self.get_config("OUTPUT_SIZE", 1))
        )

        self._optimization = None
        self.save_hyperparameters()

    def get_config(self, key, default=None):
        return self.config.get(key, default)

    def forward(self, x):
        """
        Args:
            x: Tensor (batch_size, sequence_length, num_features)

        Returns:
            Tensor (batch_size, num_targets)
        """
        x, _ = self.rnn1(x)
        x = self.dropout(x)
        x, _ = self.rnn2(x)

        # Última saída da sequência
        x = x[:, -1, :]
        x = self.dropout(x)
        return self.fc(x)

    def compute_loss(self, batch):
        inputs, targets = batch
        outputs = self(inputs)
        return F.mse_loss(outputs, targets)

    def training_step(self, batch, batch_idx):
        """Step de treinamento"""
        loss = self.compute_loss(batch)
        self.log("train_loss", loss, on_step=False, on_epoch=True, batch_size=len(batch[0]))
        return loss

    def validation_step(self, batch, batch_idx):
        """Step de validação"""
        loss = self.compute_loss(batch)
        self.log("val_loss", loss, on_step=False, on_epoch=True, batch_size=len(batch[0]))
        return loss

    def predict_step(self, batch, batch_idx):
        """Step de predição"""
        inputs, _ = batch
        return self(inputs)

    def configure_optimizers(self):
        """
        Otimizador e scheduler criados uma única vez

        Cada epoch roda em um pl.Trainer novo; reaproveitar os objetos mantém o
        estado do Adam e a contagem de paciência do ReduceLROnPlateau entre epochs.
        """
        if self._optimization is None:
            optimizer = torch.optim.Adam(
                self.parameters(),
                lr=self.get_config("LEARNING_RATE"),
                weight_decay=self.get_config("WEIGHT_DECAY")
            )

            scheduler = torch.optim.lr_scheduler.ReduceLROnPlateau(
                optimizer,
                mode='min',
                factor=self.get_config("RLR_FACTOR"),
                patience=self.get_config("RLR_PATIENCE")
            )

            self._optimization = {
                'optimizer': optimizer,
                'lr_scheduler': {
                    'scheduler': scheduler,
                    'monitor': 'val_loss'
                }
            }
        return self._optimization


class LightningSequenceModel:
    """
    Capacidade de modelo usada pelo TrainingController

    Cada chamada de train_one_epoch executa um pl.Trainer com max_epochs=1 para
    que o controller decida entre epochs se continua, cancela ou para cedo.
    """

    def __init__(self):
        self.module = None
        self.config = None
        self.input_shape = None

    @property
    def is_configured(self):
        return self.module is not None

    def configure(self, input_shape, hyperparameters: dict):
        """
        Cria a rede para o formato de entrada (sequence_length, n_features)

        Hiperparâmetros ausentes usam os padrões de Config.get_training_defaults()
        """
        sequence_length, n_features = (int(v) for v in input_shape)
        config = {**Config.get_training_defaults(), **(hyperparameters or {})}
        config["INPUT_SIZE"] = n_features
        config.setdefault("OUTPUT_SIZE", len(config.get("TARGET_COLS") or [None]))

        seed = config.get("SEED")
        if seed is not None:
            pl.seed_everything(int(seed))

        self._build(config, (sequence_length, n_features))
        logger.info(
            f"Modelo configurado: célula={config['CELL']}, entrada={self.input_shape}, "
            f"saídas={config['OUTPUT_SIZE']}"
        )

    def _build(self, config, input_shape):
        self.config = config
        self.input_shape = tuple(input_shape)
        self.module = SequenceRegressor(config)

    def _require_configured(self):
        if not self.is_configured:
            raise PreconditionViolation("Modelo não configurado: chame configure() ou deserialize() antes")

    def _trainer(self, **kwargs) -> pl.Trainer:
        return pl.Trainer(
            accelerator=Config.get_accelerator(),
            devices=1,
            logger=False,
            enable_checkpointing=False,
            enable_model_summary=False,
            enable_progress_bar=Config.enable_progress_bar(),
            **kwargs
        )

    def train_one_epoch(self, train_windows, train_targets, test_windows, test_targets, batch_size: int = 32):
        """
        Uma passada de treino (mini-batches embaralhados dentro do treino) e uma de validação

        Returns:
            dict: {"loss", "val_loss", "lr"}
        """
        self._require_configured()
        if len(train_windows) == 0 or len(test_windows) == 0:
            raise InsufficientDataError("Treino e validação precisam de pelo menos uma janela cada")

        train_loader = DataLoader(
            SequenceDataset(WindowSet(train_windows, train_targets, np.arange(len(train_windows)))),
            batch_size=batch_size,
            shuffle=True,
            num_workers=0  # Azure Functions não suporta multiprocessing
        )
        val_loader = DataLoader(
            SequenceDataset(WindowSet(test_windows, test_targets, np.arange(len(test_windows)))),
            batch_size=batch_size,
            shuffle=False,
            num_workers=0
        )

        trainer = self._trainer(
            max_epochs=1,
            num_sanity_val_steps=0,
            gradient_clip_val=self.config.get("GRADIENT_CLIP_VAL")
        )
        trainer.fit(self.module, train_dataloaders=train_loader, val_dataloaders=val_loader)

        metrics = trainer.callback_metrics
        return {
            "loss": float(metrics["train_loss"]),
            "val_loss": float(metrics["val_loss"]),
            "lr": self.module._optimization["optimizer"].param_groups[0]["lr"]
        }

    def predict(self, windows) -> np.ndarray:
        """
        Args:
            windows: Array (n, sequence_length, n_features)

        Returns:
            np.ndarray: Saídas brutas (normalizadas) com formato (n, n_targets)
        """
        self._require_configured()
        arr = np.asarray(windows, dtype=np.float32)
        if arr.ndim == 2:
            arr = arr[np.newaxis, ...]
        if tuple(arr.shape[1:]) != self.input_shape:
            raise ValueError(f"Formato de entrada {tuple(arr.shape[1:])} difere do modelo {self.input_shape}")

        # Alvos não são usados pelo predict_step
        placeholder = np.zeros((len(arr), self.config["OUTPUT_SIZE"]), dtype=np.float32)
        loader = DataLoader(
            SequenceDataset(WindowSet(arr, placeholder, np.arange(len(arr)))),
            batch_size=max(1, len(arr)),
            shuffle=False,
            num_workers=0
        )
        outputs = self._trainer().predict(self.module, dataloaders=loader)
        return torch.cat(outputs).cpu().numpy()

    def serialize(self) -> bytes:
        """Serializa configuração, formato de entrada e pesos para bytes"""
        self._require_configured()
        buffer = io.BytesIO()
        torch.save({
            "hyper_parameters": self.config,
            "input_shape": list(self.input_shape),
            "state_dict": self.module.state_dict()
        }, buffer)
        buffer.seek(0)
        return buffer.read()

    @classmethod
    def deserialize(cls, artifact: bytes) -> "LightningSequenceModel":
        """Reconstrói o modelo a partir dos bytes gerados por serialize()"""
        checkpoint = torch.load(io.BytesIO(artifact), map_location="cpu", weights_only=True)
        model = cls()
        model._build(dict(checkpoint["hyper_parameters"]), checkpoint["input_shape"])
        model.module.load_state_dict(checkpoint["state_dict"])
        model.module.eval()
        logger.info(f"Modelo carregado: entrada={model.input_shape}")
        return model
