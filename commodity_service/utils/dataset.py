import logging
import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pandas as pd
import torch
from torch.utils.data import Dataset

from .errors import InsufficientDataError

logger = logging.getLogger(__name__)

LABEL_MODES = ("value", "direction")


@dataclass(frozen=True)
class WindowSet:
    """
    Janelas em ordem cronológica

    windows: (n, sequence_length, n_features) float32
    targets: (n, n_targets) float32
    source_index: (n,) linha da tabela que originou cada target
    """
    windows: np.ndarray
    targets: np.ndarray
    source_index: np.ndarray

    def __len__(self):
        return len(self.windows)


@dataclass(frozen=True)
class WindowedDataset:
    """Janelas divididas em treino e teste por um único índice cronológico"""
    train: WindowSet
    test: WindowSet
    feature_columns: Tuple[str, ...]
    target_columns: Tuple[str, ...]
    sequence_length: int

    @property
    def window_count(self):
        return len(self.train) + len(self.test)

    @property
    def input_shape(self):
        return (self.sequence_length, len(self.feature_columns))


class SequenceDataset(Dataset):
    """Visão PyTorch de um WindowSet (sem cópia dos arrays)"""

    def __init__(self, window_set: WindowSet):
        self.X = window_set.windows
        self.y = window_set.targets

    def __len__(self):
        return len(self.X)

    def __getitem__(self, idx):
        return torch.from_numpy(self.X[idx]), torch.from_numpy(self.y[idx])


def _validate(sequence_length, train_fraction, horizon, label_mode):
    if sequence_length < 1:
        raise ValueError(f"sequence_length deve ser >= 1, recebido {sequence_length}")
    if not 0 < train_fraction < 1:
        raise ValueError(f"train_fraction deve estar em (0, 1), recebido {train_fraction}")
    if horizon < 0:
        raise ValueError(f"horizon deve ser >= 0, recebido {horizon}")
    if label_mode not in LABEL_MODES:
        raise ValueError(f"label_mode desconhecido: {label_mode}. Use {list(LABEL_MODES)}")


def train_visible_rows(row_count: int, sequence_length: int, train_fraction: float, horizon: int = 0) -> int:
    """
    Quantidade de linhas iniciais que o scaler pode ver sem enxergar targets de teste

    Considera que nenhuma janela será descartada (tabela já validada pelo loader).
    """
    _validate(sequence_length, train_fraction, horizon, "value")
    window_count = max(0, row_count - sequence_length - horizon)
    split = math.floor(window_count * train_fraction)
    return min(row_count, sequence_length + horizon + split)


def build_dataset(scaled: pd.DataFrame, sequence_length: int, train_fraction: float,
                  feature_columns, target_columns, horizon: int = 0,
                  label_mode: str = "value", reference: pd.DataFrame = None) -> WindowedDataset:
    """
    Cria janelas deslizantes e divide cronologicamente em treino e teste

    Args:
        scaled: Tabela normalizada (ordem cronológica)
        sequence_length: Tamanho de cada janela
        train_fraction: Fração inicial das janelas destinada ao treino
        feature_columns: Colunas de entrada
        target_columns: Colunas alvo
        horizon: 0 = target na linha seguinte à janela; 1 = um passo além
        label_mode: "value" (regressão) ou "direction" (1 se o retorno for positivo)
        reference: Tabela original para calcular a direção (opcional)

    Returns:
        WindowedDataset: Janelas de treino e teste
    """
    _validate(sequence_length, train_fraction, horizon, label_mode)
    feature_columns = tuple(feature_columns)
    target_columns = tuple(target_columns)

    row_count = len(scaled)
    if row_count <= sequence_length:
        raise InsufficientDataError(
            f"Dados insuficientes: {row_count} registros, "
            f"necessário mais que {sequence_length} para criar janelas"
        )

    last_target_window = row_count - 1 - horizon
    if last_target_window < sequence_length:
        raise InsufficientDataError(
            f"Dados insuficientes: {row_count} registros não comportam janela de "
            f"{sequence_length} com horizonte {horizon}"
        )

    features = scaled[list(feature_columns)].to_numpy(dtype=float)
    targets_source = scaled[list(target_columns)].to_numpy(dtype=float)
    if label_mode == "direction":
        direction_source = (reference if reference is not None else scaled)[list(target_columns)].to_numpy(dtype=float)

    windows, targets, source_index = [], [], []
    discarded = 0
    for i in range(sequence_length, last_target_window + 1):
        window = features[i - sequence_length:i]
        target_row = i + horizon

        if label_mode == "direction":
            current = direction_source[i - 1]
            following = direction_source[target_row]
            with np.errstate(divide="ignore", invalid="ignore"):
                change = (following - current) / current
            if not np.isfinite(change).all():
                discarded += 1
                continue
            target = (change > 0).astype(float)
        else:
            target = targets_source[target_row]

        if not (np.isfinite(window).all() and np.isfinite(target).all()):
            discarded += 1
            continue

        windows.append(window)
        targets.append(target)
        source_index.append(target_row)

    if discarded:
        logger.warning(f"{discarded} janelas descartadas por valores não finitos")

    if not windows:
        raise InsufficientDataError("Nenhuma janela válida após descartar valores não finitos")

    X = np.array(windows, dtype=np.float32)
    y = np.array(targets, dtype=np.float32)
    index = np.array(source_index, dtype=np.int64)
    del windows, targets, source_index

    split = math.floor(len(X) * train_fraction)

    dataset = WindowedDataset(
        train=WindowSet(X[:split], y[:split], index[:split]),
        test=WindowSet(X[split:], y[split:], index[split:]),
        feature_columns=feature_columns,
        target_columns=target_columns,
        sequence_length=sequence_length
    )

    logger.info(
        f"Dataset criado: {dataset.window_count} janelas de tamanho {sequence_length} "
        f"(treino={len(dataset.train)}, teste={len(dataset.test)})"
    )
    return dataset


def last_window(scaled: pd.DataFrame, sequence_length: int, feature_columns) -> np.ndarray:
    """
    Retorna a janela mais recente no formato (1, sequence_length, n_features)
    """
    if len(scaled) < sequence_length:
        raise InsufficientDataError(
            f"Dados insuficientes: {len(scaled)} registros, "
            f"necessário pelo menos {sequence_length} para criar sequência"
        )
    window = scaled[list(feature_columns)].to_numpy(dtype=np.float32)[-sequence_length:]
    return window.reshape(1, sequence_length, len(feature_columns))
