"""
Normalização por coluna com transformações inversíveis.

As estatísticas são calculadas uma única vez, somente sobre as linhas
visíveis ao treino, e reutilizadas sem alteração em qualquer transform ou
inverse posterior. Reajustar o scaler no meio do pipeline (ex: depois de já
ter transformado os dados de teste) é responsabilidade do chamador evitar;
não há verificação em tempo de execução.
"""
import logging
from dataclasses import dataclass
from typing import Tuple, Union

import numpy as np
import pandas as pd

from .errors import FormatError, InsufficientDataError, NumericInstabilityError

logger = logging.getLogger(__name__)

EPSILON = 1e-8
CLIP_LIMIT = 10.0


@dataclass(frozen=True)
class MinMaxStats:
    column: str
    min: float
    max: float

    @property
    def range(self) -> float:
        # Coluna constante: divisor 1 mantém a transformação finita
        span = self.max - self.min
        return span if span != 0 else 1.0

    def scale(self, values):
        return (np.asarray(values, dtype=float) - self.min) / self.range

    def unscale(self, values):
        return np.asarray(values, dtype=float) * self.range + self.min


@dataclass(frozen=True)
class RobustStats:
    column: str
    median: float
    iqr: float
    std: float
    epsilon: float = EPSILON
    clip: float = CLIP_LIMIT

    @property
    def range(self) -> float:
        spread = self.iqr if self.iqr > 0 else self.std
        return spread + self.epsilon

    def scale(self, values):
        scaled = (np.asarray(values, dtype=float) - self.median) / self.range
        return np.clip(scaled, -self.clip, self.clip)

    def unscale(self, values):
        return np.asarray(values, dtype=float) * self.range + self.median


ColumnStats = Union[MinMaxStats, RobustStats]


@dataclass(frozen=True)
class ScalerState:
    """Estatísticas imutáveis de todas as colunas ajustadas, na ordem do ajuste"""
    strategy: str
    stats: Tuple[ColumnStats, ...]

    @property
    def columns(self):
        return [s.column for s in self.stats]

    def __getitem__(self, column: str) -> ColumnStats:
        for s in self.stats:
            if s.column == column:
                return s
        raise KeyError(column)

    def select(self, columns):
        """Retorna as estatísticas das colunas pedidas, na ordem pedida"""
        return [self[col] for col in columns]


def _fit_minmax(column, values):
    return MinMaxStats(column=column, min=float(values.min()), max=float(values.max()))


def _fit_robust(column, values):
    q75, q25 = np.percentile(values, [75, 25])
    return RobustStats(
        column=column,
        median=float(np.median(values)),
        iqr=float(q75 - q25),
        std=float(np.std(values))
    )


STRATEGIES = {
    "minmax": _fit_minmax,
    "robust": _fit_robust,
}


def fit(table: pd.DataFrame, columns, strategy: str = "minmax") -> ScalerState:
    """
    Calcula as estatísticas de normalização de cada coluna

    Args:
        table: DataFrame com os dados visíveis ao treino
        columns: Colunas a normalizar
        strategy: "minmax" ou "robust"

    Returns:
        ScalerState: Estatísticas imutáveis por coluna
    """
    if strategy not in STRATEGIES:
        raise ValueError(f"Estratégia de normalização desconhecida: {strategy}. Use {list(STRATEGIES)}")

    missing_cols = [col for col in columns if col not in table.columns]
    if missing_cols:
        raise FormatError(f"Colunas não encontradas para normalização: {missing_cols}")

    fit_column = STRATEGIES[strategy]
    stats = []
    for col in columns:
        values = table[col].to_numpy(dtype=float)
        values = values[np.isfinite(values)]
        if values.size == 0:
            raise InsufficientDataError(f"Coluna '{col}' não possui valores finitos para ajustar o scaler")
        stats.append(fit_column(col, values))

    logger.info(f"Scaler '{strategy}' ajustado em {len(table)} registros: {list(columns)}")
    return ScalerState(strategy=strategy, stats=tuple(stats))


def transform(table: pd.DataFrame, state: ScalerState) -> pd.DataFrame:
    """
    Aplica as estatísticas ajustadas e retorna uma nova tabela

    Raises:
        NumericInstabilityError: Algum valor transformado não é finito
    """
    scaled_table = table.copy()
    for stats in state.stats:
        if stats.column not in table.columns:
            raise FormatError(f"Coluna '{stats.column}' ausente na tabela a transformar")

        scaled = stats.scale(table[stats.column].to_numpy(dtype=float))
        bad = ~np.isfinite(scaled)
        if bad.any():
            row = int(np.flatnonzero(bad)[0])
            raise NumericInstabilityError(
                f"Valor não finito após normalização na coluna '{stats.column}', linha {row}",
                column=stats.column,
                row=row
            )
        scaled_table[stats.column] = scaled

    return scaled_table


def inverse_transform(values, column_stats):
    """
    Converte valores normalizados de volta para a unidade original

    Args:
        values: Valores normalizados. Com uma lista de estatísticas, o último eixo
                deve ter uma posição por coluna
        column_stats: ColumnStats de uma coluna ou lista de ColumnStats
    """
    if isinstance(column_stats, (MinMaxStats, RobustStats)):
        return column_stats.unscale(values)

    column_stats = list(column_stats)
    arr = np.asarray(values, dtype=float)
    if arr.shape[-1] != len(column_stats):
        raise ValueError(f"Último eixo com {arr.shape[-1]} posições, esperado {len(column_stats)}")
    return np.stack([s.unscale(arr[..., k]) for k, s in enumerate(column_stats)], axis=-1)
