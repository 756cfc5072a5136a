import numpy as np
import pandas as pd
import logging

from . import scaler
from .dataset import last_window
from .errors import InsufficientDataError
from .scaler import ScalerState

logger = logging.getLogger(__name__)

DIRECTION_THRESHOLD = 0.5


def prepare_prediction_sequence(df: pd.DataFrame, scaler_state: ScalerState, feature_columns, sequence_length: int):
    """
    Prepara a janela mais recente para predição

    Args:
        df: DataFrame com dados validados (ordem cronológica)
        scaler_state: Estado do scaler ajustado no treinamento
        feature_columns: Colunas de entrada do modelo
        sequence_length: Tamanho da janela usado no treinamento

    Returns:
        np.ndarray: Array com shape (1, sequence_length, num_features)
    """
    try:
        feature_columns = list(feature_columns)
        if len(df) < sequence_length:
            raise InsufficientDataError(
                f"Dados insuficientes: {len(df)} registros, "
                f"necessário pelo menos {sequence_length} para criar sequência"
            )

        feature_state = ScalerState(
            strategy=scaler_state.strategy,
            stats=tuple(scaler_state.select(feature_columns))
        )
        scaled = scaler.transform(df.tail(sequence_length).reset_index(drop=True), feature_state)
        sequence = last_window(scaled, sequence_length, feature_columns)

        logger.info(
            f"Sequência preparada: shape {sequence.shape} "
            f"(1, {sequence_length}, {len(feature_columns)})"
        )
        return sequence

    except Exception as e:
        logger.exception("Erro ao preparar sequência para predição")
        raise


def predict(model, windows) -> np.ndarray:
    """Saídas brutas (normalizadas) do modelo para as janelas"""
    try:
        return np.asarray(model.predict(windows))
    except Exception as e:
        logger.exception("Erro ao executar predição")
        raise


def denormalize(raw, column_stats):
    """
    Converte saídas do modelo para a unidade original

    O scaler precisa ser o mesmo ajustado no treinamento do modelo;
    combinações trocadas não são detectadas.
    """
    return scaler.inverse_transform(raw, column_stats)


def predict_next(model, df: pd.DataFrame, scaler_state: ScalerState, feature_columns,
                 target_columns, sequence_length: int, label_mode: str = "value") -> dict:
    """
    Prediz o próximo passo a partir das últimas sequence_length linhas

    Args:
        label_mode: Modo usado no treinamento. "direction" devolve o score bruto
                    e o rótulo (1 = alta), sem desnormalizar

    Returns:
        dict: {coluna alvo: valor predito na unidade original} ou, para "direction",
              {coluna alvo: {"score": float, "label": 0 ou 1}}
    """
    target_columns = list(target_columns)
    sequence = prepare_prediction_sequence(df, scaler_state, feature_columns, sequence_length)
    raw = predict(model, sequence)

    if label_mode == "direction":
        # Rótulos 0/1 nunca passaram pelo scaler
        scores = np.asarray(raw, dtype=float).reshape(-1)
        prediction = {
            col: {"score": float(scores[k]), "label": int(scores[k] > DIRECTION_THRESHOLD)}
            for k, col in enumerate(target_columns)
        }
    else:
        values = np.asarray(denormalize(raw, scaler_state.select(target_columns))).reshape(-1)
        prediction = {col: float(values[k]) for k, col in enumerate(target_columns)}

    logger.info(f"Predição realizada: {prediction}")
    return prediction
