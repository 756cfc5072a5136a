import numpy as np
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score
import logging

logger = logging.getLogger(__name__)


def directional_accuracy(y_real, predictions):
    """
    Fração de passos em que a predição acerta o sentido da variação

    A variação é medida em relação ao valor real do passo anterior.
    """
    y_real = np.asarray(y_real, dtype=float)
    predictions = np.asarray(predictions, dtype=float)
    if len(y_real) < 2:
        return float("nan")

    previous = y_real[:-1]
    real_direction = np.sign(y_real[1:] - previous)
    pred_direction = np.sign(predictions[1:] - previous)
    return float((real_direction == pred_direction).mean())


def calculate_metrics(y_real, predictions, dataset_name=""):
    """
    Calcula métricas de avaliação do modelo

    Args:
        y_real: Valores reais (array-like, 1D ou (n, n_targets))
        predictions: Valores preditos (mesmo formato de y_real)
        dataset_name: Nome do dataset (para logging)

    Returns:
        dict: Dicionário com métricas calculadas
    """
    try:
        y_real = np.asarray(y_real, dtype=float)
        predictions = np.asarray(predictions, dtype=float)

        if y_real.shape != predictions.shape:
            raise ValueError(f"Formatos diferentes: real {y_real.shape}, predito {predictions.shape}")
        if y_real.size == 0:
            raise ValueError("Nenhum valor para calcular métricas")

        if y_real.ndim == 2 and y_real.shape[1] == 1:
            y_real = y_real.ravel()
            predictions = predictions.ravel()

        mae = mean_absolute_error(y_real, predictions)
        mse = mean_squared_error(y_real, predictions)
        rmse = np.sqrt(mse)
        r2 = r2_score(y_real, predictions) if len(y_real) > 1 else float("nan")

        # Evita divisão por zero usando np.where
        mape = np.mean(np.abs((y_real - predictions) / np.where(y_real != 0, y_real, 1))) * 100

        dir_acc = directional_accuracy(y_real, predictions)

        metrics = {
            'mae': float(mae),
            'mse': float(mse),
            'rmse': float(rmse),
            'mape': float(mape),
            'r2': float(r2),
            'directional_accuracy': dir_acc
        }

        if dataset_name:
            logger.info(f"Métricas {dataset_name}:")
            logger.info(f"   MAE:  {mae:.4f}")
            logger.info(f"   MSE:  {mse:.4f}")
            logger.info(f"   RMSE: {rmse:.4f}")
            logger.info(f"   MAPE: {mape:.2f}%")
            logger.info(f"   R²:   {r2:.4f}")
            logger.info(f"   Acurácia Direcional: {dir_acc*100:.2f}%")

        return metrics

    except Exception as e:
        logger.exception(f"Erro ao calcular métricas para {dataset_name}")
        raise
