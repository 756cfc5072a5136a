import numpy as np
import pandas as pd
import pytest
from unittest.mock import MagicMock

from commodity_service.utils import scaler
from commodity_service.utils.errors import InsufficientDataError
from commodity_service.utils.predictor import denormalize, predict, predict_next, prepare_prediction_sequence

FEATURES = ["WTI", "GOLD"]


@pytest.fixture
def table():
    return pd.DataFrame({
        "WTI": np.linspace(50, 100, 20),
        "GOLD": np.linspace(1000, 2000, 20),
    })


@pytest.fixture
def scaler_state(table):
    return scaler.fit(table, FEATURES)


class TestPreparePredictionSequence:

    def test_shape_and_scaled_values(self, table, scaler_state):
        sequence = prepare_prediction_sequence(table, scaler_state, FEATURES, 5)

        assert sequence.shape == (1, 5, 2)
        assert sequence.dtype == np.float32
        # última linha é o máximo das duas colunas
        np.testing.assert_allclose(sequence[0, -1], [1.0, 1.0])

    def test_uses_only_feature_columns(self, table, scaler_state):
        table = table.assign(Date="01/01/2020")
        sequence = prepare_prediction_sequence(table, scaler_state, ["GOLD"], 3)
        assert sequence.shape == (1, 3, 1)

    def test_insufficient_rows(self, table, scaler_state):
        with pytest.raises(InsufficientDataError):
            prepare_prediction_sequence(table.head(4), scaler_state, FEATURES, 5)

    def test_unknown_feature_column(self, table, scaler_state):
        with pytest.raises(KeyError):
            prepare_prediction_sequence(table, scaler_state, ["BRENT"], 5)


class TestPredict:

    def test_delegates_to_model(self):
        model = MagicMock()
        model.predict.return_value = [[0.1], [0.2]]

        raw = predict(model, np.zeros((2, 5, 2)))

        assert isinstance(raw, np.ndarray)
        assert raw.shape == (2, 1)

    def test_denormalize(self, scaler_state):
        restored = denormalize(np.array([0.0, 0.5, 1.0]), scaler_state["WTI"])
        np.testing.assert_allclose(restored, [50.0, 75.0, 100.0])

    def test_predict_next(self, table, scaler_state):
        model = MagicMock()
        model.predict.return_value = np.array([[0.5]], dtype=np.float32)

        prediction = predict_next(model, table, scaler_state, FEATURES, ["WTI"], 5)

        assert prediction == {"WTI": pytest.approx(75.0)}
        window = model.predict.call_args[0][0]
        assert window.shape == (1, 5, 2)

    def test_predict_next_multiple_targets(self, table, scaler_state):
        model = MagicMock()
        model.predict.return_value = np.array([[0.0, 1.0]], dtype=np.float32)

        prediction = predict_next(model, table, scaler_state, FEATURES, ["WTI", "GOLD"], 5)

        assert prediction == {"WTI": pytest.approx(50.0), "GOLD": pytest.approx(2000.0)}

    def test_predict_next_direction_skips_denormalize(self, table, scaler_state):
        model = MagicMock()
        model.predict.return_value = np.array([[0.73]], dtype=np.float32)

        prediction = predict_next(model, table, scaler_state, FEATURES, ["WTI"], 5, label_mode="direction")

        assert prediction["WTI"]["score"] == pytest.approx(0.73, abs=1e-6)
        assert prediction["WTI"]["label"] == 1

    def test_predict_next_direction_below_threshold(self, table, scaler_state):
        model = MagicMock()
        model.predict.return_value = np.array([[0.2, 0.5]], dtype=np.float32)

        prediction = predict_next(model, table, scaler_state, FEATURES, ["WTI", "GOLD"], 5, label_mode="direction")

        assert prediction["WTI"]["label"] == 0
        assert prediction["GOLD"]["label"] == 0
