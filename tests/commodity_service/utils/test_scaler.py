import numpy as np
import pandas as pd
import pytest

from commodity_service.utils import scaler
from commodity_service.utils.errors import FormatError, InsufficientDataError, NumericInstabilityError
from commodity_service.utils.scaler import MinMaxStats, RobustStats, ScalerState


@pytest.fixture
def linear_table():
    return pd.DataFrame({
        "WTI": np.arange(1, 101, dtype=float),
        "GOLD": np.arange(1, 101, dtype=float) * 10,
    })


class TestMinMax:

    def test_endpoints_map_to_zero_and_one(self, linear_table):
        state = scaler.fit(linear_table, ["WTI"])
        scaled = scaler.transform(linear_table, state)

        assert scaled["WTI"].iloc[0] == pytest.approx(0.0)
        assert scaled["WTI"].iloc[-1] == pytest.approx(1.0)

    def test_constant_column_has_positive_range(self):
        table = pd.DataFrame({"WTI": [5.0] * 10})
        state = scaler.fit(table, ["WTI"])

        assert state["WTI"].range > 0
        scaled = scaler.transform(table, state)
        assert np.isfinite(scaled["WTI"]).all()
        assert (scaled["WTI"] == 0).all()

    def test_inverse_round_trip(self, linear_table):
        state = scaler.fit(linear_table, ["WTI", "GOLD"])
        scaled = scaler.transform(linear_table, state)

        restored = scaler.inverse_transform(scaled["GOLD"].to_numpy(), state["GOLD"])
        np.testing.assert_allclose(restored, linear_table["GOLD"].to_numpy())

    def test_transform_does_not_mutate_input(self, linear_table):
        original = linear_table.copy()
        state = scaler.fit(linear_table, ["WTI"])
        scaler.transform(linear_table, state)

        pd.testing.assert_frame_equal(linear_table, original)

    def test_fit_on_subset_is_reused_verbatim(self, linear_table):
        state = scaler.fit(linear_table.iloc[:50], ["WTI"])
        scaled = scaler.transform(linear_table, state)

        assert state["WTI"] == MinMaxStats(column="WTI", min=1.0, max=50.0)
        # valores de teste podem sair de [0, 1]
        assert scaled["WTI"].iloc[-1] > 1.0


class TestRobust:

    def test_inverse_round_trip(self):
        table = pd.DataFrame({"WTI": np.arange(20, dtype=float)})
        state = scaler.fit(table, ["WTI"], strategy="robust")
        scaled = scaler.transform(table, state)

        restored = scaler.inverse_transform(scaled["WTI"].to_numpy(), state["WTI"])
        np.testing.assert_allclose(restored, table["WTI"].to_numpy(), atol=1e-6)

    def test_statistics(self):
        table = pd.DataFrame({"WTI": np.arange(20, dtype=float)})
        stats = scaler.fit(table, ["WTI"], strategy="robust")["WTI"]

        assert stats.median == pytest.approx(9.5)
        assert stats.iqr == pytest.approx(9.5)
        assert stats.range == pytest.approx(9.5 + 1e-8)

    def test_zero_iqr_falls_back_to_std(self):
        values = np.array([0.0] * 8 + [1.0, 100.0])
        table = pd.DataFrame({"WTI": values})
        stats = scaler.fit(table, ["WTI"], strategy="robust")["WTI"]

        assert stats.iqr == 0
        assert stats.range == pytest.approx(np.std(values) + 1e-8)

    def test_constant_column_has_positive_range(self):
        table = pd.DataFrame({"WTI": [3.0] * 10})
        stats = scaler.fit(table, ["WTI"], strategy="robust")["WTI"]

        assert stats.range > 0
        assert np.isfinite(stats.scale([3.0, 4.0])).all()

    def test_outliers_are_clipped(self):
        stats = RobustStats(column="WTI", median=0.0, iqr=1.0, std=1.0)
        scaled = stats.scale([-1000.0, 0.5, 1000.0])

        np.testing.assert_allclose(scaled, [-10.0, 0.5, 10.0], atol=1e-6)


class TestFitErrors:

    def test_unknown_strategy(self, linear_table):
        with pytest.raises(ValueError, match="desconhecida"):
            scaler.fit(linear_table, ["WTI"], strategy="zscore")

    def test_missing_column(self, linear_table):
        with pytest.raises(FormatError):
            scaler.fit(linear_table, ["BRENT"])

    def test_no_finite_values(self):
        table = pd.DataFrame({"WTI": [np.nan, np.inf]})
        with pytest.raises(InsufficientDataError):
            scaler.fit(table, ["WTI"])


class TestTransformErrors:

    def test_non_finite_output_names_column_and_row(self, linear_table):
        state = scaler.fit(linear_table, ["WTI", "GOLD"])
        broken = linear_table.copy()
        broken.loc[3, "GOLD"] = np.inf

        with pytest.raises(NumericInstabilityError) as exc:
            scaler.transform(broken, state)

        assert exc.value.column == "GOLD"
        assert exc.value.row == 3

    def test_missing_column(self, linear_table):
        state = scaler.fit(linear_table, ["WTI"])
        with pytest.raises(FormatError):
            scaler.transform(linear_table[["GOLD"]], state)


class TestScalerState:

    def test_select_keeps_requested_order(self, linear_table):
        state = scaler.fit(linear_table, ["WTI", "GOLD"])

        assert state.columns == ["WTI", "GOLD"]
        assert [s.column for s in state.select(["GOLD", "WTI"])] == ["GOLD", "WTI"]

    def test_unknown_column(self, linear_table):
        state = scaler.fit(linear_table, ["WTI"])
        with pytest.raises(KeyError):
            state["GOLD"]

    def test_is_immutable(self, linear_table):
        state = scaler.fit(linear_table, ["WTI"])
        with pytest.raises(AttributeError):
            state.strategy = "robust"


class TestInverseTransform:

    def test_multiple_columns_along_last_axis(self):
        state = ScalerState(strategy="minmax", stats=(
            MinMaxStats(column="WTI", min=0.0, max=10.0),
            MinMaxStats(column="GOLD", min=100.0, max=200.0),
        ))
        raw = np.array([[0.5, 0.5], [1.0, 0.0]])

        restored = scaler.inverse_transform(raw, state.select(["WTI", "GOLD"]))
        np.testing.assert_allclose(restored, [[5.0, 150.0], [10.0, 100.0]])

    def test_shape_mismatch(self):
        stats = [MinMaxStats(column="WTI", min=0.0, max=1.0)]
        with pytest.raises(ValueError):
            scaler.inverse_transform(np.zeros((2, 2)), stats)
