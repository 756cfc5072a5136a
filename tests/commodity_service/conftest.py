import numpy as np
import pandas as pd
import pytest


def _format_decimal_comma(value):
    return f"{value:.4f}".replace(".", ",")


@pytest.fixture
def commodity_frame():
    """Série sintética com tendência e ruído nas três colunas padrão"""
    np.random.seed(42)
    n = 120
    t = np.arange(n)
    return pd.DataFrame({
        "Date": pd.date_range("2020-01-01", periods=n, freq="D").strftime("%d/%m/%Y"),
        "WTI": 60 + 0.1 * t + np.random.normal(0, 0.5, n),
        "GOLD": 1500 + 2 * t + np.random.normal(0, 5, n),
        "US DOLLAR INDEX": 96 + np.sin(t / 10) + np.random.normal(0, 0.1, n),
    })


@pytest.fixture
def commodity_csv(commodity_frame):
    """CSV europeu (';' e vírgula decimal) com uma linha #N/A no meio"""
    lines = ["Date;WTI;GOLD;US DOLLAR INDEX"]
    for i, row in commodity_frame.iterrows():
        wti = "#N/A" if i == 50 else _format_decimal_comma(row["WTI"])
        lines.append(";".join([
            row["Date"],
            wti,
            _format_decimal_comma(row["GOLD"]),
            _format_decimal_comma(row["US DOLLAR INDEX"]),
        ]))
    return "\n".join(lines) + "\n"


@pytest.fixture
def tiny_hyperparams():
    """Rede mínima e poucos epochs para testes com torch"""
    return {
        "SEQUENCE_LENGTH": 5,
        "EPOCHS": 2,
        "BATCH_SIZE": 16,
        "INIT_HIDDEN_SIZE": 4,
        "SECOND_HIDDEN_SIZE": 3,
        "DENSE_SIZE": 4,
        "DROPOUT_VALUE": 0.0,
        "SEED": 7,
    }


@pytest.fixture(autouse=True)
def cpu_trainer(monkeypatch):
    """pl.Trainer em CPU e sem progress bar nos testes"""
    monkeypatch.setenv("TRAINER_ACCELERATOR", "cpu")
    monkeypatch.setenv("ENABLE_PROGRESS_BAR", "false")
