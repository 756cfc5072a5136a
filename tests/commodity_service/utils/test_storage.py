import io

import joblib
import numpy as np
import pandas as pd
import pytest
from unittest.mock import MagicMock, patch
from azure.core.exceptions import ResourceExistsError

from commodity_service.utils import scaler
from commodity_service.utils.errors import NotFound
from commodity_service.utils.sequence_model import LightningSequenceModel
from commodity_service.utils.storage import (
    ArtifactHandle,
    BlobModelStore,
    LoadedArtifact,
    LocalModelStore,
    ModelStore,
    get_model_store,
    get_storage_client,
)


class BytesModel:
    """Modelo mínimo com serialize/deserialize"""

    def __init__(self, payload=b"pesos"):
        self.payload = payload

    def serialize(self):
        return self.payload

    @classmethod
    def deserialize(cls, artifact):
        return cls(artifact)


@pytest.fixture
def scaler_state():
    table = pd.DataFrame({"WTI": [60.0, 70.0, 80.0], "GOLD": [1500.0, 1600.0, 1700.0]})
    return scaler.fit(table, ["WTI", "GOLD"])


@pytest.fixture
def store(tmp_path):
    return LocalModelStore(tmp_path)


class TestModelStore:

    def test_base_class_is_abstract(self):
        with pytest.raises(TypeError):
            ModelStore()

    def test_subclass_must_implement_io(self):
        class ReadOnlyStore(ModelStore):
            def _read(self, path):
                return b""

        with pytest.raises(TypeError):
            ReadOnlyStore()


class TestLocalModelStore:

    def test_load_unsaved_name_returns_not_found(self, store):
        result = store.load("inexistente", model_cls=BytesModel)

        assert isinstance(result, NotFound)
        assert result.name == "inexistente"
        assert not result

    def test_save_layout(self, store, tmp_path, scaler_state):
        handle = store.save(BytesModel(), "commodities", scaler_state=scaler_state, metrics={"test": {"mse": 1.0}})

        assert handle == ArtifactHandle(
            name="commodities",
            model_path="models/commodities.ckpt",
            scaler_path="models/commodities_scaler.pkl",
            metrics_path="models/commodities_metrics.pkl"
        )
        assert (tmp_path / "models" / "commodities.ckpt").read_bytes() == b"pesos"
        assert (tmp_path / "models" / "commodities_scaler.pkl").is_file()

    def test_round_trip(self, store, scaler_state):
        store.save(BytesModel(b"abc"), "commodities", scaler_state=scaler_state, metrics={"test": {"mse": 1.0}})

        loaded = store.load("commodities", model_cls=BytesModel)

        assert isinstance(loaded, LoadedArtifact)
        assert loaded.model.payload == b"abc"
        assert loaded.scaler_state == scaler_state
        assert loaded.metrics == {"test": {"mse": 1.0}}

    def test_model_only(self, store):
        handle = store.save(BytesModel(), "so_modelo")
        loaded = store.load("so_modelo", model_cls=BytesModel)

        assert handle.scaler_path is None
        assert handle.metrics_path is None
        assert loaded.scaler_state is None
        assert loaded.metrics is None

    def test_overwrite(self, store):
        store.save(BytesModel(b"v1"), "commodities")
        store.save(BytesModel(b"v2"), "commodities")

        assert store.load("commodities", model_cls=BytesModel).model.payload == b"v2"

    def test_lightning_model_round_trip(self, store, tiny_hyperparams):
        model = LightningSequenceModel()
        model.configure((5, 2), tiny_hyperparams)
        windows = np.random.default_rng(1).random((3, 5, 2), dtype=np.float32)

        store.save(model, "commodities")
        loaded = store.load("commodities")

        np.testing.assert_allclose(loaded.model.predict(windows), model.predict(windows), rtol=1e-5, atol=1e-6)

    def test_load_metrics(self, store):
        store.save(BytesModel(), "commodities", metrics={"test": {"rmse": 2.0}})
        assert store.load_metrics("commodities") == {"test": {"rmse": 2.0}}

    def test_load_metrics_missing(self, store):
        with pytest.raises(FileNotFoundError):
            store.load_metrics("commodities")

    def test_hyperparameters(self, store):
        store.save_hyperparameters("commodities", {"SEQUENCE_LENGTH": 10})
        assert store.load_hyperparameters("commodities") == {"SEQUENCE_LENGTH": 10}

    def test_hyperparameters_missing(self, store):
        with pytest.raises(FileNotFoundError):
            store.load_hyperparameters("commodities")

    def test_history_csv(self, store, commodity_csv):
        path = store.save_history_csv("commodities", commodity_csv)

        assert path == "history/commodities.csv"
        assert store.load_history_csv("commodities") == commodity_csv

    def test_history_csv_missing(self, store):
        with pytest.raises(FileNotFoundError):
            store.load_history_csv("commodities")


class TestBlobModelStore:

    @pytest.fixture
    def container(self):
        blobs = {}

        def get_blob_client(path):
            blob = MagicMock()
            blob.exists.side_effect = lambda: path in blobs
            blob.upload_blob.side_effect = lambda data, overwrite=False: blobs.__setitem__(path, data)
            blob.download_blob.return_value.readall.side_effect = lambda: blobs[path]
            return blob

        container = MagicMock()
        container.get_blob_client.side_effect = get_blob_client
        container.blobs = blobs
        return container

    def test_not_found(self, container):
        result = BlobModelStore(container).load("commodities", model_cls=BytesModel)
        assert isinstance(result, NotFound)

    def test_round_trip(self, container, scaler_state):
        store = BlobModelStore(container)
        store.save(BytesModel(b"blob"), "commodities", scaler_state=scaler_state)

        assert set(container.blobs) == {"models/commodities.ckpt", "models/commodities_scaler.pkl"}
        loaded = store.load("commodities", model_cls=BytesModel)
        assert loaded.model.payload == b"blob"
        assert loaded.scaler_state == scaler_state

    def test_scaler_is_joblib(self, container, scaler_state):
        BlobModelStore(container).save(BytesModel(), "commodities", scaler_state=scaler_state)

        restored = joblib.load(io.BytesIO(container.blobs["models/commodities_scaler.pkl"]))
        assert restored == scaler_state

    def test_upload_error_propagates(self, scaler_state):
        container = MagicMock()
        container.get_blob_client.return_value.upload_blob.side_effect = RuntimeError("sem rede")

        with pytest.raises(RuntimeError):
            BlobModelStore(container).save(BytesModel(), "commodities")


class TestStorageClients:

    @patch("commodity_service.utils.storage.BlobServiceClient")
    def test_get_storage_client_creates_container(self, mock_blob_service):
        container = mock_blob_service.from_connection_string.return_value.get_container_client.return_value

        result = get_storage_client("conn", "commodityservicestorage")

        assert result is container
        container.create_container.assert_called_once()

    @patch("commodity_service.utils.storage.BlobServiceClient")
    def test_get_storage_client_existing_container(self, mock_blob_service):
        container = mock_blob_service.from_connection_string.return_value.get_container_client.return_value
        container.create_container.side_effect = ResourceExistsError("existe")

        assert get_storage_client("conn", "commodityservicestorage") is container

    def test_get_model_store_local(self, tmp_path):
        store = get_model_store({"conn_str": None, "container": "x", "local_dir": str(tmp_path)})
        assert isinstance(store, LocalModelStore)

    @patch("commodity_service.utils.storage.get_storage_client")
    def test_get_model_store_blob(self, mock_get_client):
        store = get_model_store({"conn_str": "conn", "container": "x", "local_dir": "artifacts"})

        assert isinstance(store, BlobModelStore)
        mock_get_client.assert_called_once_with("conn", "x")
