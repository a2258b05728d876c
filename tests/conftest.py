import copy
from pathlib import Path
from typing import List, Optional

import pytest

from core.capture import UnavailableCaptureProvider
from core.config import DEFAULT_CONFIG, ConfigManager, DictConfigLoader
from core.database import SQLiteDatabase, initialize_schema
from core.engine.service import ModelSlotManager
from core.model.catalog import ModelCatalog, default_catalog
from core.model.downloader import ModelDownloader
from core.model.failures import FailureRegistry
from core.model.ledger import PersistenceLedger
from core.model.locator import ResourceLocator
from core.model.manager import ModelManager
from core.model.status import ProcessingStatus
from core.model.storage import StorageBackend
from schemas.models import ModelDescriptor
from tests.fakes import FakeEngine, FakeSession


@pytest.fixture
def db_service(tmp_path):
    db = SQLiteDatabase({"type": "sqlite", "path": str(tmp_path / "db" / "test.db")})
    assert db.connect()
    assert initialize_schema(db)
    yield db
    db.disconnect()

@pytest.fixture
def catalog() -> ModelCatalog:
    return default_catalog

@pytest.fixture
def m1(catalog) -> ModelDescriptor:
    return catalog.get("TINYLLAMA_1_1B_CHAT")

@pytest.fixture
def m2(catalog) -> ModelDescriptor:
    return catalog.get("LLAMA_3_2_1B_INSTRUCT")

@pytest.fixture
def backends(tmp_path) -> List[StorageBackend]:
    return [
        StorageBackend("documents", tmp_path / "refs" / "documents", rank=0),
        StorageBackend("app-data", tmp_path / "refs" / "app-data", rank=1),
        StorageBackend("cache", tmp_path / "refs" / "cache", rank=2),
    ]

@pytest.fixture
def failures(db_service) -> FailureRegistry:
    return FailureRegistry(db_service)

@pytest.fixture
def ledger(db_service) -> PersistenceLedger:
    return PersistenceLedger(db_service)

@pytest.fixture
def locator(backends, catalog, failures) -> ResourceLocator:
    return ResourceLocator(backends, catalog, failures)

@pytest.fixture
def models_dir(tmp_path) -> Path:
    directory = tmp_path / "models"
    directory.mkdir()
    return directory

@pytest.fixture
def make_artifact(models_dir):
    """Writes a fake model file for a descriptor and returns its absolute path."""
    def _make(descriptor: ModelDescriptor, content: bytes = b"\x00model-bytes" * 256,
              directory: Optional[Path] = None) -> str:
        path = (directory or models_dir) / descriptor.file_name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return str(path.absolute())
    return _make

@pytest.fixture
def install_model(locator, make_artifact):
    """Artifact on disk plus a resolvable reference."""
    def _install(descriptor: ModelDescriptor, **kwargs) -> str:
        return locator.create_reference(descriptor, make_artifact(descriptor, **kwargs))
    return _install

@pytest.fixture
def fake_engine() -> FakeEngine:
    engine = FakeEngine()
    assert engine.initialize({})
    return engine

@pytest.fixture
def status() -> ProcessingStatus:
    return ProcessingStatus()

@pytest.fixture
def slot_manager(fake_engine, locator, ledger, failures, status):
    slot = ModelSlotManager(
        engine=fake_engine,
        locator=locator,
        ledger=ledger,
        failure_registry=failures,
        status=status,
        load_timeout_sec=2,
        inference_timeout_sec=2,
        inference_workers=2,
    )
    yield slot
    slot.shutdown()

@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()

@pytest.fixture
def downloader(locator, ledger, tmp_path, fake_session) -> ModelDownloader:
    return ModelDownloader(
        locator=locator,
        ledger=ledger,
        shared_dir=None,
        app_dir=str(tmp_path / "downloads"),
        chunk_size=1000,
        lock_timeout_sec=1,
        session=fake_session,
    )

@pytest.fixture
def model_manager(catalog, locator, ledger, failures, slot_manager, downloader, status, m1) -> ModelManager:
    return ModelManager(
        catalog=catalog,
        locator=locator,
        ledger=ledger,
        failure_registry=failures,
        slot_manager=slot_manager,
        downloader=downloader,
        capture_provider=UnavailableCaptureProvider(),
        status=status,
        default_model_id=m1.id,
    )

@pytest.fixture
def app_config(tmp_path):
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["engines"]["dummy"] = {"load_delay_ms": 0, "processing_delay_ms": 0}
    config["models"]["load_timeout_sec"] = 5
    config["storage"].update(
        reference_dirs=[
            {"name": "documents", "path": str(tmp_path / "cfg-refs" / "documents")},
            {"name": "app-data", "path": str(tmp_path / "cfg-refs" / "app-data")},
        ],
        shared_download_dir=None,
        app_download_dir=str(tmp_path / "cfg-downloads"),
        scan_dirs=[str(tmp_path / "scan")],
    )
    config["database"]["path"] = str(tmp_path / "db" / "app.db")
    return config

@pytest.fixture
def config_manager(app_config):
    ConfigManager.reset()
    manager = ConfigManager(loader=DictConfigLoader(app_config))
    yield manager
    ConfigManager.reset()
