import pytest
from typing import Dict, Any

from core.engine.dummy import DummyEngine
from core.engine.factory import EngineRegistry, engine_registry
from schemas.engine import GenerationInput


@pytest.fixture
def dummy_engine_config() -> Dict[str, Any]:
    return {"load_delay_ms": 0, "processing_delay_ms": 0}


@pytest.fixture
def dummy_engine(dummy_engine_config: Dict[str, Any]) -> DummyEngine:
    engine = DummyEngine()
    initialized = engine.initialize(dummy_engine_config)
    assert initialized, "DummyEngine failed to initialize"
    return engine


@pytest.fixture
def model_file(tmp_path) -> str:
    path = tmp_path / "sample-model.task"
    path.write_bytes(b"TFL3" + b"\x00" * 64)
    return str(path)


def _input(prompt: str = "Hello there", image: bytes = None) -> GenerationInput:
    return GenerationInput(prompt=prompt, temperature=0.7, top_k=40, top_p=0.9, max_tokens=256, image_bytes=image)


def test_dummy_engine_initialization(dummy_engine: DummyEngine):
    """Test engine initialization and basic info."""
    assert dummy_engine.is_initialized()
    info = dummy_engine.get_info()
    assert info.engine_name == "DummyEngine"
    assert info.engine_status == "ready"
    assert info.loaded_handles == 0
    assert info.additional_info["load_delay_ms"] == 0


def test_dummy_engine_load_and_infer(dummy_engine: DummyEngine, model_file: str):
    """Test model loading and generation simulation."""
    handle = dummy_engine.load(model_file, {"backend": "CPU"})
    assert handle.model_path == model_file
    assert dummy_engine.live_handle_count() == 1

    output = dummy_engine.infer(handle, _input(), timeout_sec=5)
    assert output == "[sample-model.task] Hello there"

    with_image = dummy_engine.infer(handle, _input(image=b"\xff\xd8abc"), timeout_sec=5)
    assert with_image.endswith("(image attached: 5 bytes)")


def test_dummy_engine_thinking_output(dummy_engine: DummyEngine, model_file: str):
    handle = dummy_engine.load(model_file, {"thinking": True})
    output = dummy_engine.infer(handle, _input(), timeout_sec=5)
    assert output.startswith("<think>")
    assert output.endswith("Hello there")


def test_dummy_engine_release_is_idempotent(dummy_engine: DummyEngine, model_file: str):
    handle = dummy_engine.load(model_file)
    assert dummy_engine.release(handle)
    assert dummy_engine.release(handle)
    assert handle.released
    assert dummy_engine.live_handle_count() == 0
    with pytest.raises(ValueError):
        dummy_engine.infer(handle, _input(), timeout_sec=5)


def test_dummy_engine_rejects_missing_or_empty_file(dummy_engine: DummyEngine, tmp_path):
    with pytest.raises(FileNotFoundError):
        dummy_engine.load(str(tmp_path / "missing.task"))
    empty = tmp_path / "empty.task"
    empty.write_bytes(b"")
    with pytest.raises(FileNotFoundError):
        dummy_engine.load(str(empty))


def test_uninitialized_engine_refuses_to_load(model_file: str):
    with pytest.raises(RuntimeError):
        DummyEngine().load(model_file)


def test_smoke_inference(dummy_engine: DummyEngine, model_file: str):
    handle = dummy_engine.load(model_file)
    output = dummy_engine.infer(handle, _input("Create a Python Hello World program"), 5)
    assert "Hello World" in output


def test_registry_creates_initialized_dummy_engine():
    engine = engine_registry.create_engine("dummy", {"processing_delay_ms": 5})
    assert isinstance(engine, DummyEngine)
    assert engine.is_initialized()
    assert "dummy" in engine_registry.get_all_engines()


def test_registry_unknown_engine_returns_none():
    registry = EngineRegistry()
    assert registry.create_engine("does-not-exist") is None
