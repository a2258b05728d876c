import os
import time
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from core.engine.service import ModelSlotManager, SlotState
from schemas.engine import GenerationInput
from utils.errors import ErrorKind
from utils.exceptions import ModelServiceError


def _input(prompt: str = "hi") -> GenerationInput:
    return GenerationInput(prompt=prompt, temperature=0.7, top_k=40, top_p=0.9, max_tokens=64)


@pytest.fixture
def make_slot(fake_engine, locator, ledger, failures, status):
    created = []

    def _make(**kwargs) -> ModelSlotManager:
        options = dict(load_timeout_sec=2, inference_timeout_sec=2, inference_workers=2)
        options.update(kwargs)
        slot = ModelSlotManager(fake_engine, locator, ledger, failures, status=status, **options)
        created.append(slot)
        return slot

    yield _make
    for slot in created:
        slot.shutdown()


def _events(ledger):
    return [(e.model_id, e.event) for e in ledger.get_events()]


def test_first_lease_loads_the_model(slot_manager, install_model, ledger, m1):
    path = install_model(m1)
    assert slot_manager.state == SlotState.EMPTY

    with slot_manager.lease(m1) as handle:
        assert handle.model_path == path
        assert slot_manager.snapshot()["active_leases"] == 1

    assert slot_manager.state == SlotState.READY
    assert slot_manager.current_model_id == m1.id
    assert slot_manager.load_count == 1
    assert slot_manager.snapshot()["active_leases"] == 0
    assert ledger.get_info(m1.id).is_loaded
    assert _events(ledger) == [(m1.id, "loaded")]


def test_same_model_reuses_the_ready_handle(slot_manager, install_model, fake_engine, m1):
    install_model(m1)
    with slot_manager.lease(m1) as first:
        pass
    with slot_manager.lease(m1) as second:
        pass
    assert first is second
    assert slot_manager.load_count == 1
    assert len(fake_engine.loaded_paths) == 1


def test_switch_unloads_before_loading(slot_manager, install_model, fake_engine, ledger, m1, m2):
    path1 = install_model(m1)
    install_model(m2)

    with slot_manager.lease(m1):
        pass
    with slot_manager.lease(m2):
        pass

    events = _events(ledger)
    assert events.index((m1.id, "unloaded")) < events.index((m2.id, "loaded"))
    assert fake_engine.released_paths == [path1]
    assert fake_engine.max_live_handles == 1
    assert fake_engine.live_handle_count() == 1
    assert slot_manager.current_model_id == m2.id
    assert not ledger.get_info(m1.id).is_loaded


def test_concurrent_requests_never_hold_two_handles(slot_manager, install_model, fake_engine, m1, m2):
    install_model(m1)
    install_model(m2)
    fake_engine.load_delay_sec = 0.02
    fake_engine.infer_delay_sec = 0.01

    def run(i):
        descriptor = m1 if i % 2 == 0 else m2
        with slot_manager.lease(descriptor) as handle:
            assert not handle.released
            assert slot_manager.current_model_id == descriptor.id
            return slot_manager.infer(descriptor, handle, _input(f"request {i}"))

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(run, range(12)))

    assert all(r.startswith("echo: request") for r in results)
    assert fake_engine.max_live_handles == 1
    assert fake_engine.live_handle_count() == 1


def test_load_timeout_leaves_slot_failed(make_slot, install_model, fake_engine, failures, ledger, m1):
    install_model(m1)
    slot = make_slot(load_timeout_sec=0.2)
    fake_engine.load_delay_sec = 0.6

    with pytest.raises(ModelServiceError) as exc_info:
        with slot.lease(m1):
            pass

    error = exc_info.value
    assert error.kind == ErrorKind.MODEL_LOAD_TIMEOUT
    assert error.context["elapsed_ms"] >= error.context["timeout_ms"] == 200
    assert slot.state == SlotState.FAILED
    assert slot.current_model_id is None
    assert failures.is_failed(m1.id)
    assert (m1.id, "load_failed") in _events(ledger)

    # The construction that finished late is released, never installed.
    deadline = time.time() + 3
    while len(fake_engine.released_paths) < 1 and time.time() < deadline:
        time.sleep(0.05)
    assert len(fake_engine.loaded_paths) == 1
    assert fake_engine.released_paths == fake_engine.loaded_paths
    assert fake_engine.live_handle_count() == 0
    assert slot.snapshot()["handle_live"] is False


def test_next_model_waits_for_an_abandoned_load(make_slot, install_model, fake_engine, failures, locator, m1, m2):
    path1 = install_model(m1)
    install_model(m2)
    slot = make_slot(load_timeout_sec=0.5)
    fake_engine.load_delay_sec = 0.8

    with pytest.raises(ModelServiceError) as exc_info:
        with slot.lease(m1):
            pass
    assert exc_info.value.kind == ErrorKind.MODEL_LOAD_TIMEOUT

    # m1 is still being constructed; m2's own load is instant.
    fake_engine.load_delay_sec = 0
    with slot.lease(m2):
        pass

    assert slot.state == SlotState.READY
    assert slot.current_model_id == m2.id
    assert failures.is_failed(m1.id)
    assert not failures.is_failed(m2.id)
    assert [d.id for d in locator.list_available()] == [m2.id]
    assert fake_engine.released_paths == [path1]
    assert fake_engine.max_live_handles == 1


def test_busy_engine_rejects_without_marking_the_next_model(make_slot, install_model, fake_engine, failures, ledger, m1, m2):
    install_model(m1)
    install_model(m2)
    slot = make_slot(load_timeout_sec=0.2)
    fake_engine.load_delay_sec = 1.0

    with pytest.raises(ModelServiceError):
        with slot.lease(m1):
            pass
    fake_engine.load_delay_sec = 0

    with pytest.raises(ModelServiceError) as exc_info:
        with slot.lease(m2):
            pass
    assert exc_info.value.kind == ErrorKind.OUT_OF_RESOURCES
    assert not failures.is_failed(m2.id)
    assert (m2.id, "load_failed") not in _events(ledger)
    assert slot.snapshot()["transition_in_flight"] is False


def test_engine_exception_maps_to_load_failed_with_diagnostics(slot_manager, install_model, fake_engine, failures, m1):
    path = install_model(m1)
    fake_engine.load_error = RuntimeError("unsupported model format")

    with pytest.raises(ModelServiceError) as exc_info:
        with slot_manager.lease(m1):
            pass

    error = exc_info.value
    assert error.kind == ErrorKind.MODEL_LOAD_FAILED
    assert error.context["file_path"] == path
    assert error.context["readable"] is True
    assert error.context["exception"] == "RuntimeError"
    assert "unsupported model format" in error.describe()
    assert slot_manager.state == SlotState.FAILED
    assert failures.is_failed(m1.id)


def test_out_of_memory_during_load_is_contained(slot_manager, install_model, fake_engine, m1):
    install_model(m1)
    fake_engine.load_error = MemoryError()

    with pytest.raises(ModelServiceError) as exc_info:
        with slot_manager.lease(m1):
            pass

    assert exc_info.value.kind == ErrorKind.OUT_OF_RESOURCES
    assert "memory_available_bytes" in exc_info.value.context
    assert slot_manager.state == SlotState.FAILED


def test_missing_model_is_unavailable_not_failed(slot_manager, failures, fake_engine, m1):
    with pytest.raises(ModelServiceError) as exc_info:
        with slot_manager.lease(m1):
            pass
    assert exc_info.value.kind == ErrorKind.MODEL_UNAVAILABLE
    assert slot_manager.state == SlotState.EMPTY
    assert not failures.is_failed(m1.id)
    assert fake_engine.loaded_paths == []


def test_recovery_after_failure(slot_manager, install_model, fake_engine, m1):
    install_model(m1)
    fake_engine.load_error = RuntimeError("transient")
    with pytest.raises(ModelServiceError):
        with slot_manager.lease(m1):
            pass

    fake_engine.load_error = None
    with slot_manager.lease(m1):
        pass
    assert slot_manager.state == SlotState.READY
    assert slot_manager.snapshot()["last_error"] is None


def test_vanished_file_is_not_reused(slot_manager, install_model, ledger, m1):
    path = install_model(m1)
    with slot_manager.lease(m1):
        pass
    os.remove(path)

    with pytest.raises(ModelServiceError) as exc_info:
        with slot_manager.lease(m1):
            pass
    assert exc_info.value.kind == ErrorKind.MODEL_UNAVAILABLE
    assert slot_manager.state == SlotState.EMPTY
    assert (m1.id, "unloaded") in _events(ledger)


def test_infer_timeout_and_failure(slot_manager, install_model, fake_engine, ledger, m1):
    install_model(m1)
    with slot_manager.lease(m1) as handle:
        assert slot_manager.infer(m1, handle, _input()) == "echo: hi"

        fake_engine.infer_delay_sec = 0.5
        with pytest.raises(ModelServiceError) as exc_info:
            slot_manager.infer(m1, handle, _input(), timeout_sec=0.1)
        assert exc_info.value.kind == ErrorKind.INFERENCE_TIMEOUT

        fake_engine.infer_delay_sec = 0
        fake_engine.infer_error = ValueError("bad token")
        with pytest.raises(ModelServiceError) as exc_info:
            slot_manager.infer(m1, handle, _input())
        assert exc_info.value.kind == ErrorKind.INFERENCE_FAILED

    # Inference failures keep the model loaded.
    assert slot_manager.state == SlotState.READY
    assert [e for _, e in _events(ledger)].count("inference_failed") == 2


def test_switch_waits_for_an_abandoned_inference(slot_manager, install_model, fake_engine, m1, m2):
    path1 = install_model(m1)
    install_model(m2)
    fake_engine.infer_delay_sec = 0.6

    with slot_manager.lease(m1) as handle:
        with pytest.raises(ModelServiceError) as exc_info:
            slot_manager.infer(m1, handle, _input(), timeout_sec=0.1)
        assert exc_info.value.kind == ErrorKind.INFERENCE_TIMEOUT
    assert slot_manager.snapshot()["active_leases"] == 1

    fake_engine.infer_delay_sec = 0
    with slot_manager.lease(m2):
        pass

    assert fake_engine.released_during_inference == []
    assert fake_engine.released_paths == [path1]
    assert slot_manager.current_model_id == m2.id


def test_unload(slot_manager, install_model, fake_engine, m1, m2):
    install_model(m1)
    assert not slot_manager.unload()

    with slot_manager.lease(m1):
        pass
    assert not slot_manager.unload(m2.id)
    assert slot_manager.unload(m1.id)
    assert slot_manager.state == SlotState.EMPTY
    assert fake_engine.live_handle_count() == 0


def test_unload_waits_for_active_lease(slot_manager, install_model, fake_engine, m1):
    install_model(m1)
    released = threading.Event()
    order = []

    def hold():
        with slot_manager.lease(m1):
            released.wait(2)
            order.append("lease-ended")

    holder = threading.Thread(target=hold)
    holder.start()
    while slot_manager.snapshot()["active_leases"] == 0:
        time.sleep(0.01)

    unloader = threading.Thread(target=lambda: order.append(("unloaded", slot_manager.unload())))
    unloader.start()
    time.sleep(0.1)
    assert order == []
    released.set()
    holder.join(2)
    unloader.join(2)
    assert order == ["lease-ended", ("unloaded", True)]


def test_loading_flags_are_reported_while_loading(slot_manager, install_model, fake_engine, status, m1):
    install_model(m1)
    fake_engine.load_delay_sec = 0.3

    def load():
        with slot_manager.lease(m1):
            pass

    worker = threading.Thread(target=load)
    worker.start()

    deadline = time.time() + 2
    while not status.is_model_loading and time.time() < deadline:
        time.sleep(0.01)
    assert status.is_model_loading
    info = status.loading_info(slot_manager.load_timeout_sec)
    assert info.is_loading and info.model_name == m1.display_name
    assert 0 <= info.progress_percentage <= 100

    worker.join(2)
    assert not status.is_model_loading
    assert slot_manager.state == SlotState.READY
