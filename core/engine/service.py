# pocketinfer/core/engine/service.py
import os
import time
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterator, Optional

import psutil

from .base import EngineHandle, IEngine
from core.model.failures import FailureRegistry
from core.model.ledger import PersistenceLedger
from core.model.locator import ResourceLocator, inspect_file, validate_file_access
from core.model.status import ProcessingStatus
from schemas.engine import GenerationInput
from schemas.models import ModelDescriptor
from utils.errors import ErrorKind
from utils.exceptions import ModelServiceError

logger = logging.getLogger(f"pocketinfer.{__name__}")


class SlotState(str, Enum):
    EMPTY = "EMPTY"
    LOADING = "LOADING"
    READY = "READY"
    FAILED = "FAILED"


def _memory_context() -> Dict[str, Any]:
    vm = psutil.virtual_memory()
    return {"memory_available_bytes": vm.available, "memory_total_bytes": vm.total}


class ModelSlotManager:
    """
    Holds at most one live inference handle and owns every transition of it.

    Only one transition (load, switch or unload) runs at a time. A request for
    the loaded model takes a lease on the READY handle; a request for another
    model waits until in-flight transitions finish and active leases drain,
    then unloads the current handle before constructing the new one.
    Constructions run on a single worker thread, so a construction abandoned
    after its timeout still blocks the next one instead of running beside it;
    the next load waits for it to settle before its own timeout starts. An
    inference abandoned after its timeout keeps its lease until the engine
    returns, so the handle is never released underneath it.
    """

    def __init__(self,
                 engine: IEngine,
                 locator: ResourceLocator,
                 ledger: PersistenceLedger,
                 failure_registry: FailureRegistry,
                 status: Optional[ProcessingStatus] = None,
                 load_timeout_sec: float = 60,
                 inference_timeout_sec: float = 300,
                 inference_workers: int = 2,
                 revalidate_on_reuse: bool = True):
        self.engine = engine
        self.locator = locator
        self.ledger = ledger
        self.failures = failure_registry
        self.status = status or ProcessingStatus()
        self.load_timeout_sec = load_timeout_sec
        self.inference_timeout_sec = inference_timeout_sec
        self.revalidate_on_reuse = revalidate_on_reuse

        self._cond = threading.Condition()
        self._state = SlotState.EMPTY
        self._descriptor: Optional[ModelDescriptor] = None
        self._handle: Optional[EngineHandle] = None
        self._loaded_at: Optional[int] = None
        self._last_error: Optional[ModelServiceError] = None
        self._transition_in_flight = False
        self._active_leases = 0
        self._load_count = 0
        # Set once an abandoned construction has finished and its handle is released.
        self._orphan_settled: Optional[threading.Event] = None

        self._load_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="model_load")
        self._infer_executor = ThreadPoolExecutor(max_workers=max(1, inference_workers), thread_name_prefix="model_infer")

    # --- observation ---

    @property
    def state(self) -> SlotState:
        return self._state

    @property
    def current_descriptor(self) -> Optional[ModelDescriptor]:
        return self._descriptor

    @property
    def current_model_id(self) -> Optional[str]:
        with self._cond:
            if self._state == SlotState.READY and self._descriptor is not None:
                return self._descriptor.id
            return None

    @property
    def loaded_at(self) -> Optional[int]:
        return self._loaded_at

    @property
    def load_count(self) -> int:
        """Number of LOADING transitions started since construction."""
        return self._load_count

    def snapshot(self) -> Dict[str, Any]:
        with self._cond:
            return {
                "state": self._state.value,
                "model_id": self._descriptor.id if self._descriptor else None,
                "display_name": self._descriptor.display_name if self._descriptor else None,
                "loaded_at": self._loaded_at,
                "handle_live": self._handle is not None,
                "active_leases": self._active_leases,
                "transition_in_flight": self._transition_in_flight,
                "load_count": self._load_count,
                "last_error": {
                    "kind": self._last_error.kind.value,
                    "message": self._last_error.message,
                    "context": self._last_error.context,
                } if self._last_error else None,
            }

    # --- admission ---

    def _backing_file_present(self) -> bool:
        if self._handle is None:
            return False
        try:
            return os.path.getsize(self._handle.model_path) > 0
        except OSError:
            return False

    def _begin_transition(self, reuse_for: Optional[ModelDescriptor] = None) -> Optional[EngineHandle]:
        """
        Waits for exclusive access to the slot. With `reuse_for` set and that
        model READY (and its file still present), takes a lease and returns the
        handle instead. Returns None once the caller owns the transition.
        """
        with self._cond:
            while True:
                if self._transition_in_flight:
                    self._cond.wait()
                    continue
                if (reuse_for is not None and self._state == SlotState.READY
                        and self._descriptor is not None and self._descriptor.id == reuse_for.id):
                    if not self.revalidate_on_reuse or self._backing_file_present():
                        self._active_leases += 1
                        return self._handle
                    logger.warning(f"Backing file of loaded model {reuse_for.id} vanished; unloading it.")
                if self._active_leases > 0:
                    self._cond.wait()
                    continue
                self._transition_in_flight = True
                return None

    def _end_transition(self, lease: bool) -> None:
        with self._cond:
            self._transition_in_flight = False
            if lease:
                self._active_leases += 1
            self._cond.notify_all()

    def _release_lease(self) -> None:
        with self._cond:
            self._active_leases = max(0, self._active_leases - 1)
            self._cond.notify_all()

    def _acquire(self, descriptor: ModelDescriptor) -> EngineHandle:
        """Makes `descriptor` the loaded model and returns its handle with a lease held."""
        handle = self._begin_transition(reuse_for=descriptor)
        if handle is not None:
            return handle
        loaded: Optional[EngineHandle] = None
        try:
            loaded = self._transition_to(descriptor)
            return loaded
        finally:
            self._end_transition(lease=loaded is not None)

    @contextmanager
    def lease(self, descriptor: ModelDescriptor) -> Iterator[EngineHandle]:
        """Hands out the READY handle for `descriptor`, loading it first if needed."""
        handle = self._acquire(descriptor)
        try:
            yield handle
        finally:
            self._release_lease()

    # --- transitions ---

    def _set_state(self, state: SlotState, descriptor: Optional[ModelDescriptor]) -> None:
        with self._cond:
            self._state = state
            self._descriptor = descriptor
            self._cond.notify_all()

    def _unload_current(self) -> Optional[ModelDescriptor]:
        """Tears down the live handle. Caller owns the transition."""
        with self._cond:
            handle, descriptor = self._handle, self._descriptor
            self._handle = None
            self._loaded_at = None
            self._state = SlotState.EMPTY
            self._descriptor = None
        if handle is None:
            return None
        try:
            self.engine.release(handle)
        except Exception as e:
            logger.error(f"Engine failed to release handle for {descriptor.id}: {e}", exc_info=True)
        self.ledger.record_unloaded(descriptor)
        logger.info(f"Model {descriptor.id} unloaded.")
        return descriptor

    def _release_orphan(self, future: Future, settled: threading.Event) -> None:
        try:
            if future.cancelled() or future.exception() is not None:
                return
            handle = future.result()
            logger.warning(f"Releasing handle {handle.handle_id[:8]} that completed after its load timeout.")
            try:
                self.engine.release(handle)
            except Exception as e:
                logger.error(f"Failed to release orphaned handle {handle.handle_id[:8]}: {e}", exc_info=True)
        finally:
            settled.set()

    def _wait_for_orphan(self, descriptor: ModelDescriptor) -> None:
        """
        Blocks until an abandoned construction has settled, for at most one load
        timeout. Raises OutOfResources without touching the FailureMark if the
        engine is still busy, since `descriptor` never got to load.
        """
        settled = self._orphan_settled
        if settled is None:
            return
        started = time.monotonic()
        if not settled.wait(self.load_timeout_sec):
            raise ModelServiceError(
                ErrorKind.OUT_OF_RESOURCES,
                f"Engine is still busy with an abandoned load; {descriptor.display_name} was not started",
                context={"model_id": descriptor.id, "engine_busy": True,
                         "waited_ms": int((time.monotonic() - started) * 1000)},
            )
        self._orphan_settled = None

    def _fail(self, descriptor: ModelDescriptor, error: ModelServiceError) -> None:
        with self._cond:
            self._last_error = error
        if error.kind == ErrorKind.MODEL_UNAVAILABLE:
            self._set_state(SlotState.EMPTY, None)
            logger.warning(error.describe())
            return
        self._set_state(SlotState.FAILED, descriptor)
        self.failures.mark_failed(descriptor.id, error.message)
        self.ledger.record_load_failed(descriptor, error.message)
        logger.error(error.describe())

    def _transition_to(self, descriptor: ModelDescriptor) -> EngineHandle:
        if self._handle is not None:
            self._unload_current()
        self._wait_for_orphan(descriptor)

        with self._cond:
            self._load_count += 1
        self._set_state(SlotState.LOADING, descriptor)
        self.status.begin_loading(descriptor.display_name)
        started = time.monotonic()
        try:
            path = self.locator.resolve(descriptor)
            if path is None:
                raise ModelServiceError(
                    ErrorKind.MODEL_UNAVAILABLE,
                    f"{descriptor.display_name} is not available on this device",
                    context={"model_id": descriptor.id, "reference_name": descriptor.reference_name},
                )
            access = validate_file_access(path)
            if not access.accessible:
                raise ModelServiceError(
                    ErrorKind.MODEL_UNAVAILABLE,
                    f"Model file for {descriptor.display_name} is not readable: {access.reason}",
                    context={"model_id": descriptor.id, **inspect_file(path)},
                )

            options = {
                "model_id": descriptor.id,
                "backend": descriptor.preferred_backend.value,
                "thinking": descriptor.thinking,
                "multimodal": descriptor.supports_multimodal_input,
                "max_tokens": descriptor.max_tokens,
            }
            future = self._load_executor.submit(self.engine.load, path, options)
            try:
                handle = future.result(timeout=self.load_timeout_sec)
            except FutureTimeout:
                future.cancel()
                settled = threading.Event()
                self._orphan_settled = settled
                future.add_done_callback(lambda f: self._release_orphan(f, settled))
                elapsed_ms = max(int((time.monotonic() - started) * 1000), int(self.load_timeout_sec * 1000))
                raise ModelServiceError(
                    ErrorKind.MODEL_LOAD_TIMEOUT,
                    f"Loading {descriptor.display_name} exceeded {self.load_timeout_sec}s",
                    context={"model_id": descriptor.id, **inspect_file(path), "elapsed_ms": elapsed_ms,
                             "timeout_ms": int(self.load_timeout_sec * 1000)},
                )
            except MemoryError as e:
                raise ModelServiceError(
                    ErrorKind.OUT_OF_RESOURCES,
                    f"Out of memory while loading {descriptor.display_name}",
                    context={"model_id": descriptor.id, **inspect_file(path), **_memory_context(),
                             "elapsed_ms": int((time.monotonic() - started) * 1000),
                             "exception": type(e).__name__},
                ) from e
            except Exception as e:
                raise ModelServiceError(
                    ErrorKind.MODEL_LOAD_FAILED,
                    f"Failed to load {descriptor.display_name}: {e}",
                    context={"model_id": descriptor.id, **inspect_file(path),
                             "elapsed_ms": int((time.monotonic() - started) * 1000),
                             "exception": type(e).__name__},
                ) from e
        except ModelServiceError as error:
            self._fail(descriptor, error)
            raise
        finally:
            self.status.end_loading()

        with self._cond:
            self._handle = handle
            self._descriptor = descriptor
            self._state = SlotState.READY
            self._loaded_at = int(time.time() * 1000)
            self._last_error = None
        self.ledger.record_loaded(descriptor, path)
        logger.info(f"Model {descriptor.id} loaded in {(time.monotonic() - started) * 1000:.0f}ms from {path}")
        return handle

    def unload(self, model_id: Optional[str] = None) -> bool:
        """
        Unloads the current model (only if it is `model_id`, when given).
        Waits for in-flight inference on it to finish. Returns True if a handle was released.
        """
        self._begin_transition()
        try:
            if self._handle is None:
                if self._state == SlotState.FAILED and (model_id is None or
                                                        (self._descriptor and self._descriptor.id == model_id)):
                    self._set_state(SlotState.EMPTY, None)
                return False
            if model_id is not None and self._descriptor.id != model_id:
                return False
            return self._unload_current() is not None
        finally:
            self._end_transition(lease=False)

    # --- inference ---

    def infer(self, descriptor: ModelDescriptor, handle: EngineHandle, inputs: GenerationInput,
              timeout_sec: Optional[float] = None) -> str:
        timeout = timeout_sec or self.inference_timeout_sec
        self.status.begin_processing()
        started = time.monotonic()
        future = self._infer_executor.submit(self.engine.infer, handle, inputs, timeout)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            if not future.cancel():
                # The engine is still using the handle; hold a lease until it returns.
                with self._cond:
                    self._active_leases += 1
                future.add_done_callback(lambda f: self._release_lease())
            error = ModelServiceError(
                ErrorKind.INFERENCE_TIMEOUT,
                f"Inference on {descriptor.display_name} exceeded {timeout}s",
                context={"model_id": descriptor.id, "elapsed_ms": int((time.monotonic() - started) * 1000),
                         "timeout_ms": int(timeout * 1000)},
            )
        except MemoryError as e:
            error = ModelServiceError(
                ErrorKind.OUT_OF_RESOURCES,
                f"Out of memory during inference on {descriptor.display_name}",
                context={"model_id": descriptor.id, **_memory_context(), "exception": type(e).__name__},
            )
        except Exception as e:
            error = ModelServiceError(
                ErrorKind.INFERENCE_FAILED,
                f"Inference on {descriptor.display_name} failed: {e}",
                context={"model_id": descriptor.id, "elapsed_ms": int((time.monotonic() - started) * 1000),
                         "exception": type(e).__name__},
            )
        finally:
            self.status.end_processing()

        with self._cond:
            self._last_error = error
        self.ledger.record_inference_failed(descriptor, error.message)
        logger.error(error.describe())
        raise error

    def shutdown(self) -> None:
        self.unload()
        self._load_executor.shutdown(wait=False, cancel_futures=True)
        self._infer_executor.shutdown(wait=False, cancel_futures=True)
        logger.info("Model slot manager shut down.")
