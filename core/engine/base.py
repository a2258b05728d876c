# pocketinfer/core/engine/base.py
import os
import time
import uuid
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from schemas.engine import EngineInfo, GenerationInput

logger = logging.getLogger(f"pocketinfer.{__name__}")


class EngineHandle:
    """
    Opaque token for one loaded model instance, returned by IEngine.load().
    Only the engine that produced it looks inside `native`.
    """

    def __init__(self, model_path: str, backend: str, native: Any = None):
        self.handle_id = uuid.uuid4().hex
        self.model_path = model_path
        self.backend = backend
        self.native = native
        self.created_at = int(time.time() * 1000)
        self.released = False

    def __repr__(self) -> str:
        return f"EngineHandle(id={self.handle_id[:8]}, path='{self.model_path}', released={self.released})"


# --- Engine Interfaces and Abstract Classes ---
class IEngine(ABC):
    """
    Interface for on-device inference engines.
    The numerical work is a black box; the rest of the system only sees
    load -> handle, infer(handle) -> text and release(handle).
    """

    @abstractmethod
    def initialize(self, engine_config: Dict[str, Any]) -> bool:
        """
        Initializes the inference engine with global configurations.
        Args:
            engine_config (Dict[str, Any]): Configuration specific to the engine instance.
        Returns:
            bool: True if initialization was successful, False otherwise.
        """
        raise NotImplementedError

    @abstractmethod
    def load(self, model_path: str, options: Optional[Dict[str, Any]] = None) -> EngineHandle:
        """
        Constructs an inference handle for the model file.
        Raises on failure; MemoryError signals native allocation failure.
        """
        raise NotImplementedError

    @abstractmethod
    def infer(self, handle: EngineHandle, inputs: GenerationInput, timeout_sec: float) -> str:
        """
        Runs one generation. `timeout_sec` is advisory for engines able to stop
        cooperatively; callers enforce it regardless.
        """
        raise NotImplementedError

    @abstractmethod
    def release(self, handle: EngineHandle) -> bool:
        """Frees the native resources behind `handle`. Idempotent."""
        raise NotImplementedError

    @abstractmethod
    def get_info(self) -> EngineInfo:
        raise NotImplementedError

    @abstractmethod
    def validate_model_file(self, file_path: str) -> bool:
        """Validates the given model file path."""
        pass


class BaseEngine(IEngine):
    """
    Abstract base class providing common functionalities for inference engines:
    configuration, handle bookkeeping and timed smoke tests.
    """
    ENGINE_NAME = "base"

    def __init__(self):
        self._engine_config: Dict[str, Any] = {}
        self._initialized: bool = False
        self._handles: Dict[str, EngineHandle] = {}
        self._lock = threading.Lock()

    def initialize(self, engine_config: Dict[str, Any]) -> bool:
        self._engine_config = engine_config or {}
        self._initialized = True
        logger.info(f"{self.__class__.__name__} initialized with config: {self._engine_config}")
        return True

    def is_initialized(self) -> bool:
        return self._initialized

    @abstractmethod
    def _load_native(self, model_path: str, options: Dict[str, Any]) -> Any:
        """Engine-specific model construction."""
        raise NotImplementedError

    @abstractmethod
    def _generate(self, native: Any, inputs: GenerationInput, timeout_sec: float) -> str:
        """Engine-specific generation."""
        raise NotImplementedError

    def _release_native(self, native: Any) -> None:
        """Engine-specific teardown. Nothing to free by default."""

    def load(self, model_path: str, options: Optional[Dict[str, Any]] = None) -> EngineHandle:
        if not self._initialized:
            raise RuntimeError(f"Engine {self.__class__.__name__} not initialized. Call initialize() first.")
        if not self.validate_model_file(model_path):
            raise FileNotFoundError(f"Model file not usable: {model_path}")

        options = options or {}
        logger.info(f"Loading model from {model_path} with options: {options}")
        native = self._load_native(model_path, options)
        handle = EngineHandle(model_path=model_path, backend=options.get("backend", "CPU"), native=native)
        with self._lock:
            self._handles[handle.handle_id] = handle
        logger.info(f"Model {model_path} loaded into {self.__class__.__name__} ({handle.handle_id[:8]}).")
        return handle

    def infer(self, handle: EngineHandle, inputs: GenerationInput, timeout_sec: float) -> str:
        if handle.released or handle.handle_id not in self._handles:
            raise ValueError(f"Handle {handle.handle_id[:8]} is not live in {self.__class__.__name__}.")
        return self._generate(handle.native, inputs, timeout_sec)

    def release(self, handle: EngineHandle) -> bool:
        with self._lock:
            live = self._handles.pop(handle.handle_id, None)
        if live is None:
            return True
        self._release_native(live.native)
        live.released = True
        live.native = None
        logger.info(f"{self.__class__.__name__} released handle {handle.handle_id[:8]} ({handle.model_path}).")
        return True

    def live_handle_count(self) -> int:
        with self._lock:
            return len(self._handles)

    def validate_model_file(self, model_path: str) -> bool:
        if not os.path.exists(model_path):
            logger.error(f"Model file not found: {model_path}")
            return False
        if not os.path.isfile(model_path):
            logger.error(f"Path is not a file: {model_path}")
            return False
        if os.path.getsize(model_path) == 0:
            logger.error(f"Model file is empty: {model_path}")
            return False
        return True

    def get_info(self) -> EngineInfo:
        return EngineInfo(
            engine_name=self.ENGINE_NAME,
            loaded_handles=self.live_handle_count(),
            available_devices=["CPU"],
            engine_status="ready" if self._initialized else "uninitialized",
        )
