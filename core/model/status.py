# pocketinfer/core/model/status.py
import time
import threading
from typing import Any, Dict, Optional

from schemas.models import ModelLoadingInfo


def _now_ms() -> int:
    return int(time.time() * 1000)


class ProcessingStatus:
    """
    Advisory flags for status reporting: whether inference calls are in flight
    and whether a slot transition is in flight, each with its start time.
    Exclusion is enforced by the slot manager, not here.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._processing_count = 0
        self._processing_started_at: Optional[int] = None
        self._loading_model: Optional[str] = None
        self._loading_started_at: Optional[int] = None

    def begin_processing(self) -> None:
        with self._lock:
            if self._processing_count == 0:
                self._processing_started_at = _now_ms()
            self._processing_count += 1

    def end_processing(self) -> None:
        with self._lock:
            self._processing_count = max(0, self._processing_count - 1)
            if self._processing_count == 0:
                self._processing_started_at = None

    def begin_loading(self, model_name: str) -> None:
        with self._lock:
            self._loading_model = model_name
            self._loading_started_at = _now_ms()

    def end_loading(self) -> None:
        with self._lock:
            self._loading_model = None
            self._loading_started_at = None

    @property
    def is_processing(self) -> bool:
        return self._processing_count > 0

    @property
    def is_model_loading(self) -> bool:
        return self._loading_started_at is not None

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "is_processing": self._processing_count > 0,
                "active_requests": self._processing_count,
                "processing_started_at": self._processing_started_at,
                "is_model_loading": self._loading_started_at is not None,
                "loading_model": self._loading_model,
                "loading_started_at": self._loading_started_at,
            }

    def loading_info(self, timeout_sec: float) -> ModelLoadingInfo:
        timeout_ms = int(timeout_sec * 1000)
        with self._lock:
            started = self._loading_started_at
            model_name = self._loading_model
        if started is None:
            return ModelLoadingInfo(is_loading=False, timeout_ms=timeout_ms)
        elapsed = max(0, _now_ms() - started)
        progress = min(100.0, elapsed * 100.0 / timeout_ms) if timeout_ms > 0 else 100.0
        return ModelLoadingInfo(
            is_loading=True,
            elapsed_ms=elapsed,
            timeout_ms=timeout_ms,
            progress_percentage=round(progress, 1),
            model_name=model_name,
        )
