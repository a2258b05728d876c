# pocketinfer/core/model/downloader.py
import os
import time
import logging
import threading
from pathlib import Path
from typing import Callable, Dict, Optional

import requests
from filelock import FileLock, Timeout

from core.model.ledger import PersistenceLedger
from core.model.locator import ResourceLocator, validate_file_access
from core.model.storage import select_download_directory
from schemas.models import (
    DownloadProgress,
    DownloadResultStatus,
    DownloadStatusEnum,
    ModelDescriptor,
    ModelDownloadResult,
)
from utils.errors import ErrorKind
from utils.exceptions import ModelServiceError
from utils.formatting import format_bytes

logger = logging.getLogger(f"pocketinfer.{__name__}")

ProgressCallback = Callable[[int, int, int], None]


def compute_percent(bytes_done: int, bytes_total: int) -> int:
    """0 when the total is unknown, otherwise clamped to 0..100."""
    if bytes_total <= 0:
        return 0
    return max(0, min(100, int(bytes_done * 100 / bytes_total)))


class DownloadProgressTracker:
    """Last progress sample per model, polled by the status endpoint."""

    def __init__(self):
        self._lock = threading.Lock()
        self._progress: Dict[str, DownloadProgress] = {}

    def _put(self, model_id: str, **fields) -> None:
        with self._lock:
            current = self._progress.get(model_id) or DownloadProgress(model_id=model_id)
            self._progress[model_id] = current.model_copy(update={**fields, "updated_at": int(time.time() * 1000)})

    def start(self, model_id: str) -> None:
        self._put(model_id, bytes_done=0, bytes_total=0, percent=0, state="RUNNING", error=None)

    def update(self, model_id: str, bytes_done: int, bytes_total: int, percent: int) -> None:
        self._put(model_id, bytes_done=bytes_done, bytes_total=bytes_total, percent=percent)

    def complete(self, model_id: str, size: int) -> None:
        self._put(model_id, bytes_done=size, bytes_total=size, percent=100, state="COMPLETED")

    def fail(self, model_id: str, error: str) -> None:
        self._put(model_id, state="FAILED", error=error)

    def get(self, model_id: str) -> Optional[DownloadProgress]:
        with self._lock:
            return self._progress.get(model_id)

    def is_active(self, model_id: str) -> bool:
        progress = self.get(model_id)
        return progress is not None and progress.state == "RUNNING"


class ModelDownloader:
    """
    Fetches model artifacts onto local storage and registers them with the locator.

    The body streams into `<file>.part` and is renamed onto the final name only
    once complete, so a failed transfer never passes for an existing artifact.
    A file lock on `<file>.lock` serialises concurrent downloads of one artifact.
    """

    def __init__(self,
                 locator: ResourceLocator,
                 ledger: PersistenceLedger,
                 shared_dir: Optional[str],
                 app_dir: str,
                 connect_timeout_sec: float = 30,
                 read_timeout_sec: float = 300,
                 chunk_size: int = 8192,
                 lock_timeout_sec: float = 5,
                 auth_token: Optional[str] = None,
                 session: Optional[requests.Session] = None,
                 progress_tracker: Optional[DownloadProgressTracker] = None):
        self.locator = locator
        self.ledger = ledger
        self.shared_dir = shared_dir
        self.app_dir = app_dir
        self.timeout = (connect_timeout_sec, read_timeout_sec)
        self.chunk_size = chunk_size
        self.lock_timeout_sec = lock_timeout_sec
        self.auth_token = auth_token
        self.session = session or requests.Session()
        self.progress = progress_tracker or DownloadProgressTracker()

    def target_path(self, descriptor: ModelDescriptor) -> Path:
        directory = select_download_directory(self.shared_dir, self.app_dir)
        self.ledger.set_models_directory(str(directory))
        return directory / descriptor.file_name

    def download(self, descriptor: ModelDescriptor,
                 on_progress: Optional[ProgressCallback] = None) -> ModelDownloadResult:
        target = self.target_path(descriptor)
        lock = FileLock(f"{target}.lock", timeout=self.lock_timeout_sec)
        try:
            with lock:
                if validate_file_access(target).accessible:
                    return self._register_existing(descriptor, target)
                return self._transfer(descriptor, target, on_progress)
        except Timeout:
            raise ModelServiceError(
                ErrorKind.DOWNLOAD_FAILED,
                f"Another download of {descriptor.display_name} is already in progress",
                context={"lock_file": f"{target}.lock", "lock_timeout_sec": self.lock_timeout_sec},
            )

    def _register_existing(self, descriptor: ModelDescriptor, target: Path) -> ModelDownloadResult:
        size = target.stat().st_size
        path = self.locator.create_reference(descriptor, target)
        info = self.ledger.get_info(descriptor.id)
        if info is None or info.download_status != DownloadStatusEnum.COMPLETED or info.download_path != path:
            self.ledger.record_download_completed(descriptor, path, size)
        self.progress.complete(descriptor.id, size)
        logger.info(f"{descriptor.display_name} already present at {path}; skipped transfer")
        return ModelDownloadResult(
            success=True,
            status=DownloadResultStatus.ALREADY_EXISTS,
            model_id=descriptor.id,
            path=path,
            size_bytes=size,
            formatted_size=format_bytes(size),
            message="Model file already exists",
        )

    def _transfer(self, descriptor: ModelDescriptor, target: Path,
                  on_progress: Optional[ProgressCallback]) -> ModelDownloadResult:
        part = Path(f"{target}.part")
        headers = {}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"

        self.progress.start(descriptor.id)
        started = time.time()
        bytes_done = 0
        bytes_total = 0
        try:
            logger.info(f"Downloading {descriptor.display_name} from {descriptor.source_url}")
            with self.session.get(descriptor.source_url, stream=True, timeout=self.timeout, headers=headers) as response:
                response.raise_for_status()
                bytes_total = int(response.headers.get("Content-Length") or 0)
                self.ledger.record_download_started(descriptor, str(target), bytes_total)

                with open(part, "wb") as f:
                    for chunk in response.iter_content(chunk_size=self.chunk_size):
                        if not chunk:
                            continue
                        f.write(chunk)
                        bytes_done += len(chunk)
                        percent = compute_percent(bytes_done, bytes_total)
                        self.progress.update(descriptor.id, bytes_done, bytes_total, percent)
                        if on_progress:
                            on_progress(bytes_done, bytes_total, percent)

            if bytes_total and bytes_done != bytes_total:
                raise IOError(f"Transfer ended after {bytes_done} of {bytes_total} bytes")
            if bytes_done == 0:
                raise IOError("Server returned an empty body")

            os.replace(part, target)
            if not bytes_total:
                bytes_total = bytes_done
                if on_progress:
                    on_progress(bytes_done, bytes_total, 100)

            path = self.locator.create_reference(descriptor, target)
            self.ledger.record_download_completed(descriptor, path, bytes_done)
            self.progress.complete(descriptor.id, bytes_done)
        except (requests.RequestException, OSError) as e:
            message = f"{type(e).__name__}: {e}"
            self._fail(descriptor, message)
            raise ModelServiceError(
                ErrorKind.DOWNLOAD_FAILED,
                f"Download of {descriptor.display_name} failed",
                context={
                    "url": descriptor.source_url,
                    "target": str(target),
                    "bytes_done": bytes_done,
                    "bytes_total": bytes_total,
                    "elapsed_ms": int((time.time() - started) * 1000),
                    "exception": type(e).__name__,
                    "error": str(e),
                },
            ) from e
        except ModelServiceError as e:
            self._fail(descriptor, e.message)
            raise
        except Exception as e:
            logger.error(f"Unexpected error downloading {descriptor.display_name}: {e}", exc_info=True)
            self._fail(descriptor, f"{type(e).__name__}: {e}")
            raise ModelServiceError(
                ErrorKind.DOWNLOAD_FAILED,
                f"Download of {descriptor.display_name} failed",
                context={
                    "url": descriptor.source_url,
                    "target": str(target),
                    "bytes_done": bytes_done,
                    "bytes_total": bytes_total,
                    "exception": type(e).__name__,
                    "error": str(e),
                },
            ) from e

        logger.info(f"Downloaded {descriptor.display_name}: {format_bytes(bytes_done)} "
                    f"in {time.time() - started:.1f}s -> {path}")
        return ModelDownloadResult(
            success=True,
            status=DownloadResultStatus.DOWNLOADED,
            model_id=descriptor.id,
            path=path,
            size_bytes=bytes_done,
            formatted_size=format_bytes(bytes_done),
            message="Model downloaded successfully",
        )

    def _fail(self, descriptor: ModelDescriptor, message: str) -> None:
        self.ledger.record_download_failed(descriptor, message)
        self.progress.fail(descriptor.id, message)
