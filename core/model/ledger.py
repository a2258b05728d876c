# pocketinfer/core/model/ledger.py
import os
import time
import logging
import threading
from typing import Any, Dict, List, Optional

from core.database.base import DatabaseService
from schemas.models import (
    DownloadStatusEnum,
    LedgerEvent,
    ModelDescriptor,
    ModelStatistics,
    PersistedModelInfo,
)
from utils.formatting import format_bytes

logger = logging.getLogger(f"pocketinfer.{__name__}")

LEDGER_TABLE = "model_ledger"
EVENTS_TABLE = "model_events"
META_TABLE = "ledger_meta"

META_LAST_LOADED = "last_loaded_model"
META_MODELS_DIRECTORY = "models_directory"


def _now_ms() -> int:
    return int(time.time() * 1000)


class PersistenceLedger:
    """
    Durable per-model metadata: where the artifact lives, its size, the
    download/load lifecycle and an append-only event history.

    Every mutation is committed before the method returns, so after a crash
    the ledger reflects the last completed operation and never runs ahead of it.
    """

    def __init__(self, db_service: DatabaseService):
        self.db = db_service
        self._lock = threading.RLock()

    # --- internal helpers ---

    def _row_to_info(self, row: Dict[str, Any]) -> PersistedModelInfo:
        return PersistedModelInfo(**row)

    def _ensure_entry(self, descriptor: ModelDescriptor) -> None:
        if self.db.find_one(LEDGER_TABLE, {"model_id": descriptor.id}) is None:
            self.db.insert(LEDGER_TABLE, {
                "model_id": descriptor.id,
                "display_name": descriptor.display_name,
                "file_name": descriptor.file_name,
            })

    def _update(self, descriptor: ModelDescriptor, updates: Dict[str, Any]) -> bool:
        with self._lock:
            self._ensure_entry(descriptor)
            return self.db.update(LEDGER_TABLE, {"model_id": descriptor.id}, updates) > 0

    def _event(self, model_id: str, event: str, detail: Optional[str] = None) -> None:
        self.db.insert(EVENTS_TABLE, {
            "model_id": model_id,
            "event": event,
            "detail": detail,
            "timestamp": _now_ms(),
        })

    def _set_meta(self, key: str, value: Optional[str]) -> None:
        self.db.upsert(META_TABLE, {"key": key, "value": value}, conflict_columns=("key",))

    def _get_meta(self, key: str) -> Optional[str]:
        row = self.db.find_one(META_TABLE, {"key": key})
        return row["value"] if row else None

    # --- download transitions ---

    def record_download_started(self, descriptor: ModelDescriptor, download_path: str, expected_size: int = 0) -> None:
        with self._lock:
            self._update(descriptor, {
                "download_path": download_path,
                "file_size": max(0, int(expected_size or 0)),
                "download_status": DownloadStatusEnum.IN_PROGRESS.value,
                "status_message": None,
            })
            self._event(descriptor.id, "download_started", f"expected_size={expected_size}")
        logger.info(f"Download started for {descriptor.id} -> {download_path}")

    def record_download_completed(self, descriptor: ModelDescriptor, download_path: str, file_size: int) -> None:
        now = _now_ms()
        with self._lock:
            self._update(descriptor, {
                "download_path": download_path,
                "file_size": int(file_size),
                "download_timestamp": now,
                "last_accessed_timestamp": now,
                "download_status": DownloadStatusEnum.COMPLETED.value,
                "status_message": None,
            })
            self._event(descriptor.id, "download_completed", f"size={file_size}")
        logger.info(f"Download completed for {descriptor.id}: {format_bytes(file_size)} at {download_path}")

    def record_download_failed(self, descriptor: ModelDescriptor, message: str) -> None:
        with self._lock:
            self._update(descriptor, {
                "download_status": DownloadStatusEnum.FAILED.value,
                "status_message": message,
            })
            self._event(descriptor.id, "download_failed", message)
        logger.warning(f"Download failed for {descriptor.id}: {message}")

    # --- load transitions ---

    def record_loaded(self, descriptor: ModelDescriptor, model_path: Optional[str] = None) -> None:
        """
        Marks `descriptor` loaded. A model that was never downloaded through the
        pipeline (found by a scan) gets its entry built from `model_path`.
        """
        now = _now_ms()
        updates: Dict[str, Any] = {"is_loaded": True, "load_timestamp": now, "last_accessed_timestamp": now}
        with self._lock:
            current = self.get_info(descriptor.id)
            if model_path and (current is None or current.download_status != DownloadStatusEnum.COMPLETED
                               or current.download_path != model_path):
                try:
                    size = os.path.getsize(model_path)
                except OSError:
                    size = 0
                updates.update(
                    download_path=model_path,
                    file_size=size,
                    download_status=DownloadStatusEnum.COMPLETED.value,
                    download_timestamp=(current.download_timestamp if current and current.download_timestamp else now),
                )
            self._update(descriptor, updates)
            self._event(descriptor.id, "loaded", model_path)
            self._set_meta(META_LAST_LOADED, descriptor.id)

    def record_unloaded(self, descriptor: ModelDescriptor) -> None:
        with self._lock:
            self._update(descriptor, {"is_loaded": False})
            self._event(descriptor.id, "unloaded")

    def record_load_failed(self, descriptor: ModelDescriptor, message: str) -> None:
        with self._lock:
            self._update(descriptor, {"is_loaded": False, "status_message": message})
            self._event(descriptor.id, "load_failed", message)

    def record_inference_failed(self, descriptor: ModelDescriptor, message: str) -> None:
        with self._lock:
            self._update(descriptor, {"status_message": message})
            self._event(descriptor.id, "inference_failed", message)

    def record_accessed(self, descriptor: ModelDescriptor) -> None:
        self._update(descriptor, {"last_accessed_timestamp": _now_ms()})

    # --- queries ---

    def get_info(self, model_id: str) -> Optional[PersistedModelInfo]:
        row = self.db.find_one(LEDGER_TABLE, {"model_id": model_id})
        return self._row_to_info(row) if row else None

    def get_all_info(self) -> Dict[str, PersistedModelInfo]:
        return {row["model_id"]: self._row_to_info(row) for row in self.db.find(LEDGER_TABLE, order_by="model_id ASC")}

    def get_events(self, model_id: Optional[str] = None, limit: Optional[int] = None) -> List[LedgerEvent]:
        filters = {"model_id": model_id} if model_id else None
        rows = self.db.find(EVENTS_TABLE, filters=filters, order_by="id ASC", limit=limit)
        return [LedgerEvent(model_id=r["model_id"], event=r["event"], detail=r["detail"], timestamp=r["timestamp"])
                for r in rows]

    def get_statistics(self) -> ModelStatistics:
        entries = list(self.get_all_info().values())
        downloaded = [e for e in entries if e.download_status == DownloadStatusEnum.COMPLETED]
        download_times = [e.download_timestamp for e in downloaded if e.download_timestamp]
        access_times = [e.last_accessed_timestamp for e in entries if e.last_accessed_timestamp]
        total_size = sum(e.file_size for e in downloaded)
        return ModelStatistics(
            total_models=len(entries),
            downloaded_models=len(downloaded),
            loaded_models=sum(1 for e in entries if e.is_loaded),
            total_size=total_size,
            formatted_total_size=format_bytes(total_size),
            oldest_download=min(download_times) if download_times else None,
            newest_download=max(download_times) if download_times else None,
            last_accessed=max(access_times) if access_times else None,
        )

    def get_last_loaded_model(self) -> Optional[str]:
        return self._get_meta(META_LAST_LOADED)

    def set_models_directory(self, directory: str) -> None:
        self._set_meta(META_MODELS_DIRECTORY, directory)

    def get_models_directory(self) -> Optional[str]:
        return self._get_meta(META_MODELS_DIRECTORY)

    # --- maintenance ---

    def remove(self, descriptor: ModelDescriptor) -> bool:
        """Drops the entry after an explicit model deletion."""
        with self._lock:
            removed = self.db.delete(LEDGER_TABLE, {"model_id": descriptor.id}) > 0
            if removed:
                self._event(descriptor.id, "removed")
            return removed

    def cleanup_deleted(self) -> int:
        """
        Removes entries whose recorded file is verifiably absent.
        Entries without a recorded path carry no file to check and are kept.
        """
        removed = 0
        with self._lock:
            for model_id, info in self.get_all_info().items():
                if not info.download_path:
                    continue
                if os.path.exists(info.download_path):
                    continue
                if self.db.delete(LEDGER_TABLE, {"model_id": model_id}) > 0:
                    self._event(model_id, "removed", "file no longer exists")
                    removed += 1
                    logger.info(f"Dropped ledger entry for {model_id}: {info.download_path} no longer exists")
        return removed

    def reconcile(self) -> Dict[str, int]:
        """
        Startup pass: nothing is loaded in a fresh process, interrupted downloads
        whose file reached the expected size are promoted, and completed entries
        whose file size changed are marked CORRUPTED.
        """
        stats = {"cleared_loaded": 0, "promoted": 0, "corrupted": 0}
        with self._lock:
            stats["cleared_loaded"] = self.db.update(LEDGER_TABLE, {"is_loaded": True}, {"is_loaded": False})
            for model_id, info in self.get_all_info().items():
                if not info.download_path or not os.path.isfile(info.download_path):
                    continue
                actual = os.path.getsize(info.download_path)
                if info.download_status == DownloadStatusEnum.IN_PROGRESS and info.file_size and actual == info.file_size:
                    self.db.update(LEDGER_TABLE, {"model_id": model_id}, {
                        "download_status": DownloadStatusEnum.COMPLETED.value,
                        "download_timestamp": _now_ms(),
                    })
                    self._event(model_id, "download_completed", "recovered at startup")
                    stats["promoted"] += 1
                elif info.download_status == DownloadStatusEnum.COMPLETED and info.file_size and actual != info.file_size:
                    self.db.update(LEDGER_TABLE, {"model_id": model_id}, {
                        "download_status": DownloadStatusEnum.CORRUPTED.value,
                        "status_message": f"Size on disk {actual} differs from recorded {info.file_size}",
                    })
                    stats["corrupted"] += 1
                    logger.warning(f"Ledger entry for {model_id} marked CORRUPTED ({actual} != {info.file_size} bytes)")
        logger.info(f"Ledger reconciled: {stats}")
        return stats
