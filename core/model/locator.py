# pocketinfer/core/model/locator.py
import os
import time
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Union

from core.model.catalog import ModelCatalog
from core.model.failures import FailureRegistry
from core.model.storage import StorageBackend, REFERENCE_SUFFIX
from schemas.models import ModelDescriptor, ModelFileInfo
from utils.errors import ErrorKind
from utils.exceptions import ModelServiceError
from utils.formatting import format_bytes

logger = logging.getLogger(f"pocketinfer.{__name__}")

READ_PROBE_BYTES = 1024


class FileAccessResult(NamedTuple):
    accessible: bool
    reason: Optional[str] = None
    size: int = 0


def validate_file_access(path: Union[str, Path]) -> FileAccessResult:
    """
    A file is usable only if it exists, is a regular non-empty file and an
    actual read returns data. Permission checks alone miss storage that
    reports readable but fails on I/O.
    """
    file_path = Path(path)
    try:
        if not file_path.exists():
            return FileAccessResult(False, "File does not exist")
        if not file_path.is_file():
            return FileAccessResult(False, "Path is not a regular file")
        size = file_path.stat().st_size
        if size <= 0:
            return FileAccessResult(False, "File is empty", 0)
        with open(file_path, "rb") as f:
            chunk = f.read(READ_PROBE_BYTES)
        if not chunk:
            return FileAccessResult(False, "Read returned no data", size)
        return FileAccessResult(True, None, size)
    except PermissionError as e:
        return FileAccessResult(False, f"Permission denied: {e}")
    except OSError as e:
        return FileAccessResult(False, f"I/O error: {e}")


def inspect_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Diagnostic map for a model file, attached to load failures and setup reports."""
    file_path = Path(path)
    access = validate_file_access(file_path)
    info: Dict[str, Any] = {
        "file_path": str(file_path),
        "exists": file_path.exists(),
        "is_file": file_path.is_file(),
        "size": access.size,
        "formatted_size": format_bytes(access.size),
        "readable": access.accessible,
    }
    if access.reason:
        info["access_problem"] = access.reason
    try:
        info["last_modified"] = datetime.fromtimestamp(file_path.stat().st_mtime).isoformat()
    except OSError:
        info["last_modified"] = None
    return info


class ResourceLocator:
    """
    Maps descriptors to artifact paths through indirection records spread over
    an ordered list of storage backends (most persistent first). Owns no model bytes.
    """

    def __init__(self,
                 backends: List[StorageBackend],
                 catalog: ModelCatalog,
                 failure_registry: Optional[FailureRegistry] = None):
        if not backends:
            raise ValueError("ResourceLocator needs at least one storage backend.")
        self.backends: List[StorageBackend] = sorted(backends, key=lambda b: b.rank)
        self.catalog = catalog
        self.failures = failure_registry
        self._write_lock = threading.RLock()

    # --- resolution ---

    def resolve(self, descriptor: ModelDescriptor) -> Optional[str]:
        """
        Returns the first valid artifact path named by a record for `descriptor`,
        or None. Every backend is checked before giving up; stale records are
        skipped and left for cleanup_stale_references().
        """
        record_name = descriptor.reference_name
        for backend in self.backends:
            target = backend.try_read(record_name)
            if target is None:
                continue
            access = validate_file_access(target)
            if access.accessible:
                return target
            logger.debug(f"Ignoring stale reference {record_name} in '{backend.name}' -> {target}: {access.reason}")
        return None

    def is_available(self, descriptor: ModelDescriptor) -> bool:
        return self.resolve(descriptor) is not None

    def list_available(self, include_failed: bool = False) -> List[ModelDescriptor]:
        failed_ids = self.failures.get_failed_ids() if (self.failures and not include_failed) else set()
        available: Dict[str, ModelDescriptor] = {}
        for descriptor in self.catalog:
            if descriptor.id in available or descriptor.id in failed_ids:
                continue
            if self.resolve(descriptor) is not None:
                available[descriptor.id] = descriptor
        return sorted(available.values(), key=lambda d: d.display_name.lower())

    # --- mutation ---

    def create_reference(self, descriptor: ModelDescriptor, actual_path: Union[str, Path]) -> str:
        """
        Points `descriptor` at `actual_path` and returns the path as resolve() now reports it.
        Raises ModelServiceError (ModelUnavailable / StorageAccessDenied).
        """
        target = str(Path(actual_path).absolute())
        access = validate_file_access(target)
        if not access.accessible:
            raise ModelServiceError(
                ErrorKind.MODEL_UNAVAILABLE,
                f"Cannot reference {descriptor.display_name}: {access.reason}",
                context=inspect_file(target),
            )

        record_name = descriptor.reference_name
        with self._write_lock:
            written_to: Optional[StorageBackend] = None
            for backend in self.backends:
                if backend.try_read(record_name) == target:
                    written_to = backend
                    logger.debug(f"Reusing existing reference for {descriptor.id} in '{backend.name}'")
                    break

            if written_to is None:
                attempts: Dict[str, str] = {}
                for backend in self.backends:
                    if not backend.probe_writable():
                        attempts[backend.name] = "write probe failed"
                        continue
                    if backend.try_write(record_name, target):
                        written_to = backend
                        break
                    attempts[backend.name] = "record write failed"
                if written_to is None:
                    raise ModelServiceError(
                        ErrorKind.STORAGE_ACCESS_DENIED,
                        f"No reference directory accepted a record for {descriptor.display_name}",
                        context={"target": target, **{f"dir.{k}": v for k, v in attempts.items()}},
                    )
                logger.info(f"Reference for {descriptor.id} written to '{written_to.name}' -> {target}")

            for backend in self.backends:
                if backend is not written_to:
                    backend.remove(record_name)

            resolved = self.resolve(descriptor)
            if resolved != target:
                raise ModelServiceError(
                    ErrorKind.MODEL_UNAVAILABLE,
                    f"Reference for {descriptor.display_name} did not resolve after writing",
                    context={"target": target, "resolved": resolved, "backend": written_to.name},
                )
            return resolved

    def remove_reference(self, descriptor: ModelDescriptor) -> bool:
        """Removes the record from every backend. True if anything was deleted."""
        with self._write_lock:
            removed = False
            for backend in self.backends:
                removed = backend.remove(descriptor.reference_name) or removed
            return removed

    def migrate_references(self) -> int:
        """
        Moves records from less persistent backends into the most persistent
        writable one, leaving records that already exist there untouched.
        """
        with self._write_lock:
            target_backend = next((b for b in self.backends if b.probe_writable()), None)
            if target_backend is None:
                logger.warning("No writable reference directory; skipping reference migration.")
                return 0

            existing = set(target_backend.list_records())
            migrated = 0
            for backend in self.backends:
                if backend.rank <= target_backend.rank:
                    continue
                for record_name in backend.list_records():
                    if record_name in existing:
                        continue
                    content = backend.try_read(record_name)
                    if content is None:
                        continue
                    if target_backend.try_write(record_name, content):
                        backend.remove(record_name)
                        existing.add(record_name)
                        migrated += 1
                        logger.debug(f"Migrated reference {record_name} from '{backend.name}' to '{target_backend.name}'")
            if migrated:
                logger.info(f"Migrated {migrated} model references to '{target_backend.name}'")
            return migrated

    def scan_and_create_references(self, scan_dirs: Iterable[Union[str, Path]],
                                   extensions: Iterable[str] = (".task",)) -> int:
        """
        Creates references for catalog artifacts found in `scan_dirs` that do not
        resolve yet. Unknown files are logged and skipped.
        """
        start = time.time()
        extensions = tuple(e.lower() for e in extensions)
        created = 0
        scanned_locations = 0
        for raw_dir in scan_dirs or []:
            directory = Path(os.path.expanduser(str(raw_dir)))
            if not directory.is_dir():
                continue
            scanned_locations += 1
            try:
                candidates = [p for p in directory.iterdir() if p.name.lower().endswith(extensions)]
            except OSError as e:
                logger.warning(f"Could not scan {directory}: {e}")
                continue

            for candidate in candidates:
                descriptor = self.catalog.find_by_file_name(candidate.name)
                if descriptor is None:
                    logger.debug(f"Unknown model file during scan: {candidate}")
                    continue
                if self.resolve(descriptor) is not None:
                    continue
                if not validate_file_access(candidate).accessible:
                    continue
                try:
                    self.create_reference(descriptor, candidate)
                    created += 1
                    logger.info(f"Created reference for {descriptor.display_name} found at {candidate}")
                except ModelServiceError as e:
                    logger.warning(f"Failed to create reference for {candidate}: {e.message}")

        logger.debug(f"Scan finished in {(time.time() - start) * 1000:.0f}ms: "
                     f"{scanned_locations} locations, {created} new references")
        return created

    def find_unknown_references(self) -> List[Dict[str, Any]]:
        unknown = []
        for backend in self.backends:
            for record_name in backend.list_records():
                if self.catalog.find_by_reference_name(record_name) is None:
                    unknown.append({
                        "backend": backend.name,
                        "record": record_name,
                        "file_name": record_name[:-len(REFERENCE_SUFFIX)],
                        "target": backend.try_read(record_name),
                    })
        if unknown:
            logger.warning(f"Found {len(unknown)} reference files matching no known model")
        return unknown

    def cleanup_stale_references(self) -> int:
        """Deletes records whose target no longer validates."""
        removed = 0
        with self._write_lock:
            for backend in self.backends:
                for record_name in backend.list_records():
                    target = backend.try_read(record_name)
                    if target is not None and validate_file_access(target).accessible:
                        continue
                    if backend.remove(record_name):
                        removed += 1
        if removed:
            logger.info(f"Removed {removed} stale model references")
        return removed

    # --- diagnostics ---

    def get_model_file_info(self, descriptor: ModelDescriptor) -> Optional[ModelFileInfo]:
        path = self.resolve(descriptor)
        if path is None:
            return None
        return ModelFileInfo.for_path(descriptor.file_name, path, validate_file_access(path).size)

    def validate_model_setup(self, descriptor: ModelDescriptor) -> Dict[str, Any]:
        records = []
        for backend in self.backends:
            target = backend.try_read(descriptor.reference_name)
            entry: Dict[str, Any] = {
                "backend": backend.name,
                "directory": str(backend.path),
                "directory_exists": backend.exists(),
                "record_exists": target is not None,
            }
            if target is not None:
                access = validate_file_access(target)
                entry.update(target=target, valid=access.accessible, reason=access.reason)
            records.append(entry)

        resolved = self.resolve(descriptor)
        result: Dict[str, Any] = {
            "model_id": descriptor.id,
            "display_name": descriptor.display_name,
            "reference_name": descriptor.reference_name,
            "references": records,
            "resolved_path": resolved,
            "is_available": resolved is not None,
            "is_failed": self.failures.is_failed(descriptor.id) if self.failures else False,
        }
        if resolved:
            result["file"] = inspect_file(resolved)
        elif any(r["record_exists"] for r in records):
            result["recommendation"] = "References exist but none points to a readable file; re-download the model."
        else:
            result["recommendation"] = "No reference found; download the model or place the file in a scanned directory."
        return result

    def describe_backends(self) -> List[Dict[str, Any]]:
        return [backend.describe() for backend in self.backends]
