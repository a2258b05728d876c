# pocketinfer/core/model/storage.py
import os
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

logger = logging.getLogger(f"pocketinfer.{__name__}")

REFERENCE_SUFFIX = ".ref"
PROBE_FILE_NAME = ".permission_test"


def probe_directory(directory: Path) -> bool:
    """
    Creates `directory` if needed, then writes and deletes a probe file.
    Permission bits alone are not trusted; only a completed write counts.
    """
    try:
        directory.mkdir(parents=True, exist_ok=True)
        if not directory.is_dir():
            return False
        probe = directory / PROBE_FILE_NAME
        probe.write_text("probe", encoding="utf-8")
        probe.unlink()
        return True
    except OSError as e:
        logger.warning(f"Write probe failed for {directory}: {e}")
        return False


class StorageBackend:
    """
    One candidate directory holding indirection records.
    A record is a small text file `<artifact file name>.ref` whose content is the
    absolute path of the artifact. Every method recovers locally from OSError.
    """

    def __init__(self, name: str, path: Union[str, Path], rank: int = 0):
        self.name = name
        self.path = Path(os.path.expanduser(str(path))).absolute()
        self.rank = rank

    def __repr__(self) -> str:
        return f"StorageBackend(name={self.name!r}, path='{self.path}', rank={self.rank})"

    def record_path(self, record_name: str) -> Path:
        return self.path / record_name

    def exists(self) -> bool:
        return self.path.is_dir()

    def try_read(self, record_name: str) -> Optional[str]:
        """Returns the stripped record content, or None when absent or unreadable."""
        record = self.record_path(record_name)
        try:
            if not record.is_file():
                return None
            content = record.read_text(encoding="utf-8").strip()
            return content or None
        except OSError as e:
            logger.warning(f"Could not read reference {record} in '{self.name}': {e}")
            return None

    def try_write(self, record_name: str, content: str) -> bool:
        """
        Writes the record through a temporary file and reads it back.
        Returns True only if the read-back content matches.
        """
        record = self.record_path(record_name)
        tmp = self.record_path(record_name + ".tmp")
        try:
            self.path.mkdir(parents=True, exist_ok=True)
            tmp.write_text(content, encoding="utf-8")
            os.replace(tmp, record)
        except OSError as e:
            logger.warning(f"Could not write reference {record} in '{self.name}': {e}")
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                logger.debug(f"Could not clean up temporary reference {tmp}")
            return False

        written = self.try_read(record_name)
        if written != content.strip():
            logger.warning(f"Reference {record} read back as {written!r}, expected {content!r}")
            return False
        return True

    def probe_writable(self) -> bool:
        return probe_directory(self.path)

    def list_records(self) -> List[str]:
        if not self.exists():
            return []
        try:
            return sorted(
                entry.name for entry in self.path.iterdir()
                if entry.name.endswith(REFERENCE_SUFFIX) and entry.is_file()
            )
        except OSError as e:
            logger.warning(f"Could not list references in '{self.name}' ({self.path}): {e}")
            return []

    def remove(self, record_name: str) -> bool:
        """Returns True if a record was deleted."""
        record = self.record_path(record_name)
        try:
            if not record.exists():
                return False
            record.unlink()
            logger.info(f"Removed reference {record_name} from '{self.name}'")
            return True
        except OSError as e:
            logger.warning(f"Could not remove reference {record} from '{self.name}': {e}")
            return False

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": str(self.path),
            "rank": self.rank,
            "exists": self.exists(),
            "reference_count": len(self.list_records()),
        }


def build_reference_backends(entries: Iterable[Any]) -> List[StorageBackend]:
    """
    Builds the ranked backend list from `storage.reference_dirs`.
    Entries are `{name, path}` mappings or plain paths, most persistent first.
    """
    backends: List[StorageBackend] = []
    for rank, entry in enumerate(entries or []):
        if isinstance(entry, dict):
            path = entry.get("path")
            name = entry.get("name") or f"refs-{rank}"
        else:
            path = entry
            name = f"refs-{rank}"
        if not path:
            logger.warning(f"Ignoring reference directory entry without a path: {entry!r}")
            continue
        backends.append(StorageBackend(name=name, path=path, rank=rank))
    return backends


def select_download_directory(shared_dir: Union[str, Path], app_dir: Union[str, Path]) -> Path:
    """
    Shared storage when it is mounted, otherwise the app-scoped directory.
    The shared volume counts as mounted when its parent exists and a write probe succeeds.
    """
    shared = Path(os.path.expanduser(str(shared_dir))).absolute() if shared_dir else None
    if shared is not None and shared.parent.is_dir() and probe_directory(shared):
        logger.debug(f"Using shared download directory {shared}")
        return shared

    app = Path(os.path.expanduser(str(app_dir))).absolute()
    app.mkdir(parents=True, exist_ok=True)
    logger.debug(f"Shared storage unavailable, using app download directory {app}")
    return app
