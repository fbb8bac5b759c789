"""
Persistence backends for the integrity store.

A backend is a flat key/value space of opaque record identifiers mapping to
serialized record bytes. Backends know nothing about tags or profiles; the
integrity store layers verification on top.

Two implementations are provided:

* ``InMemoryBackend`` for tests and ephemeral sessions.
* ``FileSystemBackend`` writing one JSON file per record. Every write goes to
  a temporary file in the target directory followed by ``os.replace``, so a
  record is either fully old or fully new.
"""

import base64
import binascii
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Union

import structlog

from .constants import RECORD_FILE_SUFFIX
from .exceptions import StorageError

# Initialize structured logger
logger = structlog.get_logger(__name__)


class PersistenceBackend(Protocol):
    """Minimal key/value contract required by ``IntegrityStore``."""

    def get(self, record_id: str) -> Optional[bytes]:
        ...

    def put(self, record_id: str, data: bytes) -> None:
        ...

    def delete(self, record_id: str) -> bool:
        ...

    def keys(self) -> List[str]:
        ...


class InMemoryBackend:
    """
    Dictionary-backed backend.

    Examples
    --------
    >>> backend = InMemoryBackend()
    >>> backend.put("a", b"{}")
    >>> backend.get("a"), backend.get("missing")
    (b'{}', None)
    """

    def __init__(self) -> None:
        self._records: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, record_id: str) -> Optional[bytes]:
        with self._lock:
            return self._records.get(record_id)

    def put(self, record_id: str, data: bytes) -> None:
        with self._lock:
            self._records[record_id] = bytes(data)

    def delete(self, record_id: str) -> bool:
        with self._lock:
            return self._records.pop(record_id, None) is not None

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        return len(self._records)


class FileSystemBackend:
    """
    Directory-backed backend with atomic replacement.

    Record identifiers are mapped to file names with URL-safe base64 so any
    identifier (slashes, colons, unicode) yields a single flat file name.

    Parameters
    ----------
    directory : Union[str, Path]
        Directory holding the record files; created on first use.
    """

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create store directory: {e}")

        logger.info("FileSystemBackend initialized", directory=str(self.directory))

    def _path_for(self, record_id: str) -> Path:
        encoded = base64.urlsafe_b64encode(record_id.encode("utf-8")).decode("ascii")
        return self.directory / f"{encoded}{RECORD_FILE_SUFFIX}"

    @staticmethod
    def _id_for(path: Path) -> Optional[str]:
        try:
            return base64.urlsafe_b64decode(path.stem.encode("ascii")).decode("utf-8")
        except (binascii.Error, UnicodeError, ValueError):
            return None

    def get(self, record_id: str) -> Optional[bytes]:
        path = self._path_for(record_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read record: {e}", record_id=record_id)

    def put(self, record_id: str, data: bytes) -> None:
        path = self._path_for(record_id)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(self.directory), prefix=".tmp-", suffix=RECORD_FILE_SUFFIX
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageError(f"Failed to write record: {e}", record_id=record_id)

        logger.debug("Record written", file=path.name, size=len(data))

    def delete(self, record_id: str) -> bool:
        try:
            self._path_for(record_id).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete record: {e}", record_id=record_id)

    def keys(self) -> List[str]:
        record_ids = []
        for path in sorted(self.directory.glob(f"*{RECORD_FILE_SUFFIX}")):
            if path.name.startswith(".tmp-"):
                continue
            record_id = self._id_for(path)
            if record_id is None:
                logger.warning("Skipping unrecognised file in store", file=path.name)
                continue
            record_ids.append(record_id)
        return record_ids
