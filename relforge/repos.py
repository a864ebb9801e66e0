"""
Record repositories - durable package identity -> blob reference mapping.

Two repositories share one contract:
- PackagesRepository: where each package's source archive was uploaded
- CompiledPackagesRepository: where each package's compiled artifact lives

Contract:
- find(pkg) returns (record, True) on a hit and (None, False) on a miss.
  A miss is the normal outcome, not an error.
- save(pkg, record) is an idempotent upsert keyed by the package identity.
- Storage failures (I/O, corrupt index) raise StorageError.
- Nothing here deletes records.

Storage backends:
- In-memory (for testing)
- File-based: one JSON index per repository, survives process restarts
"""

import fcntl
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generic, Iterator, Optional, TypeVar

from relforge.errors import StorageError
from relforge.schemas import CompiledPackageRecord, Package, PackageRecord

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", PackageRecord, CompiledPackageRecord)


class RecordRepository(ABC, Generic[RecordT]):
    """
    Abstract base class for record storage keyed by package identity.

    Implementations must be safe to call from several threads at once.
    """

    @abstractmethod
    def find(self, pkg: Package) -> tuple[Optional[RecordT], bool]:
        """
        Look up the record for a package.

        Args:
            pkg: The package to look up

        Returns:
            (record, True) if found, (None, False) otherwise

        Raises:
            StorageError: If the underlying store cannot be read
        """
        pass

    @abstractmethod
    def save(self, pkg: Package, record: RecordT) -> None:
        """
        Store or replace the record for a package.

        Args:
            pkg: The package the record belongs to
            record: The record to store

        Raises:
            StorageError: If the underlying store cannot be written
        """
        pass

    @abstractmethod
    def all(self) -> dict[str, RecordT]:
        """
        Return every stored record keyed by its package key string.

        Raises:
            StorageError: If the underlying store cannot be read
        """
        pass


class InMemoryRecordRepository(RecordRepository[RecordT]):
    """
    In-memory implementation of RecordRepository for testing.

    All data is lost when the instance is garbage collected.
    """

    def __init__(self):
        self._records: dict[str, RecordT] = {}
        self._lock = threading.Lock()

    def find(self, pkg: Package) -> tuple[Optional[RecordT], bool]:
        with self._lock:
            record = self._records.get(str(pkg.key))
        return record, record is not None

    def save(self, pkg: Package, record: RecordT) -> None:
        with self._lock:
            self._records[str(pkg.key)] = record

    def all(self) -> dict[str, RecordT]:
        with self._lock:
            return dict(self._records)

    def clear(self) -> None:
        """Clear all stored data (for testing)."""
        with self._lock:
            self._records.clear()


class FileRecordRepository(RecordRepository[RecordT]):
    """
    File-based implementation of RecordRepository.

    Stores records as a single JSON index:
        {
            "<name>/<version>/<fingerprint>": {"blob_id": ..., "fingerprint": ...},
            ...
        }

    The index is re-read on every call so several processes sharing the
    directory see each other's saves. save() holds an exclusive flock on
    a sidecar lock file for its whole read-modify-write, so concurrent
    writers (threads, instances or processes) never drop each other's
    keys. Writes go to a temp file which is then renamed over the index,
    so a crash never leaves a torn file and readers need no lock.
    """

    def __init__(self, index_path: Path | str, record_cls: type[RecordT]):
        self._index_path = Path(index_path)
        self._record_cls = record_cls
        self._lock_path = self._index_path.with_name(f".{self._index_path.name}.lock")
        self._lock = threading.RLock()

    @property
    def index_path(self) -> Path:
        """Get the index file path."""
        return self._index_path

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        """Hold the in-process lock and the cross-process file lock."""
        with self._lock:
            try:
                self._index_path.parent.mkdir(parents=True, exist_ok=True)
                lock_file = open(self._lock_path, "a")
            except OSError as e:
                raise StorageError(f"Writing record index {self._index_path}: {e}") from e
            with lock_file:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def find(self, pkg: Package) -> tuple[Optional[RecordT], bool]:
        with self._lock:
            data = self._load()
        entry = data.get(str(pkg.key))
        if entry is None:
            return None, False
        try:
            return self._record_cls.from_dict(entry), True
        except (KeyError, TypeError) as e:
            raise StorageError(
                f"Malformed record for {pkg.key} in {self._index_path}: {e}"
            ) from e

    def save(self, pkg: Package, record: RecordT) -> None:
        with self._exclusive():
            data = self._load()
            data[str(pkg.key)] = record.to_dict()
            self._write(data)
        logger.debug(f"Saved {self._record_cls.__name__} for {pkg.key} to {self._index_path}")

    def all(self) -> dict[str, RecordT]:
        with self._lock:
            data = self._load()
        try:
            return {key: self._record_cls.from_dict(entry) for key, entry in sorted(data.items())}
        except (KeyError, TypeError) as e:
            raise StorageError(f"Malformed record in {self._index_path}: {e}") from e

    def _load(self) -> dict[str, Any]:
        """Read the index, treating a missing file as empty."""
        if not self._index_path.exists():
            return {}
        try:
            with open(self._index_path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt record index {self._index_path}: {e}") from e
        except OSError as e:
            raise StorageError(f"Reading record index {self._index_path}: {e}") from e

        if not isinstance(data, dict):
            raise StorageError(f"Corrupt record index {self._index_path}: expected an object")
        return data

    def _write(self, data: dict[str, Any]) -> None:
        """Atomically replace the index with data."""
        try:
            self._index_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self._index_path.parent, prefix=f".{self._index_path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(data, f, indent=2, sort_keys=True)
                os.replace(tmp_path, self._index_path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StorageError(f"Writing record index {self._index_path}: {e}") from e


# Type aliases for the two repository roles
PackagesRepository = RecordRepository[PackageRecord]
CompiledPackagesRepository = RecordRepository[CompiledPackageRecord]


class ReposFactory:
    """
    Creates the file-backed repositories under one directory.

    Layout:
        repos_dir/
            packages.json
            compiled_packages.json
    """

    def __init__(self, repos_dir: Path | str):
        self._repos_dir = Path(repos_dir)

    @property
    def repos_dir(self) -> Path:
        return self._repos_dir

    def new_packages_repo(self) -> "FileRecordRepository[PackageRecord]":
        return FileRecordRepository(self._repos_dir / "packages.json", PackageRecord)

    def new_compiled_packages_repo(self) -> "FileRecordRepository[CompiledPackageRecord]":
        return FileRecordRepository(self._repos_dir / "compiled_packages.json", CompiledPackageRecord)
