"""
Blobstore interface and a local-directory implementation.

The compiler only needs create(); downstream installers use get() to
resolve the references the compiler records.

Implementations:
- LocalBlobstore: blobs copied into a directory under uuid4 ids, with SHA1
  fingerprints verified on get()
"""

import hashlib
import logging
import shutil
import uuid
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from relforge.errors import BlobstoreError

# Read size for fingerprinting
CHUNK_SIZE = 1024 * 1024


@runtime_checkable
class Blobstore(Protocol):
    """
    Protocol for content-addressed blob storage.

    Implementations raise BlobstoreError on failure.
    """

    def create(self, path: str) -> tuple[str, str]:
        """
        Upload a local file.

        Args:
            path: Local file to upload

        Returns:
            (blob_id, fingerprint)
        """
        ...

    def get(self, blob_id: str, fingerprint: str) -> str:
        """
        Resolve a blob reference to a local file path.

        Args:
            blob_id: Identifier returned by create()
            fingerprint: Fingerprint returned by create()

        Returns:
            Local path of the blob contents
        """
        ...


def sha1_file(path: Path | str) -> str:
    """Compute the hex SHA1 of a file."""
    digest = hashlib.sha1()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class LocalBlobstore:
    """
    Blobstore backed by a local directory.

    Each create() copies the file to blobs_dir/<uuid4>; the fingerprint is
    the SHA1 of the contents. get() re-checks the SHA1 before returning the
    path.
    """

    def __init__(self, blobs_dir: Path | str, logger: Optional[logging.Logger] = None):
        self._blobs_dir = Path(blobs_dir)
        self._logger = logger or logging.getLogger(__name__)

    @property
    def blobs_dir(self) -> Path:
        return self._blobs_dir

    def create(self, path: str) -> tuple[str, str]:
        blob_id = str(uuid.uuid4())
        target = self._blobs_dir / blob_id
        try:
            fingerprint = sha1_file(path)
            self._blobs_dir.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(path, target)
        except OSError as e:
            raise BlobstoreError(f"Creating blob from {path}: {e}") from e

        self._logger.debug(f"Created blob {blob_id} ({fingerprint}) from {path}")
        return blob_id, fingerprint

    def get(self, blob_id: str, fingerprint: str) -> str:
        target = self._blobs_dir / blob_id
        if not target.is_file():
            raise BlobstoreError(f"Blob not found: {blob_id}")
        try:
            actual = sha1_file(target)
        except OSError as e:
            raise BlobstoreError(f"Reading blob {blob_id}: {e}") from e
        if actual != fingerprint:
            raise BlobstoreError(
                f"Blob {blob_id} fingerprint mismatch: expected {fingerprint}, got {actual}"
            )
        return str(target)
