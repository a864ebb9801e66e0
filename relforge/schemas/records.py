"""
Record schemas - where a package lives in the blobstore.

PackageRecord points at a package's source archive; CompiledPackageRecord
points at its compiled artifact. Both are {blob_id, fingerprint} pairs that
Blobstore.get can resolve.
"""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class PackageRecord:
    """
    Location of a package source archive in the blobstore.

    Attributes:
        blob_id: Blobstore identifier of the source archive
        fingerprint: SHA1 of the source archive
    """
    blob_id: str
    fingerprint: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        return {"blob_id": self.blob_id, "fingerprint": self.fingerprint}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PackageRecord":
        """Deserialize from dictionary."""
        return cls(blob_id=data["blob_id"], fingerprint=data["fingerprint"])


@dataclass(frozen=True)
class CompiledPackageRecord:
    """
    Location of a compiled package artifact in the blobstore.

    Attributes:
        blob_id: Blobstore identifier of the compiled archive
        fingerprint: SHA1 of the compiled archive
    """
    blob_id: str
    fingerprint: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        return {"blob_id": self.blob_id, "fingerprint": self.fingerprint}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompiledPackageRecord":
        """Deserialize from dictionary."""
        return cls(blob_id=data["blob_id"], fingerprint=data["fingerprint"])
