"""Tests for relforge.blobstore.LocalBlobstore."""

import hashlib

import pytest

from relforge.blobstore import Blobstore, LocalBlobstore, sha1_file
from relforge.errors import BlobstoreError


@pytest.fixture
def archive(tmp_path):
    path = tmp_path / "base.tgz"
    path.write_bytes(b"package contents")
    return path


def test_implements_protocol(tmp_path):
    assert isinstance(LocalBlobstore(tmp_path), Blobstore)


def test_sha1_file(archive):
    assert sha1_file(archive) == hashlib.sha1(b"package contents").hexdigest()


def test_create_copies_and_fingerprints(tmp_path, archive):
    store = LocalBlobstore(tmp_path / "blobs")

    blob_id, fingerprint = store.create(str(archive))

    assert fingerprint == hashlib.sha1(b"package contents").hexdigest()
    assert (tmp_path / "blobs" / blob_id).read_bytes() == b"package contents"


def test_create_gives_distinct_ids(tmp_path, archive):
    store = LocalBlobstore(tmp_path / "blobs")
    assert store.create(str(archive))[0] != store.create(str(archive))[0]


def test_get_resolves_created_blob(tmp_path, archive):
    store = LocalBlobstore(tmp_path / "blobs")
    blob_id, fingerprint = store.create(str(archive))

    path = store.get(blob_id, fingerprint)

    assert open(path, "rb").read() == b"package contents"


def test_get_rejects_wrong_fingerprint(tmp_path, archive):
    store = LocalBlobstore(tmp_path / "blobs")
    blob_id, _ = store.create(str(archive))

    with pytest.raises(BlobstoreError, match="fingerprint mismatch"):
        store.get(blob_id, "0" * 40)


def test_get_missing_blob(tmp_path):
    with pytest.raises(BlobstoreError, match="Blob not found"):
        LocalBlobstore(tmp_path).get("nope", "0" * 40)


def test_create_missing_file(tmp_path):
    with pytest.raises(BlobstoreError, match="Creating blob"):
        LocalBlobstore(tmp_path / "blobs").create(str(tmp_path / "missing.tgz"))
