"""Tests for relforge error classes.

Tests cover:
- Transient/permanent classification of every error kind
- wrap_error keeps classification and chains the cause
- PostStartFailedError keeps the agent's error
"""

import pytest

from relforge.errors import (
    AgentTimeoutError,
    AgentTransportError,
    BlobstoreError,
    CompileFailedError,
    CompiledPackageNotFoundError,
    ConfigError,
    ConsistencyError,
    EventLogError,
    PermanentError,
    PostStartFailedError,
    RelforgeError,
    ReleaseError,
    StopFailedError,
    StorageError,
    TransientError,
    wrap_error,
)


class TestHierarchy:
    """Every error is a RelforgeError with the right retry class."""

    @pytest.mark.parametrize("cls", [
        StorageError, BlobstoreError, AgentTransportError, AgentTimeoutError, StopFailedError,
    ])
    def test_transient(self, cls):
        assert issubclass(cls, TransientError)
        assert not issubclass(cls, PermanentError)

    @pytest.mark.parametrize("cls", [
        CompileFailedError, ConsistencyError, CompiledPackageNotFoundError,
        ReleaseError, PostStartFailedError,
    ])
    def test_permanent(self, cls):
        assert issubclass(cls, PermanentError)
        assert not issubclass(cls, TransientError)

    @pytest.mark.parametrize("cls", [ConfigError, EventLogError, TransientError, PermanentError])
    def test_is_relforge_error(self, cls):
        assert issubclass(cls, RelforgeError)

    def test_timeout_is_transport_error(self):
        with pytest.raises(AgentTransportError):
            raise AgentTimeoutError("deadline exceeded")

    def test_has_message(self):
        assert str(StorageError("disk full")) == "disk full"


class TestWrapError:
    """Tests for wrap_error."""

    def test_keeps_class_of_classified_error(self):
        original = ConsistencyError("missing base")
        wrapped = wrap_error(original, "Compiling package web")

        assert type(wrapped) is ConsistencyError
        assert str(wrapped) == "Compiling package web: missing base"
        assert wrapped.__cause__ is original

    def test_unclassified_error_uses_default(self):
        original = KeyError("blob_id")
        wrapped = wrap_error(original, "Finding package base", StorageError)

        assert isinstance(wrapped, StorageError)
        assert wrapped.__cause__ is original

    def test_default_is_permanent(self):
        wrapped = wrap_error(RuntimeError("boom"), "Doing things")
        assert type(wrapped) is PermanentError


class TestPostStartFailedError:
    """Tests for PostStartFailedError."""

    def test_default_message(self):
        assert str(PostStartFailedError()) == "Post start scripts failed"

    def test_keeps_cause(self):
        cause = RuntimeError("exit status 3")
        error = PostStartFailedError(cause=cause)

        assert error.cause is cause
        assert error.__cause__ is cause
