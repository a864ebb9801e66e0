"""
Error classes for relforge.

These error types enable retry classification at the compile boundary:
- TransientError: Safe to retry (storage I/O, blobstore uploads, agent transport)
- PermanentError: Do not retry without fixing the cause (compile failures,
  broken release graphs, record store inconsistencies)

A cache miss is never an error: repositories report it as found=False.

Error handling contract:
- Lower-level errors are wrapped with package context as they rise
  (see wrap_error), keeping their classification
- PackagesCompiler.compile fails fast on the first error
- Event log write failures are logged, never raised
"""

from typing import Optional


class RelforgeError(Exception):
    """Base exception for relforge."""
    pass


class TransientError(RelforgeError):
    """
    Transient error - safe to retry.

    Examples:
    - Record index could not be read or written
    - Blob upload failed
    - Agent connection reset or timed out
    """
    pass


class PermanentError(RelforgeError):
    """
    Permanent error - do not retry until the cause is addressed.

    Examples:
    - Agent reported a compile failure (bad source, missing toolchain)
    - A dependency expected to be compiled has no record
    - Release dependency graph is invalid
    """
    pass


class StorageError(TransientError):
    """Record repository failed to read or write its index."""
    pass


class BlobstoreError(TransientError):
    """Blob upload or download failed."""
    pass


class AgentTransportError(TransientError):
    """The agent could not be reached or the call was interrupted."""
    pass


class AgentTimeoutError(AgentTransportError):
    """An agent call did not complete within its deadline."""
    pass


class CompileFailedError(PermanentError):
    """The agent reported that a package failed to compile."""
    pass


class ConsistencyError(PermanentError):
    """
    A compiled dependency record is missing when it must exist.

    Compilation order guarantees every dependency is compiled first, so
    this indicates an ordering bug or tampering with the record store.
    """
    pass


class CompiledPackageNotFoundError(PermanentError):
    """find_compiled_package was asked for a package that was never compiled."""
    pass


class ReleaseError(PermanentError):
    """Release description is invalid (unknown dependency, cycle)."""
    pass


class ConfigError(RelforgeError):
    """Configuration validation error."""
    pass


class EventLogError(RelforgeError):
    """Stage or task used out of order."""
    pass


class StopFailedError(TransientError):
    """Agent failed to stop the instance."""
    pass


class PostStartFailedError(PermanentError):
    """
    Post-start scripts failed on the instance.

    The agent's error is kept on ``cause`` (and chained as ``__cause__``)
    so callers can still tell why.
    """

    def __init__(self, message: str = "Post start scripts failed", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


def wrap_error(
    error: BaseException,
    context: str,
    default: type[RelforgeError] = PermanentError,
) -> RelforgeError:
    """
    Wrap an error with context while keeping its classification.

    Args:
        error: The original error
        context: Description of what was being done, e.g. "Compiling package web"
        default: Class used when error is not already a RelforgeError

    Returns:
        A new error of the same RelforgeError class (or default) whose
        message is "<context>: <original message>" and whose __cause__
        is the original error
    """
    cls = type(error) if isinstance(error, RelforgeError) else default
    try:
        wrapped = cls(f"{context}: {error}")
    except TypeError:
        wrapped = default(f"{context}: {error}")
    wrapped.__cause__ = error
    return wrapped
