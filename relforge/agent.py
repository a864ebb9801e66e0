"""
Agent client interface - the remote execution host boundary.

The agent compiles packages and runs instance lifecycle hooks (stop,
post-start) on a target VM. Transport is not relforge's concern; anything
implementing AgentClient can be plugged in.

Wrappers:
- ClassifyingAgentClient: maps raw transport exceptions onto relforge
  error classes (TransientError/PermanentError)
- TimeoutAgentClient: puts a deadline on every call

Error classification:
- RelforgeError subclasses propagated unchanged
- Builtin TimeoutError -> AgentTimeoutError (transient)
- ConnectionError/OSError -> AgentTransportError (transient)
- Anything else from compile_package -> CompileFailedError (permanent)
"""

import importlib
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from relforge.errors import (
    AgentTimeoutError,
    AgentTransportError,
    CompileFailedError,
    ConfigError,
    PermanentError,
    RelforgeError,
)


@dataclass(frozen=True)
class DependencyRef:
    """
    A compiled dependency handed to the agent.

    Attributes:
        name: Dependency package name
        version: Dependency package version
        blob_id: Blobstore id of the dependency's compiled archive
        fingerprint: SHA1 of the dependency's compiled archive
    """
    name: str
    version: str
    blob_id: str
    fingerprint: str


@dataclass(frozen=True)
class CompiledPackageRef:
    """Blob reference of a compiled package returned by the agent."""
    blob_id: str
    fingerprint: str


# Dependency name -> compiled dependency reference
Dependencies = dict[str, DependencyRef]


@runtime_checkable
class AgentClient(Protocol):
    """
    Protocol for the remote agent.

    Calls are synchronous request/response.
    """

    def compile_package(
        self,
        blob_id: str,
        fingerprint: str,
        name: str,
        version: str,
        dependencies: Dependencies,
    ) -> CompiledPackageRef:
        """
        Compile a package on the agent.

        Args:
            blob_id: Blobstore id of the package source archive
            fingerprint: SHA1 of the package source archive
            name: Package name
            version: Package version
            dependencies: Compiled dependencies keyed by name

        Returns:
            Reference to the compiled archive in the blobstore
        """
        ...

    def stop(self) -> Any:
        """Stop the instance's jobs. Returns the agent's acknowledgement."""
        ...

    def post_start(self) -> Any:
        """Run post-start scripts. Returns the agent's acknowledgement."""
        ...


class ClassifyingAgentClient:
    """
    Wraps an AgentClient so every failure is a classified RelforgeError.
    """

    def __init__(self, client: AgentClient):
        self._client = client

    def _call(self, fn: Callable[[], Any], description: str, default: type[RelforgeError]) -> Any:
        try:
            return fn()
        except RelforgeError:
            raise  # Already classified, propagate
        except TimeoutError as e:
            raise AgentTimeoutError(f"{description}: {e}") from e
        except OSError as e:
            # ConnectionError is an OSError
            raise AgentTransportError(f"{description}: {e}") from e
        except Exception as e:
            raise default(f"{description}: {e}") from e

    def compile_package(
        self,
        blob_id: str,
        fingerprint: str,
        name: str,
        version: str,
        dependencies: Dependencies,
    ) -> CompiledPackageRef:
        return self._call(
            lambda: self._client.compile_package(blob_id, fingerprint, name, version, dependencies),
            f"Agent compile_package {name}/{version}",
            CompileFailedError,
        )

    def stop(self) -> Any:
        return self._call(self._client.stop, "Agent stop", PermanentError)

    def post_start(self) -> Any:
        return self._call(self._client.post_start, "Agent post_start", PermanentError)


class TimeoutAgentClient:
    """
    Wraps an AgentClient with a per-call deadline.

    Each call runs on its own daemon thread and the deadline starts when
    that thread starts, so any number of concurrent callers get the full
    timeout. A call that misses its deadline cannot be interrupted; its
    thread is abandoned and finishes in the background.
    """

    def __init__(
        self,
        client: AgentClient,
        timeout: float,
        logger: Optional[logging.Logger] = None,
    ):
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._client = client
        self._timeout = timeout
        self._logger = logger or logging.getLogger(__name__)

    @property
    def timeout(self) -> float:
        return self._timeout

    def _call(self, fn: Callable[..., Any], description: str, *args: Any) -> Any:
        outcome: dict[str, Any] = {}

        def run() -> None:
            try:
                outcome["result"] = fn(*args)
            except BaseException as e:
                outcome["error"] = e

        thread = threading.Thread(target=run, name="agent-call", daemon=True)
        thread.start()
        thread.join(self._timeout)

        if thread.is_alive():
            self._logger.warning(f"{description} timed out after {self._timeout}s")
            raise AgentTimeoutError(f"{description} timed out after {self._timeout}s")
        if "error" in outcome:
            raise outcome["error"]
        return outcome.get("result")

    def compile_package(
        self,
        blob_id: str,
        fingerprint: str,
        name: str,
        version: str,
        dependencies: Dependencies,
    ) -> CompiledPackageRef:
        return self._call(
            self._client.compile_package,
            f"Agent compile_package {name}/{version}",
            blob_id, fingerprint, name, version, dependencies,
        )

    def stop(self) -> Any:
        return self._call(self._client.stop, "Agent stop")

    def post_start(self) -> Any:
        return self._call(self._client.post_start, "Agent post_start")


def load_agent_factory(target: str) -> Callable[..., AgentClient]:
    """
    Resolve a "module:attr" string to an agent client factory.

    Args:
        target: Import path such as "mypkg.agent:create_client"

    Returns:
        The factory callable

    Raises:
        ConfigError: If the target is malformed or cannot be imported
    """
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"Agent factory must look like 'module:attr', got {target!r}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import agent factory module {module_name!r}: {e}") from e

    factory = getattr(module, attr, None)
    if factory is None or not callable(factory):
        raise ConfigError(f"Agent factory {target!r} is not callable")
    return factory
