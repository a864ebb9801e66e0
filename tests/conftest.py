import threading

import pytest

from relforge.agent import CompiledPackageRef
from relforge.compiler import PackagesCompiler
from relforge.errors import BlobstoreError, CompileFailedError
from relforge.eventlog import Log
from relforge.repos import InMemoryRecordRepository
from relforge.schemas import Package, Release


class FakeAgentClient:
    """
    Agent double recording every call.

    fail maps a package name to the exception compile_package raises for it.
    on_compile, if set, is called with (name, dependencies) before returning.
    """

    def __init__(self):
        self.calls = []
        self.fail = {}
        self.on_compile = None
        self.stop_error = None
        self.post_start_error = None
        self.stop_calls = 0
        self.post_start_calls = 0
        self._lock = threading.Lock()

    @property
    def compiled_names(self):
        return [call["name"] for call in self.calls]

    def compile_package(self, blob_id, fingerprint, name, version, dependencies):
        with self._lock:
            self.calls.append({
                "blob_id": blob_id,
                "fingerprint": fingerprint,
                "name": name,
                "version": version,
                "dependencies": dict(dependencies),
            })
        if self.on_compile is not None:
            self.on_compile(name, dependencies)
        if name in self.fail:
            raise self.fail[name]
        return CompiledPackageRef(blob_id=f"compiled-{name}", fingerprint=f"sha1-compiled-{name}")

    def stop(self):
        self.stop_calls += 1
        if self.stop_error is not None:
            raise self.stop_error
        return "stopped"

    def post_start(self):
        self.post_start_calls += 1
        if self.post_start_error is not None:
            raise self.post_start_error
        return "started"


class FakeBlobstore:
    """Blobstore double handing out sequential blob ids."""

    def __init__(self):
        self.created = []
        self.fail_paths = set()
        self._lock = threading.Lock()

    def create(self, path):
        if path in self.fail_paths:
            raise BlobstoreError(f"upload refused: {path}")
        with self._lock:
            self.created.append(path)
            n = len(self.created)
        return f"blob-{n}", f"sha1-{path}"

    def get(self, blob_id, fingerprint):
        return f"/blobs/{blob_id}"


class CapturingDevice:
    """Event log device keeping entries in memory."""

    def __init__(self):
        self.entries = []

    def write_log_entry(self, entry):
        self.entries.append(entry)


@pytest.fixture
def agent():
    return FakeAgentClient()


@pytest.fixture
def blobstore():
    return FakeBlobstore()


@pytest.fixture
def packages_repo():
    return InMemoryRecordRepository()


@pytest.fixture
def compiled_packages_repo():
    return InMemoryRecordRepository()


@pytest.fixture
def device():
    return CapturingDevice()


@pytest.fixture
def event_log(device):
    return Log(device, clock=lambda: 1700000000.0)


@pytest.fixture
def make_compiler(agent, packages_repo, compiled_packages_repo, blobstore, event_log):
    """Factory building a PackagesCompiler over the shared fakes."""
    def _make(max_workers=1):
        return PackagesCompiler(
            agent_client=agent,
            packages_repo=packages_repo,
            compiled_packages_repo=compiled_packages_repo,
            blobstore=blobstore,
            event_log=event_log,
            max_workers=max_workers,
        )
    return _make


@pytest.fixture
def compiler(make_compiler):
    return make_compiler()


@pytest.fixture
def base_pkg():
    return Package(name="base", version="1.0", archive_path="/src/base.tgz", fingerprint="aaa")


@pytest.fixture
def web_pkg(base_pkg):
    return Package(
        name="web", version="1.0", archive_path="/src/web.tgz", fingerprint="bbb",
        dependencies=(base_pkg,),
    )


@pytest.fixture
def app_release(base_pkg, web_pkg):
    """Release app/1.0: web depends on base."""
    return Release(name="app", version="1.0", packages=(web_pkg, base_pkg))


@pytest.fixture
def compile_failure():
    return CompileFailedError("make: *** [all] Error 2")
