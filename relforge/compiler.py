"""
PackagesCompiler - produce compiled packages for a whole release.

The compiler resolves:
- the release's packages into a dependency-first compile order
- each package's source archive into a blobstore reference (uploaded once)
- each package's compiled dependencies into the map the agent expects

and records the agent's output in the CompiledPackagesRepository.

Caching and resumability:
- A package whose CompiledPackageRecord already exists is a cache hit and
  never reaches the agent
- The first error aborts compile(); records saved before it stay, so a
  retried compile() skips them and resumes at the failed package

Concurrency:
- max_workers=1 (default) compiles one package at a time in order
- max_workers>1 compiles independent packages in parallel; a package is
  dispatched only once all of its dependencies are recorded, and a
  per-package lock keeps concurrent compile() calls from compiling the
  same package twice
"""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from typing import Iterator, Optional

from relforge.agent import AgentClient, Dependencies, DependencyRef
from relforge.blobstore import Blobstore
from relforge.errors import (
    BlobstoreError,
    CompileFailedError,
    CompiledPackageNotFoundError,
    ConsistencyError,
    StorageError,
    wrap_error,
)
from relforge.eventlog import Log, Stage
from relforge.repos import CompiledPackagesRepository, PackagesRepository
from relforge.schemas import (
    CompiledPackageRecord,
    Package,
    PackageKey,
    PackageRecord,
    Release,
)


class PackagesCompiler:
    """
    Compiles release packages through the agent, caching results.

    Usage:
        compiler = PackagesCompiler(
            agent_client, packages_repo, compiled_packages_repo, blobstore, event_log,
        )
        compiler.apply_precompiled_packages(release)
        compiler.compile(release)
        record = compiler.find_compiled_package(pkg)
    """

    def __init__(
        self,
        agent_client: AgentClient,
        packages_repo: PackagesRepository,
        compiled_packages_repo: CompiledPackagesRepository,
        blobstore: Blobstore,
        event_log: Log,
        logger: Optional[logging.Logger] = None,
        max_workers: int = 1,
    ):
        """
        Initialize the compiler.

        Args:
            agent_client: Agent that performs compilation
            packages_repo: Source archive records
            compiled_packages_repo: Compiled artifact records
            blobstore: Where source archives are uploaded
            event_log: Progress log
            logger: Diagnostic logger (defaults to this module's logger)
            max_workers: Packages compiled in parallel (1 = sequential)
        """
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")

        self._agent_client = agent_client
        self._packages_repo = packages_repo
        self._compiled_packages_repo = compiled_packages_repo
        self._blobstore = blobstore
        self._event_log = event_log
        self._logger = logger or logging.getLogger(__name__)
        self._max_workers = max_workers

        self._inflight_lock = threading.Lock()
        self._inflight: dict[PackageKey, threading.Lock] = {}

    @property
    def max_workers(self) -> int:
        return self._max_workers

    def apply_precompiled_packages(self, release: Release) -> None:
        """
        Upload and record every package the release ships precompiled.

        Always uploads, even when a record exists: precompiled packages are
        authoritative for this invocation.

        Raises:
            BlobstoreError: If an upload fails
            StorageError: If a record cannot be saved
        """
        for pkg in release.compiled_packages:
            try:
                blob_id, fingerprint = self._blobstore.create(pkg.archive_path)
            except Exception as e:
                raise wrap_error(e, f"Creating compiled package blob {pkg.name}", BlobstoreError)

            record = CompiledPackageRecord(blob_id=blob_id, fingerprint=fingerprint)

            try:
                self._compiled_packages_repo.save(pkg, record)
            except Exception as e:
                raise wrap_error(e, f"Saving compiled package {pkg.name}", StorageError)

            self._logger.debug(
                f"Applied precompiled package {pkg} as blob {blob_id}",
                extra={"package": str(pkg), "release": str(release)},
            )

    def compile(self, release: Release) -> None:
        """
        Compile every package of a release, dependencies first.

        All packages are compiled whether or not they are used later.
        Stemcell differences are not taken into account.

        Raises:
            ReleaseError: If the dependency graph has a cycle
            RelforgeError: The first error hit while compiling; packages
                compiled before it remain recorded
        """
        packages = release.resolved_package_dependencies()

        stage = self._event_log.begin_stage(
            f"Compiling release {release.name}/{release.version}", len(packages)
        )
        self._logger.info(
            f"Compiling release {release} ({len(packages)} packages, max_workers={self._max_workers})",
            extra={"release": str(release)},
        )

        if self._max_workers == 1 or len(packages) <= 1:
            for pkg in packages:
                self._compile_task(pkg, stage)
        else:
            self._compile_parallel(packages, stage)

        self._logger.info(f"Compiled release {release}", extra={"release": str(release)})

    def find_compiled_package(self, pkg: Package) -> CompiledPackageRecord:
        """
        Return the compiled record of a package that must already exist.

        Raises:
            CompiledPackageNotFoundError: If the package was never compiled
            StorageError: If the repository cannot be read
        """
        record, found = self._find_compiled(pkg)
        if not found:
            raise CompiledPackageNotFoundError(f"Expected to find compiled package {pkg.name}")
        return record

    def _compile_task(self, pkg: Package, stage: Stage) -> None:
        """Run one package as a Task: cache hit or compile."""
        task = stage.begin_task(f"Package {pkg.name}/{pkg.version}")
        try:
            with self._single_flight(pkg.key):
                _, found = self._find_compiled(pkg)
                if found:
                    self._logger.debug(
                        f"Compiled package {pkg} found in cache",
                        extra={"package": str(pkg)},
                    )
                else:
                    self._compile_pkg(pkg)
        except Exception as e:
            raise task.end(e)
        task.end()

    def _compile_parallel(self, packages: list[Package], stage: Stage) -> None:
        """
        Compile packages on a worker pool, respecting dependencies.

        Packages are dispatched in resolved order as soon as all their
        dependencies are done. After the first failure nothing more is
        dispatched; in-flight packages are allowed to finish and the
        failure is raised.
        """
        pending = list(packages)
        done: set[PackageKey] = set()
        failure: Optional[BaseException] = None

        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="compile") as pool:
            running: dict[Future, Package] = {}

            while pending or running:
                if failure is None:
                    for pkg in list(pending):
                        if len(running) >= self._max_workers:
                            break
                        if all(dep.key in done for dep in pkg.dependencies):
                            pending.remove(pkg)
                            running[pool.submit(self._compile_task, pkg, stage)] = pkg

                if not running:
                    break

                finished, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in finished:
                    pkg = running.pop(future)
                    error = future.exception()
                    if error is None:
                        done.add(pkg.key)
                    elif failure is None:
                        failure = error
                        self._logger.error(
                            f"Compiling {pkg} failed, cancelling remaining packages: {error}",
                            extra={"package": str(pkg)},
                        )

        if failure is not None:
            raise failure
        if pending:
            names = ", ".join(str(p) for p in pending)
            raise ConsistencyError(f"Packages could not be scheduled: {names}")

    def _compile_pkg(self, pkg: Package) -> None:
        """
        Compile a single package and record the result.

        Assumes the package's dependencies are already compiled and
        recorded.
        """
        self._logger.debug(f"Preparing to compile package {pkg}", extra={"package": str(pkg)})

        try:
            pkg_rec, found = self._packages_repo.find(pkg)
        except Exception as e:
            raise wrap_error(e, f"Finding package source blob {pkg.name}", StorageError)

        if not found:
            try:
                blob_id, fingerprint = self._blobstore.create(pkg.archive_path)
            except Exception as e:
                raise wrap_error(e, f"Creating package source blob {pkg.name}", BlobstoreError)

            pkg_rec = PackageRecord(blob_id=blob_id, fingerprint=fingerprint)

            try:
                self._packages_repo.save(pkg, pkg_rec)
            except Exception as e:
                raise wrap_error(e, f"Saving package record {pkg.name}", StorageError)

        deps = self._build_pkg_deps(pkg)

        try:
            compiled = self._agent_client.compile_package(
                pkg_rec.blob_id,       # source tar
                pkg_rec.fingerprint,   # source tar
                pkg.name,
                pkg.version,
                deps,
            )
        except Exception as e:
            raise wrap_error(e, f"Compiling package {pkg.name}", CompileFailedError)

        compiled_rec = CompiledPackageRecord(blob_id=compiled.blob_id, fingerprint=compiled.fingerprint)

        try:
            self._compiled_packages_repo.save(pkg, compiled_rec)
        except Exception as e:
            raise wrap_error(e, f"Saving compiled package {pkg.name}", StorageError)

        self._logger.info(
            f"Compiled package {pkg} as blob {compiled.blob_id}",
            extra={"package": str(pkg)},
        )

    def _build_pkg_deps(self, pkg: Package) -> Dependencies:
        """
        Build the agent's dependency map from compiled records.

        Raises:
            ConsistencyError: If a dependency has no compiled record
        """
        deps: Dependencies = {}

        for dep in pkg.dependencies:
            record, found = self._find_compiled(dep)
            if not found:
                raise ConsistencyError(
                    f"Expected to find compiled package {dep.name} (dependency of {pkg.name})"
                )

            deps[dep.name] = DependencyRef(
                name=dep.name,
                version=dep.version,
                blob_id=record.blob_id,          # compiled tar
                fingerprint=record.fingerprint,  # compiled tar
            )

        return deps

    def _find_compiled(self, pkg: Package) -> tuple[Optional[CompiledPackageRecord], bool]:
        try:
            return self._compiled_packages_repo.find(pkg)
        except Exception as e:
            raise wrap_error(e, f"Finding compiled package {pkg.name}", StorageError)

    @contextmanager
    def _single_flight(self, key: PackageKey) -> Iterator[None]:
        """Hold the per-package lock so only one compile of key runs at a time."""
        with self._inflight_lock:
            lock = self._inflight.setdefault(key, threading.Lock())
        with lock:
            yield
