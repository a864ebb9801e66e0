"""
Package and Release schemas - the dependency graph being compiled.

A Release is a named, versioned collection of Packages plus the packages
the release author already ships built (compiled_packages). Packages hold
direct references to the Packages they depend on; the graph is acyclic.

Both are immutable once built. Release.from_dict builds the object graph
from a plain mapping (as loaded from a release YAML file), rejecting
unknown dependency names and cycles.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from relforge.errors import ReleaseError


@dataclass(frozen=True)
class PackageKey:
    """
    Repository identity of a package.

    Keyed by name, version and source fingerprint, so two releases that
    reuse a name/version with different archive contents do not share
    cache entries.
    """
    name: str
    version: str
    fingerprint: str = ""

    def __str__(self) -> str:
        if self.fingerprint:
            return f"{self.name}/{self.version}/{self.fingerprint}"
        return f"{self.name}/{self.version}"

    @classmethod
    def parse(cls, value: str) -> "PackageKey":
        """Parse the string form produced by str()."""
        parts = value.split("/", 2)
        if len(parts) < 2 or not parts[0] or not parts[1]:
            raise ValueError(f"Invalid package key: {value!r}")
        return cls(*parts)


@dataclass(frozen=True, eq=False)
class Package:
    """
    A unit of software to compile.

    Attributes:
        name: Package name, unique within a release
        version: Package version
        archive_path: Local path of the source archive (or the compiled
            archive, for precompiled packages)
        fingerprint: Content hash of the archive
        dependencies: Direct dependencies, in declaration order

    Equality and hashing use the identity key only.
    """
    name: str
    version: str
    archive_path: str = ""
    fingerprint: str = ""
    dependencies: tuple["Package", ...] = field(default_factory=tuple)

    @property
    def key(self) -> PackageKey:
        return PackageKey(self.name, self.version, self.fingerprint)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Package):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __str__(self) -> str:
        return f"{self.name}/{self.version}"


@dataclass(frozen=True)
class Release:
    """
    A release: packages to compile and packages shipped precompiled.

    Attributes:
        name: Release name
        version: Release version
        packages: Packages compiled from source
        compiled_packages: Packages shipped already built
    """
    name: str
    version: str
    packages: tuple[Package, ...] = field(default_factory=tuple)
    compiled_packages: tuple[Package, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        return f"{self.name}/{self.version}"

    def resolved_package_dependencies(self) -> list[Package]:
        """
        Order packages so every package follows all of its dependencies.

        Depth-first: each package (in declaration order) is emitted after
        its dependencies (in their declaration order). Dependencies reached
        only through other packages are included too. The order is
        deterministic for a given release.

        Returns:
            Packages in compile order, each appearing once

        Raises:
            ReleaseError: If the dependency graph has a cycle
        """
        ordered: list[Package] = []
        done: set[PackageKey] = set()
        visiting: set[PackageKey] = set()

        def visit(pkg: Package, path: tuple[str, ...]) -> None:
            if pkg.key in done:
                return
            if pkg.key in visiting:
                cycle = " -> ".join(path + (pkg.name,))
                raise ReleaseError(f"Package dependency cycle: {cycle}")
            visiting.add(pkg.key)
            for dep in pkg.dependencies:
                visit(dep, path + (pkg.name,))
            visiting.discard(pkg.key)
            done.add(pkg.key)
            ordered.append(pkg)

        for pkg in self.packages:
            visit(pkg, ())

        return ordered

    @classmethod
    def from_dict(cls, data: dict[str, Any], base_dir: Optional[Path | str] = None) -> "Release":
        """
        Build a Release from a plain mapping.

        Expected shape:
            name: app
            version: "1.0"
            packages:
              - name: base
                version: "1.0"
                archive_path: packages/base.tgz
                fingerprint: 3a1f...
              - name: web
                version: "1.0"
                archive_path: packages/web.tgz
                dependencies: [base]
            compiled_packages:
              - name: ruby
                version: "2.1"
                archive_path: compiled_packages/ruby.tgz

        Args:
            data: The release mapping
            base_dir: Directory that relative archive paths are resolved
                against (defaults to leaving them as given)

        Returns:
            The Release

        Raises:
            ReleaseError: On missing fields, duplicate names, unknown
                dependency names or dependency cycles
        """
        for required in ("name", "version"):
            if not data.get(required):
                raise ReleaseError(f"Release missing '{required}'")

        packages = _build_packages(data.get("packages") or [], base_dir, "packages")
        compiled = _build_packages(data.get("compiled_packages") or [], base_dir, "compiled_packages")

        return cls(
            name=str(data["name"]),
            version=str(data["version"]),
            packages=packages,
            compiled_packages=compiled,
        )


def _build_packages(
    items: list[dict[str, Any]],
    base_dir: Optional[Path | str],
    section: str,
) -> tuple[Package, ...]:
    """Build Packages for one section, linking dependencies by name."""
    raw: dict[str, dict[str, Any]] = {}
    for item in items:
        name = item.get("name")
        if not name or item.get("version") in (None, ""):
            raise ReleaseError(f"Entry in '{section}' missing name or version: {item}")
        if name in raw:
            raise ReleaseError(f"Duplicate package '{name}' in '{section}'")
        raw[name] = item

    built: dict[str, Package] = {}
    building: list[str] = []

    def build(name: str) -> Package:
        if name in built:
            return built[name]
        if name in building:
            cycle = " -> ".join(building[building.index(name):] + [name])
            raise ReleaseError(f"Package dependency cycle: {cycle}")
        item = raw[name]

        building.append(name)
        deps = []
        for dep_name in item.get("dependencies") or []:
            if dep_name not in raw:
                raise ReleaseError(f"Package '{name}' depends on unknown package '{dep_name}'")
            deps.append(build(dep_name))
        building.pop()

        archive_path = str(item.get("archive_path", ""))
        if archive_path and base_dir is not None and not Path(archive_path).is_absolute():
            archive_path = str(Path(base_dir) / archive_path)

        pkg = Package(
            name=str(name),
            version=str(item["version"]),
            archive_path=archive_path,
            fingerprint=str(item.get("fingerprint", "")),
            dependencies=tuple(deps),
        )
        built[name] = pkg
        return pkg

    return tuple(build(name) for name in raw)
