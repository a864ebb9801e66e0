"""
relforge.schemas - Data structures for the package compilation engine.

Release -> Package -> PackageRecord / CompiledPackageRecord

Lifecycle:
1. Release/Package: built once when a release description is read, immutable
2. PackageRecord: created on first upload of a package's source archive
3. CompiledPackageRecord: created when the agent compiles a package (or a
   precompiled package is applied); survives process restarts
"""

from .package import (
    Package,
    PackageKey,
    Release,
)
from .records import (
    PackageRecord,
    CompiledPackageRecord,
)

__all__ = [
    # Package graph
    "Package",
    "PackageKey",
    "Release",
    # Records
    "PackageRecord",
    "CompiledPackageRecord",
]
