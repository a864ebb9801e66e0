"""
relforge - Release package compilation engine

Compiles a release's packages in dependency order through a remote agent,
caching source and compiled archives in a blobstore so repeated runs are
no-ops and failed runs resume where they stopped.
"""

__version__ = "0.1.0"

__all__ = ["PackagesCompiler", "RelforgeConfig", "load_config", "get_relforge_home"]

from .compiler import PackagesCompiler
from .config import RelforgeConfig, load_config, get_relforge_home
