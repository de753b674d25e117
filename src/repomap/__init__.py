"""repomap - Incremental, git-aware structural map of a repository.

The map records, per source file, a content hash, its symbols (exports,
functions, classes, types, constants) and its imports, extracted with the
ast-grep CLI. It is saved under the project's state directory and kept
current by rescanning only the files git (or a content hash) reports as
changed.

Components:
    - init / update / status: Build, refresh and inspect the map
    - RepoMap: The in-memory map and its JSON form
    - DependencyGraph: Import graph and PageRank over a map

Quick Start:
    >>> import asyncio
    >>> from repomap import init, update, status
    >>> asyncio.run(init('/my/project')).summary.files
    42
    >>> asyncio.run(update('/my/project')).changes.total
    3
    >>> status('/my/project').staleness.is_stale
    False
"""

__version__ = "1.0.0"

from .ast_grep import AstGrepInstall
from .config import RepoMapConfig, load_config
from .exceptions import AstGrepError, ConfigError, InvalidMapError, RepoMapError
from .graph import DependencyGraph
from .models import (
    FORMAT_VERSION,
    ChangeSummary,
    FileRecord,
    ImportRecord,
    InitResult,
    RepoMap,
    StalenessReport,
    StatusResult,
    Symbol,
    SymbolTable,
    UpdateResult,
    normalize_map_data,
)
from .repo_map import (
    check_ast_grep_installed,
    exists,
    get_install_instructions,
    init,
    load,
    status,
    update,
)
from .scanner import compute_content_hash

__all__ = [
    "__version__",
    "init",
    "update",
    "status",
    "load",
    "exists",
    "check_ast_grep_installed",
    "get_install_instructions",
    "compute_content_hash",
    "normalize_map_data",
    "RepoMap",
    "FileRecord",
    "Symbol",
    "SymbolTable",
    "ImportRecord",
    "ChangeSummary",
    "StalenessReport",
    "InitResult",
    "UpdateResult",
    "StatusResult",
    "AstGrepInstall",
    "DependencyGraph",
    "RepoMapConfig",
    "load_config",
    "RepoMapError",
    "ConfigError",
    "AstGrepError",
    "InvalidMapError",
    "FORMAT_VERSION",
]
