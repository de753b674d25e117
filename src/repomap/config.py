"""Configuration loading for repomap.

Settings come from three layers, later layers winning:

1. Built-in defaults (:class:`RepoMapConfig`).
2. The ``[tool.repomap]`` table of the project's ``pyproject.toml``.
3. Environment variables (``AI_STATE_DIR``, ``REPOMAP_CONCURRENCY``).

Example pyproject.toml:
    [tool.repomap]
    state-dir = ".claude"
    concurrency = 4
    exclude-dirs = ["generated", "third_party"]

Example:
    >>> config = load_config('/path/to/project')
    >>> config.concurrency
    8
"""

import logging
import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

STATE_DIR_ENV = "AI_STATE_DIR"
CONCURRENCY_ENV = "REPOMAP_CONCURRENCY"

DEFAULT_STATE_DIR = ".claude"


@dataclass
class RepoMapConfig:
    """Runtime settings for scanning and caching.

    Attributes:
        state_dir: Project-relative (or absolute) directory holding the map.
        concurrency: Maximum number of ast-grep processes in flight.
        scan_timeout: Seconds allowed per single-file ast-grep invocation.
        batch_size: Files passed to one ast-grep process during a full scan.
        batch_timeout: Seconds allowed per batched ast-grep invocation.
        version_timeout: Seconds allowed for the ``--version`` check.
        git_timeout: Seconds allowed per git invocation.
        exclude_dirs: Extra directory names skipped during discovery.
        respect_gitignore: Whether ``.gitignore`` patterns are honoured.
        language_sample_limit: Files sampled when detecting languages.
    """

    state_dir: str = DEFAULT_STATE_DIR
    concurrency: int = 8
    scan_timeout: float = 30.0
    batch_size: int = 100
    batch_timeout: float = 300.0
    version_timeout: float = 5.0
    git_timeout: float = 30.0
    exclude_dirs: List[str] = field(default_factory=list)
    respect_gitignore: bool = True
    language_sample_limit: int = 500

    def validate(self) -> "RepoMapConfig":
        """Check value types and ranges.

        Returns:
            self, for chaining.

        Raises:
            ConfigError: If any value is invalid.
        """
        if not isinstance(self.state_dir, str) or not self.state_dir.strip():
            raise ConfigError("state_dir must be a non-empty string")
        if isinstance(self.concurrency, bool) or not isinstance(self.concurrency, int):
            raise ConfigError("concurrency must be an integer")
        if self.concurrency < 1:
            raise ConfigError("concurrency must be at least 1")
        if isinstance(self.batch_size, bool) or not isinstance(self.batch_size, int) or self.batch_size < 1:
            raise ConfigError("batch_size must be a positive integer")
        for name in ("scan_timeout", "batch_timeout", "version_timeout", "git_timeout"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigError(f"{name} must be a positive number")
        if not isinstance(self.exclude_dirs, list) or not all(
            isinstance(item, str) for item in self.exclude_dirs
        ):
            raise ConfigError("exclude_dirs must be a list of strings")
        if not isinstance(self.respect_gitignore, bool):
            raise ConfigError("respect_gitignore must be a boolean")
        if isinstance(self.language_sample_limit, bool) or not isinstance(
            self.language_sample_limit, int
        ):
            raise ConfigError("language_sample_limit must be an integer")
        return self


def _read_pyproject_table(base_path: Path) -> Dict[str, Any]:
    """Return the ``[tool.repomap]`` table, or an empty dict."""
    pyproject = base_path / "pyproject.toml"
    if not pyproject.is_file():
        return {}

    try:
        data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as e:
        logger.warning("Ignoring unreadable %s: %s", pyproject, e)
        return {}

    table = data.get("tool", {}).get("repomap", {})
    if not isinstance(table, dict):
        raise ConfigError("[tool.repomap] must be a table")
    return table


def load_config(base_path, overrides: Optional[Dict[str, Any]] = None) -> RepoMapConfig:
    """Build the effective configuration for a project.

    Args:
        base_path: Project root.
        overrides: Explicit values that win over every other layer.

    Returns:
        A validated RepoMapConfig.

    Raises:
        ConfigError: If a configured value is invalid.
    """
    known = {f.name for f in fields(RepoMapConfig)}
    values: Dict[str, Any] = {}

    for key, value in _read_pyproject_table(Path(base_path)).items():
        name = key.replace("-", "_")
        if name not in known:
            logger.warning("Unknown [tool.repomap] key: %s", key)
            continue
        values[name] = value

    state_dir = os.environ.get(STATE_DIR_ENV)
    if state_dir:
        values["state_dir"] = state_dir

    concurrency = os.environ.get(CONCURRENCY_ENV)
    if concurrency:
        try:
            values["concurrency"] = int(concurrency)
        except ValueError:
            raise ConfigError(f"{CONCURRENCY_ENV} must be an integer, got {concurrency!r}")

    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})

    return RepoMapConfig(**values).validate()
