"""Public operations: init, update, status.

These functions tie the pieces together and never raise for expected
failures; every outcome is a result object that callers inspect.

Example:
    >>> import asyncio
    >>> from repomap import init, update, status
    >>> result = asyncio.run(init('/my/project'))
    >>> result.summary.files
    42
    >>> result = asyncio.run(update('/my/project'))
    >>> result.changes.total
    0
    >>> status('/my/project').staleness.is_stale
    False
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from . import cache
from .ast_grep import (
    AstGrepInstall,
    check_installed,
    get_install_instructions as _install_instructions,
    get_minimum_version,
    meets_minimum_version,
)
from .config import RepoMapConfig, load_config
from .discovery import IgnoreMatcher, detect_languages
from .exceptions import ConfigError
from .models import InitResult, RepoMap, ScanSummary, StatusResult, UpdateResult
from .queries import PATTERNS, normalize_language
from .scanner import full_scan
from .updater import check_staleness, incremental_update

logger = logging.getLogger(__name__)

NO_MAP_MESSAGE = "No repo-map found. Run init to create one."


def _resolve_config(base_path, config: Optional[RepoMapConfig]) -> RepoMapConfig:
    return config if config is not None else load_config(base_path)


async def _check_tool(config: RepoMapConfig) -> Tuple[Optional[AstGrepInstall], Optional[str]]:
    """Locate ast-grep; returns (install, error message)."""
    install = await check_installed(config.version_timeout)
    if not install.found:
        return None, "ast-grep not found"
    if not meets_minimum_version(install.version):
        return None, (
            f"ast-grep version {install.version or 'unknown'} is too old. "
            f"Minimum required: {get_minimum_version()}"
        )
    return install, None


async def init(
    base_path,
    force: bool = False,
    languages: Optional[List[str]] = None,
    config: Optional[RepoMapConfig] = None,
) -> InitResult:
    """Build a new map with a full scan and save it.

    Args:
        base_path: Project root.
        force: Replace an existing map.
        languages: Languages to scan (detected when omitted).
        config: Settings (loaded from the project when omitted).

    Returns:
        InitResult with the map and a short summary.
    """
    base = Path(base_path).resolve()
    try:
        config = _resolve_config(base, config)
    except ConfigError as e:
        return InitResult(success=False, error=f"Invalid configuration: {e}")

    install, error = await _check_tool(config)
    if error:
        return InitResult(success=False, error=error, install_suggestion=_install_instructions())

    if cache.exists(base, config) and not force:
        return InitResult(
            success=False,
            error="Repo map already exists. Use --force to rebuild or run update to refresh.",
            existing=cache.get_status(base, config),
        )

    matcher = IgnoreMatcher.for_project(base, config)
    if languages:
        requested = dict.fromkeys(normalize_language(name) for name in languages)
        languages = [name for name in requested if name in PATTERNS]
    else:
        languages = detect_languages(base, matcher, config.language_sample_limit)
    if not languages:
        return InitResult(success=False, error="No supported languages detected in repository")

    repo_map = await full_scan(base, languages, install.command, config, matcher)

    cache.save(base, repo_map, config)
    logger.info("Repo map created: %d files, %d symbols", repo_map.stats.total_files, repo_map.stats.total_symbols)

    return InitResult(
        success=True,
        repo_map=repo_map,
        summary=ScanSummary(
            files=len(repo_map.files),
            symbols=repo_map.stats.total_symbols,
            languages=list(repo_map.project.languages),
            duration=repo_map.stats.scan_duration_ms,
        ),
    )


async def update(base_path, full: bool = False, config: Optional[RepoMapConfig] = None) -> UpdateResult:
    """Refresh an existing map, saving it only when the update succeeds.

    Args:
        base_path: Project root.
        full: Rebuild from scratch instead of updating incrementally.
        config: Settings (loaded from the project when omitted).
    """
    base = Path(base_path).resolve()
    try:
        config = _resolve_config(base, config)
    except ConfigError as e:
        return UpdateResult.failure(f"Invalid configuration: {e}")

    install, error = await _check_tool(config)
    if error:
        return UpdateResult(success=False, error=error, install_suggestion=_install_instructions())

    if not cache.exists(base, config):
        return UpdateResult.failure("No repo map found. Run init first.")

    if full:
        rebuilt = await init(base, force=True, config=config)
        return UpdateResult(
            success=rebuilt.success,
            repo_map=rebuilt.repo_map,
            error=rebuilt.error,
            install_suggestion=rebuilt.install_suggestion,
            summary=rebuilt.summary,
        )

    existing = cache.load(base, config)
    if existing is None:
        return UpdateResult.failure("Repo map is unreadable or invalid", needs_full_rebuild=True)

    result = await incremental_update(base, existing, config, command=install.command)
    if result.success:
        cache.save(base, result.repo_map, config)
    return result


def status(base_path, config: Optional[RepoMapConfig] = None) -> StatusResult:
    """Describe the cached map and whether it is stale."""
    base = Path(base_path).resolve()
    try:
        config = _resolve_config(base, config)
    except ConfigError as e:
        return StatusResult(exists=False, message=f"Invalid configuration: {e}")

    repo_map = cache.load(base, config)
    if repo_map is None:
        return StatusResult(exists=False, message=NO_MAP_MESSAGE)

    return StatusResult(
        exists=True,
        status=cache.get_status(base, config),
        staleness=check_staleness(base, repo_map, config),
    )


def load(base_path, config: Optional[RepoMapConfig] = None) -> Optional[RepoMap]:
    """The cached map, or None when it is missing, unreadable or the configuration is invalid."""
    base = Path(base_path).resolve()
    try:
        config = _resolve_config(base, config)
    except ConfigError as e:
        logger.warning("Cannot load repo map: invalid configuration: %s", e)
        return None
    return cache.load(base, config)


def exists(base_path, config: Optional[RepoMapConfig] = None) -> bool:
    base = Path(base_path).resolve()
    try:
        config = _resolve_config(base, config)
    except ConfigError as e:
        logger.warning("Cannot locate repo map: invalid configuration: %s", e)
        return False
    return cache.exists(base, config)


async def check_ast_grep_installed(config: Optional[RepoMapConfig] = None) -> AstGrepInstall:
    config = config or RepoMapConfig()
    return await check_installed(config.version_timeout)


def get_install_instructions() -> str:
    return _install_instructions()
