#!/usr/bin/env python3
"""Incremental Updater - Brings a cached repo map up to date.

Two change-detection strategies are used:

* **git diff** (preferred): when the map records a commit and the project is a
  git repository, ``git diff --name-status -M <commit> HEAD`` names exactly
  the files to delete, move or rescan. Pure renames are re-keyed without a
  rescan.
* **content hashes** (fallback): without usable history every source file is
  enumerated and hashed; only files whose hash differs from the cached one
  are rescanned.

Either way the update is all-or-nothing: if any file that must be rescanned
fails, the result asks for a full rebuild and the map must not be saved.
Files a full scan already recorded in ``stats.errors`` are the exception:
they fail the same way after a rebuild, so a repeat failure refreshes their
error entry instead of aborting.

Example:
    >>> repo_map = cache.load('/my/project')
    >>> result = await incremental_update('/my/project', repo_map)
    >>> if result.success:
    ...     cache.save('/my/project', result.repo_map)
    ... elif result.needs_full_rebuild:
    ...     await repo_map_api.init('/my/project', force=True)
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from . import cache
from .ast_grep import check_installed, get_install_instructions, get_minimum_version, meets_minimum_version
from .config import RepoMapConfig
from .discovery import IgnoreMatcher, find_source_files
from .git import DiffChanges, DiffUnavailable, GitIntegration
from .models import ChangeSummary, RepoMap, ScanError, StalenessReport, UpdateResult, utc_now
from .queries import is_scannable
from .scanner import hash_file, scan_files

logger = logging.getLogger(__name__)


def relevant_changes(diff: DiffChanges, repo_map: RepoMap, matcher: IgnoreMatcher) -> DiffChanges:
    """Reduce a raw diff to the changes that affect the map.

    Paths the map would never contain (unsupported extensions, ignored
    directories) are dropped; renames across that boundary become plain
    additions or deletions. Files recorded in ``stats.errors`` count as
    known, so deleting or moving them clears their error entry.
    """
    def tracked(path: str) -> bool:
        return is_scannable(path) and not matcher.is_ignored(path)

    failed = {error.file for error in repo_map.stats.errors}

    def known(path: str) -> bool:
        return path in repo_map.files or path in failed

    changes = DiffChanges()
    edited_targets = {rename.to_path for rename in diff.renamed if rename.edited}

    changes.added = [path for path in diff.added if tracked(path)]
    changes.deleted = [path for path in diff.deleted if known(path)]

    for path in diff.modified:
        if path in edited_targets:
            continue
        if tracked(path):
            changes.modified.append(path)
        elif known(path):
            changes.deleted.append(path)

    for rename in diff.renamed:
        mapped = rename.from_path in repo_map.files
        if mapped and tracked(rename.to_path):
            changes.renamed.append(rename)
            if rename.edited:
                changes.modified.append(rename.to_path)
            continue
        if known(rename.from_path):
            changes.deleted.append(rename.from_path)
        if not mapped and tracked(rename.to_path):
            changes.added.append(rename.to_path)

    return changes


async def _rescan(
    base: Path,
    repo_map: RepoMap,
    paths: List[str],
    command: str,
    config: RepoMapConfig,
) -> Tuple[int, List[str]]:
    """Rescan ``paths`` into the map.

    Files missing from disk are skipped. A file that already has an entry
    in ``stats.errors`` and fails again gets its entry refreshed; any other
    failure means nothing is written to the map.

    Returns:
        (number of files rescanned, files that failed)
    """
    targets = []
    for path in dict.fromkeys(paths):
        if (base / path).is_file():
            targets.append(path)
        else:
            logger.debug("Skipping %s: no longer on disk", path)

    known_errors = {error.file for error in repo_map.stats.errors}
    errors: Dict[str, ScanError] = {}
    records = await scan_files(command, targets, base, config, lambda error: errors.setdefault(error.file, error))

    failed = [
        path for path, record in zip(targets, records)
        if record is None and path not in known_errors
    ]
    if failed:
        return 0, failed

    rescanned = 0
    for path, record in zip(targets, records):
        if record is None:
            error = errors.get(path) or ScanError(file=path, message="scan failed")
            error.hash = hash_file(base / path)
            repo_map.record_error(error)
            logger.warning("%s still fails to scan; keeping it in stats.errors", path)
            continue
        repo_map.set_file(path, record)
        repo_map.add_language(record.language)
        rescanned += 1
    return rescanned, []


def _scan_failure(failed: List[str]) -> UpdateResult:
    return UpdateResult.failure(
        f"Failed to scan {len(failed)} file(s); run a full rebuild",
        needs_full_rebuild=True,
        failed_files=failed,
    )


async def _resolve_command(config: RepoMapConfig) -> Tuple[Optional[str], Optional[UpdateResult]]:
    install = await check_installed(config.version_timeout)
    if not install.found:
        return None, UpdateResult(
            success=False, error="ast-grep not found", install_suggestion=get_install_instructions()
        )
    if not meets_minimum_version(install.version):
        return None, UpdateResult(
            success=False,
            error=(
                f"ast-grep version {install.version or 'unknown'} is too old. "
                f"Minimum required: {get_minimum_version()}"
            ),
            install_suggestion=get_install_instructions(),
        )
    return install.command, None


async def incremental_update(
    base_path,
    repo_map: Optional[RepoMap],
    config: Optional[RepoMapConfig] = None,
    command: Optional[str] = None,
) -> UpdateResult:
    """Update ``repo_map`` to reflect the current project state.

    The map is updated in place and returned in the result; on failure it
    may be partially modified and must be discarded by the caller.

    Args:
        base_path: Project root.
        repo_map: Map loaded from the cache.
        config: Effective configuration.
        command: ast-grep command; located and version-checked when omitted.

    Returns:
        UpdateResult with the change summary, or a failure that may set
        ``needs_full_rebuild``.
    """
    config = config or RepoMapConfig()
    if repo_map is None or not isinstance(repo_map.files, dict):
        return UpdateResult.failure("Invalid repo map: missing files mapping", needs_full_rebuild=True)

    if command is None:
        command, failure = await _resolve_command(config)
        if failure is not None:
            return failure

    base = Path(base_path)
    git = GitIntegration(base, timeout=config.git_timeout)
    head = git.get_info()

    if head is None or repo_map.git is None:
        logger.info("No usable git history; comparing content hashes")
        return await update_without_git(base, repo_map, config, command)

    if not git.commit_exists(repo_map.git.commit):
        return UpdateResult.failure(
            f"Base commit {repo_map.git.commit} not found (history rewritten?); full rebuild required",
            needs_full_rebuild=True,
        )

    diff = git.diff_since(repo_map.git.commit)
    if isinstance(diff, DiffUnavailable):
        logger.warning("git diff unavailable (%s); comparing content hashes", diff.reason)
        return await update_without_git(base, repo_map, config, command)

    changes = relevant_changes(diff, repo_map, IgnoreMatcher.for_project(base, config))
    edited_targets = {rename.to_path for rename in changes.renamed if rename.edited}
    summary = ChangeSummary(
        added=len(changes.added),
        modified=len([path for path in changes.modified if path not in edited_targets]),
        deleted=len(changes.deleted),
        renamed=len(changes.renamed),
    )

    if changes.total == 0:
        repo_map.git = head
        repo_map.updated = utc_now()
        return UpdateResult(success=True, repo_map=repo_map, changes=summary)

    for path in changes.deleted:
        repo_map.remove_file(path)

    for rename in changes.renamed:
        repo_map.move_file(rename.from_path, rename.to_path)

    rescanned, failed = await _rescan(base, repo_map, changes.added + changes.modified, command, config)
    if failed:
        return _scan_failure(failed)

    summary.updated = rescanned
    repo_map.recalculate_stats()
    repo_map.git = head
    repo_map.updated = utc_now()
    logger.info(
        "Updated repo map: %d added, %d modified, %d deleted, %d renamed",
        summary.added, summary.modified, summary.deleted, summary.renamed,
    )
    return UpdateResult(success=True, repo_map=repo_map, changes=summary)


async def update_without_git(
    base_path,
    repo_map: RepoMap,
    config: Optional[RepoMapConfig] = None,
    command: str = "sg",
) -> UpdateResult:
    """Update a map by comparing content hashes against the working tree.

    Files listed in ``stats.errors`` are compared against the hash recorded
    with the error: unchanged failures are left alone, changed ones are
    retried (and counted as modified), and vanished ones are dropped (and
    counted as deleted). The recorded ``git`` field is left as it was.
    """
    config = config or RepoMapConfig()
    base = Path(base_path)
    matcher = IgnoreMatcher.for_project(base, config)

    languages = list(repo_map.project.languages)
    for record in repo_map.files.values():
        if record.language and record.language not in languages:
            languages.append(record.language)

    current = set(find_source_files(base, languages, matcher))
    known = set(repo_map.files)
    failed_before = {error.file: error for error in repo_map.stats.errors if error.file not in known}

    deleted = sorted(known - current) + sorted(set(failed_before) - current)
    added = sorted(current - known - set(failed_before))
    modified = [
        path for path in sorted(known & current)
        if hash_file(base / path) != repo_map.files[path].hash
    ]
    modified += [
        path for path in sorted(set(failed_before) & current)
        if hash_file(base / path) != failed_before[path].hash
    ]

    for path in deleted:
        repo_map.remove_file(path)

    rescanned, failed = await _rescan(base, repo_map, added + modified, command, config)
    if failed:
        return _scan_failure(failed)

    repo_map.recalculate_stats()
    repo_map.updated = utc_now()
    summary = ChangeSummary(
        added=len(added),
        modified=len(modified),
        deleted=len(deleted),
        renamed=0,
        updated=rescanned,
    )
    return UpdateResult(success=True, repo_map=repo_map, changes=summary)


def check_staleness(base_path, repo_map: RepoMap, config: Optional[RepoMapConfig] = None) -> StalenessReport:
    """Report whether a map may no longer reflect the repository.

    Read-only: nothing is written and no file is scanned.
    """
    config = config or RepoMapConfig()
    if repo_map.git is None:
        return StalenessReport(
            is_stale=True, reason="No git commit recorded in map", suggest_full_rebuild=True
        )

    report = StalenessReport()
    if cache.is_marked_stale(base_path, config):
        report.is_stale = True
        report.reason = "Marked stale by hook"

    git = GitIntegration(base_path, timeout=config.git_timeout)
    if not git.commit_exists(repo_map.git.commit):
        return StalenessReport(
            is_stale=True,
            reason="Base commit no longer exists (history rewritten?)",
            suggest_full_rebuild=True,
        )

    branch = git.get_current_branch()
    if repo_map.git.branch and branch and branch != repo_map.git.branch:
        report.is_stale = True
        report.reason = report.reason or f"Branch changed from {repo_map.git.branch} to {branch}"

    behind = git.get_commits_behind(repo_map.git.commit)
    if behind > 0:
        report.is_stale = True
        report.commits_behind = behind
        report.reason = report.reason or f"{behind} commit(s) behind HEAD"

    return report
