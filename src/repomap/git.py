"""Git integration for change detection.

All git access goes through :class:`GitIntegration`, which runs git with an
argument list (never a shell), a timeout, and ``cwd`` set to the project
root. Any commit identifier taken from a cached map is validated as a hex
hash before it reaches a git command line.

Example:
    >>> git = GitIntegration('/path/to/repo')
    >>> info = git.get_info()
    >>> result = git.diff_since(info.commit)
    >>> if isinstance(result, DiffChanges):
    ...     print(result.added, result.deleted)
"""

import logging
import re
import stat
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from .models import GitInfo

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 30.0

COMMIT_HASH_RE = re.compile(r"^[0-9a-fA-F]{4,40}$")

STALE_HOOK_MARKER = "# repomap: mark map stale"


def is_valid_commit_hash(value) -> bool:
    """Whether ``value`` is safe to pass to git as a commit.

    Example:
        >>> is_valid_commit_hash("3f2a9c1")
        True
        >>> is_valid_commit_hash("HEAD; rm -rf /")
        False
    """
    return isinstance(value, str) and bool(COMMIT_HASH_RE.match(value))


@dataclass
class Rename:
    """A path moved between two commits.

    Attributes:
        from_path: Path in the old commit.
        to_path: Path in the new commit.
        similarity: Git's similarity score (100 means content unchanged).
    """

    from_path: str
    to_path: str
    similarity: int = 100

    @property
    def edited(self) -> bool:
        return self.similarity < 100


@dataclass
class DiffChanges:
    """Paths changed between a commit and HEAD.

    A rename with edits appears in ``renamed`` and its destination also in
    ``modified``; no path appears in ``modified`` twice.
    """

    added: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    renamed: List[Rename] = field(default_factory=list)

    @property
    def total(self) -> int:
        edited_targets = {rename.to_path for rename in self.renamed if rename.edited}
        in_place = [path for path in self.modified if path not in edited_targets]
        return len(self.added) + len(in_place) + len(self.deleted) + len(self.renamed)


@dataclass
class DiffUnavailable:
    """The diff could not be computed; callers fall back to hashing."""

    reason: str


DiffResult = Union[DiffChanges, DiffUnavailable]


def parse_name_status(output: str) -> DiffChanges:
    """Parse ``git diff --name-status -M`` output.

    Example:
        >>> changes = parse_name_status("M\\ta.py\\nR087\\told.py\\tnew.py\\n")
        >>> changes.modified
        ['a.py', 'new.py']
    """
    changes = DiffChanges()

    def add_modified(path: str) -> None:
        if path not in changes.modified:
            changes.modified.append(path)

    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split("\t")
        status = parts[0].strip()
        if not status or len(parts) < 2:
            continue
        code = status[0]

        if code == "A":
            changes.added.append(parts[1])
        elif code in ("M", "T"):
            add_modified(parts[1])
        elif code == "D":
            changes.deleted.append(parts[1])
        elif code == "C" and len(parts) >= 3:
            changes.added.append(parts[2])
        elif code == "R" and len(parts) >= 3:
            score = status[1:]
            similarity = int(score) if score.isdigit() else 100
            rename = Rename(from_path=parts[1], to_path=parts[2], similarity=similarity)
            changes.renamed.append(rename)
            if rename.edited:
                add_modified(rename.to_path)
        else:
            logger.debug("Ignoring diff line: %s", line)

    return changes


class GitIntegration:
    """Git queries used to keep a map in step with history.

    Attributes:
        root_path: Path to the repository root.
        timeout: Seconds allowed per git invocation.
    """

    def __init__(self, root_path, timeout: float = GIT_TIMEOUT):
        self.root_path = Path(root_path)
        self.timeout = timeout

    def _run(self, *args: str) -> Optional[str]:
        """Run git and return stdout, or None on any failure."""
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.root_path,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError, OSError) as e:
            logger.debug("git %s failed: %s", " ".join(args), e)
            return None
        if result.returncode != 0:
            logger.debug("git %s exited %d: %s", " ".join(args), result.returncode, result.stderr.strip())
            return None
        return result.stdout

    @property
    def available(self) -> bool:
        """Whether git is installed and the root is inside a work tree."""
        return self._run("rev-parse", "--git-dir") is not None

    def get_head(self) -> Optional[str]:
        output = self._run("rev-parse", "HEAD")
        commit = output.strip() if output else ""
        return commit if is_valid_commit_hash(commit) else None

    def get_current_branch(self) -> Optional[str]:
        output = self._run("rev-parse", "--abbrev-ref", "HEAD")
        if not output or not output.strip():
            return None
        return output.strip()

    def get_info(self) -> Optional[GitInfo]:
        """Commit and branch of HEAD, or None outside a repository with history."""
        commit = self.get_head()
        if commit is None:
            return None
        return GitInfo(commit=commit, branch=self.get_current_branch())

    def commit_exists(self, commit: str) -> bool:
        """Whether ``commit`` names a commit object in this repository."""
        if not is_valid_commit_hash(commit):
            return False
        return self._run("cat-file", "-e", f"{commit}^{{commit}}") is not None

    def get_commits_behind(self, commit: str) -> int:
        """Number of commits between ``commit`` and HEAD (0 if unknown)."""
        if not is_valid_commit_hash(commit):
            return 0
        output = self._run("rev-list", f"{commit}..HEAD", "--count")
        try:
            return int(output.strip()) if output else 0
        except ValueError:
            return 0

    def diff_since(self, commit: str) -> DiffResult:
        """Name-status diff from ``commit`` to HEAD with rename detection."""
        if not is_valid_commit_hash(commit):
            return DiffUnavailable(reason=f"invalid commit: {commit!r}")
        output = self._run("diff", "--name-status", "-M", commit, "HEAD")
        if output is None:
            return DiffUnavailable(reason=f"git diff {commit}..HEAD failed")
        return parse_name_status(output)

    def hooks_dir(self) -> Optional[Path]:
        output = self._run("rev-parse", "--git-path", "hooks")
        if not output or not output.strip():
            return None
        path = Path(output.strip())
        return path if path.is_absolute() else self.root_path / path


def install_stale_hook(root_path, command: str = "repomap mark-stale") -> Optional[Path]:
    """Install a post-commit hook that marks the map stale.

    An existing hook is kept and the command appended once.

    Returns:
        The hook path, or None when ``root_path`` is not a git repository.
    """
    hooks_dir = GitIntegration(root_path).hooks_dir()
    if hooks_dir is None:
        return None

    hooks_dir.mkdir(parents=True, exist_ok=True)
    hook = hooks_dir / "post-commit"
    line = f'{command} "$(git rev-parse --show-toplevel)" >/dev/null 2>&1 || true'

    if hook.exists():
        content = hook.read_text(encoding="utf-8")
        if STALE_HOOK_MARKER in content:
            return hook
        content = content.rstrip("\n") + f"\n\n{STALE_HOOK_MARKER}\n{line}\n"
    else:
        content = f"#!/bin/sh\n{STALE_HOOK_MARKER}\n{line}\n"

    hook.write_text(content, encoding="utf-8")
    hook.chmod(hook.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    logger.info("Installed stale-marker hook at %s", hook)
    return hook
