"""Source file discovery and language detection.

Walks a project tree the same way for the full scan and for the hash-based
update path, so both see the same file set: hidden directories, well-known
build/dependency directories and ``.gitignore`` matches are skipped.

Example:
    >>> matcher = IgnoreMatcher.for_project('/my/project')
    >>> detect_languages('/my/project', matcher=matcher)
    ['python']
    >>> find_files_for_language('/my/project', 'python', matcher)
    ['src/app.py', 'src/utils.py']
"""

import logging
import os
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

import pathspec

from .config import RepoMapConfig
from .queries import LANGUAGE_EXTENSIONS

logger = logging.getLogger(__name__)

EXCLUDE_DIRS = frozenset({
    "node_modules",
    "bower_components",
    "__pycache__",
    ".git",
    ".svn",
    ".hg",
    "venv",
    ".venv",
    "env",
    ".env",
    "dist",
    "build",
    "out",
    "coverage",
    "target",
    "vendor",
    ".next",
    ".nuxt",
    ".tox",
    ".eggs",
    ".gradle",
    ".pytest_cache",
    ".mypy_cache",
    ".ruff_cache",
    ".claude",
    ".opencode",
    ".codex",
})

# Files whose presence at the project root implies a language.
CONFIG_INDICATORS: Dict[str, List[str]] = {
    "javascript": ["package.json", "jsconfig.json"],
    "typescript": ["tsconfig.json", "tsconfig.base.json"],
    "python": ["pyproject.toml", "setup.py", "requirements.txt", "Pipfile"],
    "rust": ["Cargo.toml"],
    "go": ["go.mod", "go.sum"],
    "java": ["pom.xml", "build.gradle", "build.gradle.kts"],
}

PROJECT_TYPE_PRIORITY = ("typescript", "javascript", "python", "rust", "go", "java")


def _translate_gitignore_line(line: str, base: str) -> Optional[str]:
    """Rewrite one line of ``<base>/.gitignore`` relative to the project root.

    Returns:
        The pattern, or None for blank and comment lines.
    """
    line = line.rstrip()
    if not line or line.startswith("#"):
        return None
    if not base:
        return line

    negated = line.startswith("!")
    pattern = line[1:] if negated else line
    if pattern.startswith("/"):
        translated = f"/{base}{pattern}"
    elif "/" in pattern.rstrip("/"):
        translated = f"/{base}/{pattern}"
    else:
        # Slash-free patterns match at any depth below their .gitignore.
        translated = f"/{base}/**/{pattern}"
    return f"!{translated}" if negated else translated


def read_gitignore(root, exclude_dirs: Iterable[str] = ()) -> List[str]:
    """Collect the patterns of every ``.gitignore`` in the project.

    Nested files are rewritten relative to the root and listed after their
    parents, so deeper rules take precedence as they do in git. Negations
    are kept.

    Returns:
        Root-relative gitignore lines, comments and blanks removed.
    """
    root = Path(root)
    skipped = EXCLUDE_DIRS | set(exclude_dirs)
    patterns: List[str] = []

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith(".") and d not in skipped)
        if ".gitignore" not in filenames:
            continue

        gitignore_path = Path(dirpath) / ".gitignore"
        base = Path(dirpath).relative_to(root).as_posix()
        try:
            content = gitignore_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read %s: %s", gitignore_path, e)
            continue

        for line in content.splitlines():
            pattern = _translate_gitignore_line(line, "" if base == "." else base)
            if pattern:
                patterns.append(pattern)
    return patterns


class IgnoreMatcher:
    """Decides which repo-relative paths are outside the scan.

    Attributes:
        exclude_dirs: Directory names skipped wherever they appear.
        patterns: Root-relative gitignore lines.
        spec: The compiled ``pathspec.GitIgnoreSpec``.
    """

    def __init__(self, patterns: Iterable[str] = (), exclude_dirs: Iterable[str] = ()):
        self.exclude_dirs = frozenset(EXCLUDE_DIRS | set(exclude_dirs))
        self.patterns = list(patterns)
        self.spec = pathspec.GitIgnoreSpec.from_lines(self.patterns)

    @classmethod
    def for_project(cls, root, config: Optional[RepoMapConfig] = None) -> "IgnoreMatcher":
        config = config or RepoMapConfig()
        patterns = read_gitignore(root, config.exclude_dirs) if config.respect_gitignore else []
        return cls(patterns, config.exclude_dirs)

    def is_ignored(self, rel_path: str, is_dir: bool = False) -> bool:
        """Check a POSIX repo-relative path.

        A path is ignored when it, or any directory above it, is hidden,
        excluded by name, or matched by a gitignore rule. As in git, a
        negation cannot re-include a file whose directory is ignored.
        """
        parts = [part for part in rel_path.split("/") if part and part != "."]
        for index, part in enumerate(parts):
            part_is_dir = is_dir or index < len(parts) - 1
            if part_is_dir and (part.startswith(".") or part in self.exclude_dirs):
                return True
            if self._matches("/".join(parts[: index + 1]), part_is_dir):
                return True
        return False

    def _matches(self, path: str, is_dir: bool) -> bool:
        if not self.patterns:
            return False
        return self.spec.match_file(f"{path}/" if is_dir else path)


def iter_source_files(
    root,
    matcher: IgnoreMatcher,
    extensions: Optional[Iterable[str]] = None,
) -> Iterator[str]:
    """Yield repo-relative POSIX paths of files under ``root``.

    Args:
        root: Project root.
        matcher: Ignore rules.
        extensions: Lower-case suffixes to keep (all files when None).
    """
    root = Path(root)
    wanted = frozenset(extensions) if extensions is not None else None

    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir + "/"

        dirnames[:] = sorted(
            d for d in dirnames if not matcher.is_ignored(rel_dir + d, is_dir=True)
        )

        for filename in sorted(filenames):
            if wanted is not None and os.path.splitext(filename)[1].lower() not in wanted:
                continue
            rel_path = rel_dir + filename
            if not matcher.is_ignored(rel_path):
                yield rel_path


def find_files_for_language(root, language: str, matcher: Optional[IgnoreMatcher] = None) -> List[str]:
    """All files of one language, sorted."""
    matcher = matcher or IgnoreMatcher.for_project(root)
    extensions = LANGUAGE_EXTENSIONS.get(language, [])
    if not extensions:
        return []
    return list(iter_source_files(root, matcher, extensions))


def find_source_files(root, languages: Iterable[str], matcher: Optional[IgnoreMatcher] = None) -> List[str]:
    """All files of the given languages, de-duplicated and sorted."""
    matcher = matcher or IgnoreMatcher.for_project(root)
    extensions = [ext for language in languages for ext in LANGUAGE_EXTENSIONS.get(language, [])]
    if not extensions:
        return []
    return sorted(set(iter_source_files(root, matcher, extensions)))


def detect_languages(
    root,
    matcher: Optional[IgnoreMatcher] = None,
    sample_limit: int = 500,
) -> List[str]:
    """Detect the languages used in a project.

    Root-level config files are checked first, then up to ``sample_limit``
    files are sampled for extensions to catch mixed-language repositories.

    Returns:
        Language names in canonical order.
    """
    root = Path(root)
    matcher = matcher or IgnoreMatcher.for_project(root)
    detected = set()

    for language, indicators in CONFIG_INDICATORS.items():
        if any((root / name).exists() for name in indicators):
            detected.add(language)

    seen_extensions = set()
    for count, rel_path in enumerate(iter_source_files(root, matcher)):
        if count >= sample_limit:
            break
        suffix = os.path.splitext(rel_path)[1].lower()
        if suffix:
            seen_extensions.add(suffix)

    for language, extensions in LANGUAGE_EXTENSIONS.items():
        if seen_extensions.intersection(extensions):
            detected.add(language)

    return [language for language in LANGUAGE_EXTENSIONS if language in detected]


def detect_project_type(languages: List[str]) -> str:
    for language in PROJECT_TYPE_PRIORITY:
        if language in languages:
            return "node" if language == "typescript" else language
    return languages[0] if languages else "unknown"
