"""Data model for the repo map.

The persisted document is plain JSON; these dataclasses give it structure
in memory and convert to and from the on-disk shape. On disk the aggregate
counters keep their camelCase names (``totalFiles``, ``scanDurationMs``) so
that maps written by other tooling load unchanged.

Example:
    >>> repo_map = RepoMap()
    >>> repo_map.set_file('src/app.py', FileRecord(hash='abc', imports=[ImportRecord('os')]))
    >>> repo_map.dependencies
    {'src/app.py': ['os']}
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .exceptions import InvalidMapError

FORMAT_VERSION = "1.0.0"

# Categories counted in stats.totalSymbols. Exports are a view over these.
SYMBOL_CATEGORIES = ("functions", "classes", "types", "constants")

# Fields from older map formats that are dropped on load.
LEGACY_FIELDS = ("docs",)


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class Symbol:
    """A named declaration found in a file.

    Attributes:
        name: Identifier as written in the source.
        kind: Declaration kind (function, class, type, constant, value...).
        line: 1-based line number, or None when unknown.
        exported: Whether the name is part of the file's public surface.
    """

    name: str
    kind: str
    line: Optional[int] = None
    exported: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "kind": self.kind, "line": self.line}
        if self.exported is not None:
            data["exported"] = self.exported
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Symbol":
        return cls(
            name=str(data.get("name", "")),
            kind=str(data.get("kind", "")),
            line=data.get("line"),
            exported=data.get("exported"),
        )


@dataclass
class SymbolTable:
    """Symbols of one file, grouped by category."""

    exports: List[Symbol] = field(default_factory=list)
    functions: List[Symbol] = field(default_factory=list)
    classes: List[Symbol] = field(default_factory=list)
    types: List[Symbol] = field(default_factory=list)
    constants: List[Symbol] = field(default_factory=list)

    def count(self) -> int:
        """Number of declarations, excluding the exports view."""
        return sum(len(getattr(self, category)) for category in SYMBOL_CATEGORIES)

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            category: [symbol.to_dict() for symbol in getattr(self, category)]
            for category in ("exports",) + SYMBOL_CATEGORIES
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SymbolTable":
        data = data or {}
        return cls(
            **{
                category: [Symbol.from_dict(item) for item in data.get(category) or []]
                for category in ("exports",) + SYMBOL_CATEGORIES
            }
        )


@dataclass
class ImportRecord:
    """One import statement.

    Attributes:
        source: Module specifier as written (quotes stripped).
        kind: Import form (import, from, named, require, use...).
        line: 1-based line number, or None when unknown.
    """

    source: str
    kind: str = "import"
    line: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"source": self.source, "kind": self.kind, "line": self.line}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImportRecord":
        return cls(
            source=str(data.get("source", "")),
            kind=str(data.get("kind", "import")),
            line=data.get("line"),
        )


@dataclass
class FileRecord:
    """Structural snapshot of a single file.

    Attributes:
        hash: Content fingerprint (truncated SHA-256 of the text).
        language: Language the file was scanned as.
        size: Length of the decoded content in characters.
        symbols: Declarations grouped by category.
        imports: Import statements in discovery order.
    """

    hash: str
    language: Optional[str] = None
    size: int = 0
    symbols: SymbolTable = field(default_factory=SymbolTable)
    imports: List[ImportRecord] = field(default_factory=list)

    @property
    def symbol_count(self) -> int:
        return self.symbols.count()

    def import_sources(self) -> List[str]:
        """Unique import sources, first occurrence order."""
        return list(dict.fromkeys(imp.source for imp in self.imports if imp.source))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.hash,
            "language": self.language,
            "size": self.size,
            "symbols": self.symbols.to_dict(),
            "imports": [imp.to_dict() for imp in self.imports],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileRecord":
        if not isinstance(data, dict):
            raise InvalidMapError("file record must be an object")
        return cls(
            hash=str(data.get("hash", "")),
            language=data.get("language"),
            size=int(data.get("size") or 0),
            symbols=SymbolTable.from_dict(data.get("symbols")),
            imports=[ImportRecord.from_dict(item) for item in data.get("imports") or []],
        )


@dataclass
class ScanError:
    """A file the AST tool could not process.

    ``hash`` is the content hash at the time of the failure, when known.
    """

    file: str
    message: str
    hash: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        data = {"file": self.file, "message": self.message}
        if self.hash:
            data["hash"] = self.hash
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "ScanError":
        if isinstance(data, dict):
            return cls(
                file=str(data.get("file", "")),
                message=str(data.get("message") or data.get("error") or ""),
                hash=data.get("hash") if isinstance(data.get("hash"), str) else None,
            )
        return cls(file="", message=str(data))


@dataclass
class MapStats:
    """Aggregate counters, recomputable from the files mapping."""

    total_files: int = 0
    total_symbols: int = 0
    scan_duration_ms: int = 0
    errors: List[ScanError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalFiles": self.total_files,
            "totalSymbols": self.total_symbols,
            "scanDurationMs": self.scan_duration_ms,
            "errors": [error.to_dict() for error in self.errors],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MapStats":
        return cls(
            total_files=int(data.get("totalFiles") or 0),
            total_symbols=int(data.get("totalSymbols") or 0),
            scan_duration_ms=int(data.get("scanDurationMs") or 0),
            errors=[ScanError.from_dict(item) for item in data.get("errors") or []],
        )


@dataclass
class GitInfo:
    """Repository state a map reflects."""

    commit: str
    branch: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"commit": self.commit, "branch": self.branch}

    @classmethod
    def from_dict(cls, data: Any) -> Optional["GitInfo"]:
        if not isinstance(data, dict) or not data.get("commit"):
            return None
        return cls(commit=str(data["commit"]), branch=data.get("branch"))


@dataclass
class ProjectInfo:
    """Project-level facts gathered during the full scan."""

    type: str = "unknown"
    languages: List[str] = field(default_factory=list)
    frameworks: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "languages": list(self.languages), "frameworks": list(self.frameworks)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectInfo":
        return cls(
            type=str(data.get("type") or "unknown"),
            languages=list(data.get("languages") or []),
            frameworks=list(data.get("frameworks") or []),
        )


def normalize_map_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """Bring raw map JSON to the current format.

    Drops legacy fields and fills in containers that older writers omitted.
    The input is not modified.

    Args:
        data: Parsed map document.

    Returns:
        A normalized shallow copy.

    Raises:
        InvalidMapError: If ``data`` is not an object or has no files mapping.
    """
    if not isinstance(data, dict):
        raise InvalidMapError("map document must be an object")
    if not isinstance(data.get("files"), dict):
        raise InvalidMapError("map document has no files mapping")

    normalized = {key: value for key, value in data.items() if key not in LEGACY_FIELDS}

    stats = dict(normalized.get("stats") or {})
    if not isinstance(stats.get("errors"), list):
        stats["errors"] = []
    normalized["stats"] = stats

    if not isinstance(normalized.get("dependencies"), dict):
        normalized["dependencies"] = {}
    if not isinstance(normalized.get("project"), dict):
        normalized["project"] = {}
    return normalized


@dataclass
class RepoMap:
    """The cached structural index of a repository.

    ``files`` and ``dependencies`` must only be changed through
    :meth:`set_file`, :meth:`remove_file` and :meth:`move_file`, which keep the
    dependency projection in step with each file's imports.
    """

    generated: str = field(default_factory=utc_now)
    updated: Optional[str] = None
    git: Optional[GitInfo] = None
    project: ProjectInfo = field(default_factory=ProjectInfo)
    files: Dict[str, FileRecord] = field(default_factory=dict)
    dependencies: Dict[str, List[str]] = field(default_factory=dict)
    stats: MapStats = field(default_factory=MapStats)
    version: str = FORMAT_VERSION

    def set_file(self, path: str, record: FileRecord) -> None:
        self.files[path] = record
        self._project_dependencies(path)
        self.clear_error(path)

    def remove_file(self, path: str) -> Optional[FileRecord]:
        """Drop a path from the map, including any scan error recorded for it."""
        self.dependencies.pop(path, None)
        self.clear_error(path)
        return self.files.pop(path, None)

    def error_for(self, path: str) -> Optional[ScanError]:
        return next((error for error in self.stats.errors if error.file == path), None)

    def record_error(self, error: ScanError) -> None:
        """Replace any earlier error for the same file, keeping errors sorted by path."""
        errors = [existing for existing in self.stats.errors if existing.file != error.file]
        errors.append(error)
        self.stats.errors = sorted(errors, key=lambda item: item.file)

    def clear_error(self, path: str) -> None:
        if any(error.file == path for error in self.stats.errors):
            self.stats.errors = [error for error in self.stats.errors if error.file != path]

    def move_file(self, src: str, dst: str) -> bool:
        """Re-key a record without rescanning it.

        Returns:
            False if ``src`` is not in the map.
        """
        record = self.files.pop(src, None)
        if record is None:
            return False
        self.dependencies.pop(src, None)
        self.set_file(dst, record)
        return True

    def _project_dependencies(self, path: str) -> None:
        sources = self.files[path].import_sources()
        if sources:
            self.dependencies[path] = sources
        else:
            self.dependencies.pop(path, None)

    def add_language(self, language: Optional[str]) -> None:
        if language and language not in self.project.languages:
            self.project.languages.append(language)

    def recalculate_stats(self) -> MapStats:
        self.stats.total_files = len(self.files)
        self.stats.total_symbols = sum(record.symbol_count for record in self.files.values())
        return self.stats

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "generated": self.generated,
            "updated": self.updated,
            "git": self.git.to_dict() if self.git else None,
            "project": self.project.to_dict(),
            "stats": self.stats.to_dict(),
            "files": {path: record.to_dict() for path, record in self.files.items()},
            "dependencies": {path: list(sources) for path, sources in self.dependencies.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RepoMap":
        """Build a map from parsed JSON, normalizing legacy formats first.

        Raises:
            InvalidMapError: If the document is structurally invalid.
        """
        data = normalize_map_data(data)
        try:
            return cls(
                version=str(data.get("version") or FORMAT_VERSION),
                generated=str(data.get("generated") or utc_now()),
                updated=data.get("updated"),
                git=GitInfo.from_dict(data.get("git")),
                project=ProjectInfo.from_dict(data["project"]),
                files={str(path): FileRecord.from_dict(rec) for path, rec in data["files"].items()},
                dependencies={
                    str(path): [str(source) for source in sources]
                    for path, sources in data["dependencies"].items()
                    if isinstance(sources, list) and sources
                },
                stats=MapStats.from_dict(data["stats"]),
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise InvalidMapError(f"malformed map document: {e}") from e


# ==============================================================================
# RESULTS
# ==============================================================================


@dataclass
class ChangeSummary:
    """Counts of what an update touched.

    ``renamed`` includes renames with edits; ``modified`` counts in-place edits
    only, so no path is counted twice. ``updated`` is the number of files that
    were actually rescanned.
    """

    added: int = 0
    modified: int = 0
    deleted: int = 0
    renamed: int = 0
    updated: int = 0

    @property
    def total(self) -> int:
        return self.added + self.modified + self.deleted + self.renamed

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "updated": self.updated,
            "added": self.added,
            "modified": self.modified,
            "deleted": self.deleted,
            "renamed": self.renamed,
        }


@dataclass
class ScanSummary:
    """Short description of a completed full scan."""

    files: int
    symbols: int
    languages: List[str]
    duration: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files": self.files,
            "symbols": self.symbols,
            "languages": list(self.languages),
            "duration": self.duration,
        }


@dataclass
class MapSummary:
    """Header fields of a persisted map."""

    generated: Optional[str]
    updated: Optional[str]
    commit: Optional[str]
    branch: Optional[str]
    files: int
    symbols: int
    languages: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated": self.generated,
            "updated": self.updated,
            "commit": self.commit,
            "branch": self.branch,
            "files": self.files,
            "symbols": self.symbols,
            "languages": list(self.languages),
        }


@dataclass
class StalenessReport:
    """Whether a cached map still reflects the working tree."""

    is_stale: bool = False
    reason: Optional[str] = None
    commits_behind: int = 0
    suggest_full_rebuild: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isStale": self.is_stale,
            "reason": self.reason,
            "commitsBehind": self.commits_behind,
            "suggestFullRebuild": self.suggest_full_rebuild,
        }


@dataclass
class InitResult:
    """Outcome of a full scan."""

    success: bool
    repo_map: Optional[RepoMap] = None
    summary: Optional[ScanSummary] = None
    error: Optional[str] = None
    existing: Optional[MapSummary] = None
    install_suggestion: Optional[str] = None

    def to_dict(self, include_map: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.summary:
            data["summary"] = self.summary.to_dict()
        if self.error:
            data["error"] = self.error
        if self.existing:
            data["existing"] = self.existing.to_dict()
        if self.install_suggestion:
            data["installSuggestion"] = self.install_suggestion
        if include_map and self.repo_map:
            data["map"] = self.repo_map.to_dict()
        return data


@dataclass
class UpdateResult:
    """Outcome of an update.

    ``summary`` is set instead of ``changes`` when the update ran as a full
    rebuild.
    """

    success: bool
    repo_map: Optional[RepoMap] = None
    changes: Optional[ChangeSummary] = None
    error: Optional[str] = None
    needs_full_rebuild: bool = False
    failed_files: List[str] = field(default_factory=list)
    install_suggestion: Optional[str] = None
    summary: Optional[ScanSummary] = None

    @classmethod
    def failure(cls, error: str, needs_full_rebuild: bool = False, failed_files=None) -> "UpdateResult":
        return cls(
            success=False,
            error=error,
            needs_full_rebuild=needs_full_rebuild,
            failed_files=list(failed_files or []),
        )

    def to_dict(self, include_map: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.changes:
            data["changes"] = self.changes.to_dict()
        if self.summary:
            data["summary"] = self.summary.to_dict()
        if not self.success:
            data["error"] = self.error
            data["needsFullRebuild"] = self.needs_full_rebuild
            if self.failed_files:
                data["failedFiles"] = list(self.failed_files)
        if self.install_suggestion:
            data["installSuggestion"] = self.install_suggestion
        if include_map and self.repo_map:
            data["map"] = self.repo_map.to_dict()
        return data


@dataclass
class StatusResult:
    """Read-only view of a project's cached map."""

    exists: bool
    status: Optional[MapSummary] = None
    staleness: Optional[StalenessReport] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"exists": self.exists}
        if self.message:
            data["message"] = self.message
        if self.status:
            status = self.status.to_dict()
            status["staleness"] = self.staleness.to_dict() if self.staleness else None
            data["status"] = status
        return data
