#!/usr/bin/env python3
"""Scanner - Extracts symbols and imports from source files with ast-grep.

Each query pattern of a language is run as an
``ast-grep run --json=stream`` process and the matches are folded into a
:class:`~repomap.models.FileRecord` per file. A full scan passes a whole
chunk of files to every process and routes matches back by their ``file``
key; incremental rescans run the patterns over a single file at a time.

Failures of a single file never escape :func:`scan_file`: they are reported
through an error sink and the function returns None, so one bad file cannot
abort a batch.

Example:
    >>> errors = []
    >>> record = await scan_file('sg', 'src/app.py', '/my/project', errors.append)
    >>> [f.name for f in record.symbols.functions]
    ['main', 'parse_args']

    Full scan of a project:
        >>> repo_map = await full_scan('/my/project', ['python'], 'sg')
        >>> repo_map.stats.total_files
        42
"""

import asyncio
import hashlib
import json
import logging
import re
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .concurrency import run_with_concurrency
from .config import RepoMapConfig
from .discovery import IgnoreMatcher, detect_project_type, find_source_files
from .exceptions import AstGrepError
from .git import GitIntegration
from .models import FileRecord, ImportRecord, ProjectInfo, RepoMap, ScanError, Symbol, SymbolTable
from .queries import QueryPattern, get_queries_for_language, get_sg_language_for_file, language_for_path

logger = logging.getLogger(__name__)

DEFAULT_SCAN_TIMEOUT = 30.0
CONTENT_HASH_LENGTH = 16

# Metavariables tried, after the pattern's own, when looking for a name.
NAME_VARIABLES = ("NAME", "FUNC", "CLASS", "IDENT", "N")

# Category -> kind recorded when the pattern does not set one.
SYMBOL_KINDS = {
    "exports": "export",
    "functions": "function",
    "classes": "class",
    "types": "type",
    "constants": "constant",
}

# Order in which pattern groups are run and folded into a record.
PATTERN_CATEGORIES = tuple(SYMBOL_KINDS) + ("imports",)

_NAME_FALLBACK_RE = re.compile(
    r"(?:function|class|const|let|var|def|fn|pub\s+fn|type|struct|enum|trait|interface|record)"
    r"\s+([A-Za-z_][A-Za-z0-9_]*)"
)
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_$][\w$]*$")
_QUOTED_RE = re.compile(r"['\"]([^'\"]+)['\"]")
_ALIAS_RE = re.compile(r"\s+as\s+", re.IGNORECASE)
_PYTHON_ALL_RE = re.compile(r"__all__\s*=\s*[\[(]([\s\S]*?)[\])]")

ErrorSink = Callable[[ScanError], None]


def compute_content_hash(content: str) -> str:
    """Truncated SHA-256 of text content.

    Example:
        >>> len(compute_content_hash("print('hi')"))
        16
    """
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:CONTENT_HASH_LENGTH]


def hash_file(path) -> Optional[str]:
    """Content hash of a file on disk, or None if it cannot be read."""
    try:
        return compute_content_hash(Path(path).read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError):
        return None


# ==============================================================================
# AST-GREP INVOCATION
# ==============================================================================


def parse_ndjson(output: str) -> List[Dict[str, Any]]:
    """Parse ``--json=stream`` output, one match object per line.

    Raises:
        AstGrepError: If a line is not a JSON object.
    """
    matches = []
    for number, line in enumerate(output.splitlines(), 1):
        line = line.strip()
        if not line:
            continue
        try:
            match = json.loads(line)
        except json.JSONDecodeError as e:
            raise AstGrepError(f"malformed JSON on output line {number}: {e.msg}") from e
        if not isinstance(match, dict):
            raise AstGrepError(f"unexpected JSON value on output line {number}")
        matches.append(match)
    return matches


async def run_ast_grep(
    command: str,
    file_paths: Sequence[str],
    pattern: str,
    sg_language: str,
    base_path,
    timeout: float = DEFAULT_SCAN_TIMEOUT,
) -> List[Dict[str, Any]]:
    """Run one pattern against one or more files in a single process.

    Exit status 1 means "no matches" and yields an empty list. Each match
    names the file it came from in its ``file`` key.

    Args:
        command: ast-grep executable (``sg`` or ``ast-grep``).
        file_paths: Files to scan, relative to ``base_path``.
        pattern: ast-grep pattern.
        sg_language: Value for ``--lang``.
        base_path: Working directory for the process.
        timeout: Seconds before the process is killed.

    Returns:
        Parsed match objects.

    Raises:
        AstGrepError: On launch failure, timeout, exit status above 1 or
            unparseable output.
    """
    args = [command, "run", "--pattern", pattern, "--lang", sg_language, "--json=stream", *file_paths]
    logger.debug("Running %s on %d file(s)", " ".join(args[:7]), len(file_paths))

    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=str(base_path),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise AstGrepError(f"could not start {command}: {e}", command=args) from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise AstGrepError(f"{command} timed out after {timeout}s", command=args)

    if process.returncode is not None and process.returncode > 1:
        stderr_text = stderr.decode("utf-8", errors="replace").strip()[:500]
        raise AstGrepError(
            f"{command} exited with status {process.returncode}: {stderr_text}",
            command=args,
            returncode=process.returncode,
            stderr=stderr_text,
        )

    return parse_ndjson(stdout.decode("utf-8", errors="replace"))


def normalize_match_path(match_file: Optional[str], base_path) -> Optional[str]:
    """Repo-relative POSIX form of a match's ``file`` value."""
    if not match_file:
        return None
    path = Path(match_file)
    if path.is_absolute():
        try:
            path = path.relative_to(Path(base_path).resolve())
        except ValueError:
            return None
    return path.as_posix()


# ==============================================================================
# MATCH INTERPRETATION
# ==============================================================================


def get_meta_variable(match: Dict[str, Any], key: str) -> Optional[Dict[str, Any]]:
    meta = match.get("metaVariables")
    if not isinstance(meta, dict):
        return None
    value = meta.get(key)
    single = meta.get("single")
    if not isinstance(value, dict) and isinstance(single, dict):
        value = single.get(key)
    return value if isinstance(value, dict) else None


def get_line(match: Dict[str, Any]) -> Optional[int]:
    """1-based line of a match (ast-grep reports 0-based)."""
    line = ((match.get("range") or {}).get("start") or {}).get("line")
    if isinstance(line, int) and not isinstance(line, bool):
        return line + 1
    return None


def is_valid_identifier(name: Optional[str]) -> bool:
    return bool(name) and bool(_IDENTIFIER_RE.match(name))


def extract_name_from_match(match: Dict[str, Any], name_var: Optional[str] = None) -> Optional[str]:
    """Name captured by a match.

    Tries ``name_var`` and the common name metavariables, then falls back to
    the identifier following a declaration keyword in the matched text.
    """
    keys = ([name_var] if name_var else []) + list(NAME_VARIABLES)
    for key in keys:
        variable = get_meta_variable(match, key)
        if variable and variable.get("text"):
            return variable["text"]

    found = _NAME_FALLBACK_RE.search(match.get("text") or "")
    return found.group(1) if found else None


def extract_names_from_export_list(text: str) -> List[str]:
    """Names exported by ``export { a, b as c }`` (aliases win)."""
    found = re.search(r"\{([^}]+)\}", text)
    if not found:
        return []

    names = []
    for part in found.group(1).split(","):
        part = part.strip()
        if not part:
            continue
        pieces = [piece.strip() for piece in _ALIAS_RE.split(part)]
        name = re.sub(r"[^A-Za-z0-9_$]", "", pieces[-1])
        if is_valid_identifier(name) and name not in names:
            names.append(name)
    return names


def extract_names_from_object_literal(text: str) -> List[str]:
    """Property names of ``module.exports = { a, b: c }``."""
    found = re.search(r"\{([\s\S]*?)\}", text)
    if not found:
        return []

    names = []
    for prop in re.finditer(r"\b([A-Za-z_$][\w$]*)\b\s*(?=,|\}|:|$)", found.group(1)):
        name = prop.group(1)
        if is_valid_identifier(name) and name not in names:
            names.append(name)
    return names


def extract_names_from_match(match: Dict[str, Any], query: QueryPattern) -> List[str]:
    if query.multi == "export_list":
        return extract_names_from_export_list(match.get("text") or "")
    if query.multi == "object_literal":
        return extract_names_from_object_literal(match.get("text") or "")

    name = extract_name_from_match(match, query.name_var)
    if name:
        return [name]
    if query.fallback_name:
        return [query.fallback_name]
    return []


def split_multi_source(raw: str) -> List[str]:
    """Split ``import a, b as c`` sources into module names."""
    sources = []
    for part in raw.split(","):
        name = _ALIAS_RE.split(part.strip())[0].strip().strip("'\"")
        if name:
            sources.append(name)
    return sources


def extract_source_from_match(match: Dict[str, Any], query: QueryPattern) -> List[str]:
    """Import sources captured by a match, quotes stripped."""
    variable = get_meta_variable(match, query.source_var or "SOURCE")
    if variable and variable.get("text"):
        raw = re.sub(r"^['\"]|['\"]$", "", variable["text"])
        if query.multi_source:
            return split_multi_source(raw)
        return [raw] if raw else []

    found = _QUOTED_RE.search(match.get("text") or "")
    return [found.group(1)] if found else []


def extract_python_all(content: str) -> List[str]:
    """Names listed in a module's ``__all__``."""
    found = _PYTHON_ALL_RE.search(content or "")
    if not found:
        return []
    return _QUOTED_RE.findall(found.group(1))


def is_exported_go_name(name: str) -> bool:
    return bool(name) and name[0].isupper()


def _implicit_exports(language: str, content: str, found: Dict[str, Dict[str, Symbol]]) -> List[str]:
    """Exports implied by language conventions rather than syntax."""
    declared = [name for category in ("functions", "classes", "types", "constants") for name in found[category]]

    if language == "python":
        explicit = extract_python_all(content)
        if explicit:
            return explicit
        return [name for name in declared if not name.startswith("_")]

    if language == "go":
        return [name for name in declared if is_exported_go_name(name)]

    return []


def _sorted_symbols(symbols: Dict[str, Symbol], export_names: Optional[set] = None) -> List[Symbol]:
    ordered = sorted(symbols.values(), key=lambda symbol: symbol.name)
    if export_names is not None:
        for symbol in ordered:
            symbol.exported = symbol.name in export_names
    return ordered


# ==============================================================================
# SCANNING
# ==============================================================================


class FileAccumulator:
    """Collects the matches of every pattern run over one file.

    The first match of a name within a category wins; imports are
    de-duplicated by (source, kind) in discovery order.
    """

    def __init__(self, language: str, content: str):
        self.language = language
        self.content = content
        self.symbols: Dict[str, Dict[str, Symbol]] = {category: {} for category in SYMBOL_KINDS}
        self.imports: List[ImportRecord] = []
        self._seen_imports = set()

    def add_matches(self, category: str, query: QueryPattern, matches: Iterable[Dict[str, Any]]) -> None:
        for match in matches:
            self.add_match(category, query, match)

    def add_match(self, category: str, query: QueryPattern, match: Dict[str, Any]) -> None:
        if category == "imports":
            kind = query.kind or "import"
            for source in extract_source_from_match(match, query):
                if (source, kind) in self._seen_imports:
                    continue
                self._seen_imports.add((source, kind))
                self.imports.append(ImportRecord(source=source, kind=kind, line=get_line(match)))
            return

        for name in extract_names_from_match(match, query):
            self.symbols[category].setdefault(
                name, Symbol(name=name, kind=query.kind or SYMBOL_KINDS[category], line=get_line(match))
            )

    def symbol_table(self) -> SymbolTable:
        found = self.symbols
        export_names = set(found["exports"])
        export_names.update(_implicit_exports(self.language, self.content, found))

        for name in sorted(export_names - set(found["exports"])):
            source = next(
                (found[category][name] for category in ("functions", "classes", "types", "constants")
                 if name in found[category]),
                None,
            )
            if source is not None:
                found["exports"][name] = Symbol(name=name, kind=source.kind, line=source.line)
            else:
                found["exports"][name] = Symbol(name=name, kind="export")

        return SymbolTable(
            exports=_sorted_symbols(found["exports"]),
            functions=_sorted_symbols(found["functions"], export_names),
            classes=_sorted_symbols(found["classes"], export_names),
            types=_sorted_symbols(found["types"], export_names),
            constants=_sorted_symbols(found["constants"], export_names),
        )

    def to_record(self) -> FileRecord:
        return FileRecord(
            hash=compute_content_hash(self.content),
            language=self.language,
            size=len(self.content),
            symbols=self.symbol_table(),
            imports=self.imports,
        )


def iter_queries(queries: Dict[str, List[QueryPattern]]) -> Iterator[Tuple[str, QueryPattern]]:
    """(category, pattern) pairs in the order their matches are folded."""
    for category in PATTERN_CATEGORIES:
        for query in queries.get(category, []):
            yield category, query


def _report(on_error: Optional[ErrorSink], file_path: str, message: str) -> None:
    logger.warning("Failed to scan %s: %s", file_path, message)
    if on_error is not None:
        on_error(ScanError(file=file_path, message=message))


def _prepare(base: Path, file_path: str, on_error: Optional[ErrorSink]) -> Optional[FileAccumulator]:
    """Read a file and start its accumulator, reporting unsupported or unreadable files."""
    language = language_for_path(file_path)
    if not language or get_queries_for_language(language) is None:
        _report(on_error, file_path, "unsupported file type")
        return None

    try:
        content = (base / file_path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        _report(on_error, file_path, f"could not read file: {e}")
        return None
    return FileAccumulator(language, content)


async def scan_file(
    command: str,
    file_path: str,
    base_path,
    on_error: Optional[ErrorSink] = None,
    timeout: float = DEFAULT_SCAN_TIMEOUT,
) -> Optional[FileRecord]:
    """Build the structural record of one file.

    Args:
        command: ast-grep executable.
        file_path: Repo-relative POSIX path.
        base_path: Project root.
        on_error: Called with a ScanError when the file cannot be scanned.
        timeout: Seconds allowed per ast-grep invocation.

    Returns:
        The FileRecord, or None on any failure.
    """
    base = Path(base_path)
    accumulator = _prepare(base, file_path, on_error)
    if accumulator is None:
        return None

    sg_language = get_sg_language_for_file(file_path, accumulator.language)
    try:
        for category, query in iter_queries(get_queries_for_language(accumulator.language)):
            matches = await run_ast_grep(command, [file_path], query.pattern, sg_language, base, timeout)
            accumulator.add_matches(category, query, matches)
    except AstGrepError as e:
        _report(on_error, file_path, str(e))
        return None

    return accumulator.to_record()


async def scan_files(
    command: str,
    file_paths: Iterable[str],
    base_path,
    config: Optional[RepoMapConfig] = None,
    on_error: Optional[ErrorSink] = None,
) -> List[Optional[FileRecord]]:
    """Scan many files one process per pattern and file, results index-aligned.

    Used for incremental rescans, where only a handful of files change.
    """
    config = config or RepoMapConfig()

    async def scan(path: str, index: int) -> Optional[FileRecord]:
        return await scan_file(command, path, base_path, on_error, config.scan_timeout)

    return await run_with_concurrency(file_paths, config.concurrency, scan)


def chunked(items: Sequence[str], size: int) -> List[List[str]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


async def scan_files_batched(
    command: str,
    file_paths: Iterable[str],
    base_path,
    config: Optional[RepoMapConfig] = None,
    on_error: Optional[ErrorSink] = None,
) -> Dict[str, FileRecord]:
    """Scan many files with one ast-grep process per pattern and chunk.

    Files are grouped by ``--lang`` value and split into chunks of
    ``config.batch_size``; each match is routed back to its file through
    the match's ``file`` key. When an invocation fails, every file of that
    chunk is rescanned on its own so a single bad file is isolated and
    reported through ``on_error``.

    Returns:
        Records keyed by path; files that failed are absent.
    """
    config = config or RepoMapConfig()
    base = Path(base_path)

    accumulators: Dict[str, FileAccumulator] = {}
    groups: Dict[Tuple[str, str], List[str]] = {}
    for path in dict.fromkeys(file_paths):
        accumulator = _prepare(base, path, on_error)
        if accumulator is None:
            continue
        accumulators[path] = accumulator
        key = (accumulator.language, get_sg_language_for_file(path, accumulator.language))
        groups.setdefault(key, []).append(path)

    jobs = []
    for (language, sg_language), paths in groups.items():
        queries = get_queries_for_language(language)
        for chunk in chunked(paths, config.batch_size):
            for category, query in iter_queries(queries):
                jobs.append((category, query, sg_language, chunk))

    async def run(job, index: int) -> Optional[List[Dict[str, Any]]]:
        category, query, sg_language, chunk = job
        try:
            return await run_ast_grep(command, chunk, query.pattern, sg_language, base, config.batch_timeout)
        except AstGrepError as e:
            logger.warning("Batch of %d file(s) failed, rescanning them one by one: %s", len(chunk), e)
            return None

    results = await run_with_concurrency(jobs, config.concurrency, run)

    retry = set()
    for (category, query, _, chunk), matches in zip(jobs, results):
        if matches is None:
            retry.update(chunk)
            continue
        for match in matches:
            accumulator = accumulators.get(normalize_match_path(match.get("file"), base))
            if accumulator is not None:
                accumulator.add_match(category, query, match)

    records = {path: accumulator.to_record() for path, accumulator in accumulators.items() if path not in retry}

    retry_paths = [path for path in accumulators if path in retry]
    if retry_paths:
        rescanned = await scan_files(command, retry_paths, base, config, on_error)
        for path, record in zip(retry_paths, rescanned):
            if record is not None:
                records[path] = record

    return records


async def full_scan(
    base_path,
    languages: List[str],
    command: str,
    config: Optional[RepoMapConfig] = None,
    matcher: Optional[IgnoreMatcher] = None,
) -> RepoMap:
    """Scan every source file of the given languages into a new map.

    Files that fail are left out of ``files`` and recorded in
    ``stats.errors`` together with their content hash, so later hash
    comparisons can tell an unchanged failure from a new file. The scan
    itself always completes.
    """
    config = config or RepoMapConfig()
    base = Path(base_path)
    matcher = matcher or IgnoreMatcher.for_project(base, config)
    started = time.monotonic()

    paths = find_source_files(base, languages, matcher)
    logger.info("Scanning %d files (%s)", len(paths), ", ".join(languages))

    errors: List[ScanError] = []
    records = await scan_files_batched(command, paths, base, config, errors.append)

    repo_map = RepoMap(
        git=GitIntegration(base, timeout=config.git_timeout).get_info(),
        project=ProjectInfo(type=detect_project_type(languages), languages=list(languages)),
    )
    for path in paths:
        if path in records:
            repo_map.set_file(path, records[path])

    for error in errors:
        error.hash = hash_file(base / error.file)
        repo_map.record_error(error)
    repo_map.recalculate_stats()
    repo_map.stats.scan_duration_ms = int((time.monotonic() - started) * 1000)
    return repo_map
