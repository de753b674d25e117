"""ast-grep query patterns per language.

Each language maps symbol categories (exports, functions, classes, types,
constants, imports) to a list of :class:`QueryPattern`. The patterns are
ast-grep pattern syntax; the scanner runs each one separately and reads the
captured metavariables from the JSON stream.

Example:
    >>> queries = get_queries_for_language('python')
    >>> [q.pattern for q in queries['classes']]
    ['class $NAME($$$): $$$', 'class $NAME: $$$']
    >>> get_sg_language_for_file('src/App.tsx', 'typescript')
    'tsx'
"""

from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Dict, FrozenSet, List, Optional


@dataclass(frozen=True)
class QueryPattern:
    """A single ast-grep pattern and how to read its matches.

    Attributes:
        pattern: ast-grep pattern text.
        name_var: Metavariable holding the declared name.
        source_var: Metavariable holding an import/re-export source.
        kind: Symbol or import kind recorded for matches.
        multi: ``export_list`` or ``object_literal`` when one match declares
            several names.
        multi_source: Source text may list several comma-separated modules.
        fallback_name: Name used when the match has no name (``export default``).
    """

    pattern: str
    name_var: Optional[str] = None
    source_var: Optional[str] = None
    kind: Optional[str] = None
    multi: Optional[str] = None
    multi_source: bool = False
    fallback_name: Optional[str] = None


CATEGORIES = ("exports", "functions", "classes", "types", "constants", "imports")

LANGUAGE_EXTENSIONS: Dict[str, List[str]] = {
    "javascript": [".js", ".jsx", ".mjs", ".cjs"],
    "typescript": [".ts", ".tsx", ".mts", ".cts"],
    "python": [".py", ".pyw"],
    "rust": [".rs"],
    "go": [".go"],
    "java": [".java"],
}

SCANNABLE_EXTENSIONS: FrozenSet[str] = frozenset(
    ext for exts in LANGUAGE_EXTENSIONS.values() for ext in exts
)

LANGUAGE_ALIASES = {
    "js": "javascript",
    "node": "javascript",
    "ts": "typescript",
    "py": "python",
}

_JS_EXPORTS = [
    QueryPattern("export function $NAME($$$) { $$$ }", name_var="NAME", kind="function"),
    QueryPattern("export async function $NAME($$$) { $$$ }", name_var="NAME", kind="function"),
    QueryPattern("export class $NAME { $$$ }", name_var="NAME", kind="class"),
    QueryPattern("export const $NAME = $$$", name_var="NAME", kind="constant"),
    QueryPattern("export let $NAME = $$$", name_var="NAME", kind="variable"),
    QueryPattern("export var $NAME = $$$", name_var="NAME", kind="variable"),
    QueryPattern("export default function $NAME($$$) { $$$ }", name_var="NAME", kind="function"),
    QueryPattern("export default class $NAME { $$$ }", name_var="NAME", kind="class"),
    QueryPattern("export default function ($$$) { $$$ }", kind="function", fallback_name="default"),
    QueryPattern("export default class { $$$ }", kind="class", fallback_name="default"),
    QueryPattern("export default $NAME", name_var="NAME", kind="value"),
    QueryPattern("export { $$$ }", kind="value", multi="export_list"),
    QueryPattern("export { $$$ } from $SOURCE", kind="re-export", multi="export_list", source_var="SOURCE"),
    QueryPattern("export * from $SOURCE", kind="re-export", fallback_name="*", source_var="SOURCE"),
    QueryPattern("module.exports = $NAME", name_var="NAME", kind="value"),
    QueryPattern("module.exports = { $$$ }", kind="value", multi="object_literal"),
    QueryPattern("exports.$NAME = $$$", name_var="NAME", kind="value"),
]

_JS_FUNCTIONS = [
    QueryPattern("function $NAME($$$) { $$$ }", name_var="NAME"),
    QueryPattern("async function $NAME($$$) { $$$ }", name_var="NAME"),
    QueryPattern("function* $NAME($$$) { $$$ }", name_var="NAME"),
    QueryPattern("async function* $NAME($$$) { $$$ }", name_var="NAME"),
    QueryPattern("const $NAME = ($$$) => $$$", name_var="NAME"),
    QueryPattern("const $NAME = async ($$$) => $$$", name_var="NAME"),
    QueryPattern("const $NAME = function ($$$) { $$$ }", name_var="NAME"),
    QueryPattern("const $NAME = async function ($$$) { $$$ }", name_var="NAME"),
    QueryPattern("let $NAME = ($$$) => $$$", name_var="NAME"),
    QueryPattern("var $NAME = ($$$) => $$$", name_var="NAME"),
]

_JS_CLASSES = [
    QueryPattern("class $NAME { $$$ }", name_var="NAME"),
    QueryPattern("const $NAME = class { $$$ }", name_var="NAME"),
    QueryPattern("const $NAME = class $CLASS { $$$ }", name_var="NAME"),
]

_JS_IMPORTS = [
    QueryPattern("import $NAME from $SOURCE", source_var="SOURCE", kind="default"),
    QueryPattern("import * as $NAME from $SOURCE", source_var="SOURCE", kind="namespace"),
    QueryPattern("import { $$$ } from $SOURCE", source_var="SOURCE", kind="named"),
    QueryPattern("import $SOURCE", source_var="SOURCE", kind="side-effect"),
    QueryPattern("const $NAME = require($SOURCE)", source_var="SOURCE", kind="require"),
    QueryPattern("const { $$$ } = require($SOURCE)", source_var="SOURCE", kind="require"),
    QueryPattern("require($SOURCE)", source_var="SOURCE", kind="require"),
]


def _rust_visibility(template: str, kind: str) -> List[QueryPattern]:
    """Expand a ``pub`` declaration template over Rust's visibility forms."""
    return [
        QueryPattern(template.format(vis=vis), name_var="NAME", kind=kind)
        for vis in ("pub", "pub(crate)", "pub(super)", "pub(in $PATH)")
    ]


PATTERNS: Dict[str, Dict[str, List[QueryPattern]]] = {
    "javascript": {
        "exports": _JS_EXPORTS,
        "functions": _JS_FUNCTIONS,
        "classes": _JS_CLASSES,
        "types": [],
        "constants": [],
        "imports": _JS_IMPORTS,
    },
    "typescript": {
        "exports": _JS_EXPORTS + [
            QueryPattern("export interface $NAME { $$$ }", name_var="NAME", kind="type"),
            QueryPattern("export type $NAME = $$$", name_var="NAME", kind="type"),
            QueryPattern("export enum $NAME { $$$ }", name_var="NAME", kind="type"),
            QueryPattern("export namespace $NAME { $$$ }", name_var="NAME", kind="type"),
            QueryPattern("export const enum $NAME { $$$ }", name_var="NAME", kind="type"),
            QueryPattern("export = $NAME", name_var="NAME", kind="value"),
            QueryPattern("export as namespace $NAME", name_var="NAME", kind="namespace"),
        ],
        "functions": _JS_FUNCTIONS,
        "classes": _JS_CLASSES + [QueryPattern("abstract class $NAME { $$$ }", name_var="NAME")],
        "types": [
            QueryPattern("interface $NAME { $$$ }", name_var="NAME"),
            QueryPattern("type $NAME = $$$", name_var="NAME"),
            QueryPattern("enum $NAME { $$$ }", name_var="NAME"),
            QueryPattern("namespace $NAME { $$$ }", name_var="NAME"),
            QueryPattern("const enum $NAME { $$$ }", name_var="NAME"),
        ],
        "constants": [],
        "imports": _JS_IMPORTS + [
            QueryPattern("import type { $$$ } from $SOURCE", source_var="SOURCE", kind="type"),
            QueryPattern("import type $NAME from $SOURCE", source_var="SOURCE", kind="type"),
        ],
    },
    "python": {
        # Python exports come from __all__ or the underscore convention.
        "exports": [],
        "functions": [
            QueryPattern("def $NAME($$$): $$$", name_var="NAME"),
            QueryPattern("async def $NAME($$$): $$$", name_var="NAME"),
        ],
        "classes": [
            QueryPattern("class $NAME($$$): $$$", name_var="NAME"),
            QueryPattern("class $NAME: $$$", name_var="NAME"),
        ],
        "types": [],
        "constants": [],
        "imports": [
            QueryPattern("import $SOURCE", source_var="SOURCE", kind="import", multi_source=True),
            QueryPattern("from $SOURCE import $NAME", source_var="SOURCE", kind="from"),
            QueryPattern("from $SOURCE import ($$$)", source_var="SOURCE", kind="from"),
        ],
    },
    "rust": {
        "exports": (
            _rust_visibility("{vis} fn $NAME($$$) {{ $$$ }}", "function")
            + _rust_visibility("{vis} struct $NAME {{ $$$ }}", "type")
            + _rust_visibility("{vis} enum $NAME {{ $$$ }}", "type")
            + _rust_visibility("{vis} trait $NAME {{ $$$ }}", "type")
            + _rust_visibility("{vis} type $NAME = $$$", "type")
            + _rust_visibility("{vis} const $NAME: $TYPE = $$$", "constant")
            + _rust_visibility("{vis} static $NAME: $TYPE = $$$", "constant")
            + _rust_visibility("{vis} mod $NAME {{ $$$ }}", "module")
            + [QueryPattern("pub mod $NAME;", name_var="NAME", kind="module")]
        ),
        "functions": [
            QueryPattern("fn $NAME($$$) { $$$ }", name_var="NAME"),
            QueryPattern("async fn $NAME($$$) { $$$ }", name_var="NAME"),
            QueryPattern("pub fn $NAME($$$) { $$$ }", name_var="NAME"),
            QueryPattern("pub(crate) fn $NAME($$$) { $$$ }", name_var="NAME"),
            QueryPattern("pub(super) fn $NAME($$$) { $$$ }", name_var="NAME"),
            QueryPattern("pub(in $PATH) fn $NAME($$$) { $$$ }", name_var="NAME"),
            QueryPattern("pub async fn $NAME($$$) { $$$ }", name_var="NAME"),
            QueryPattern("pub(crate) async fn $NAME($$$) { $$$ }", name_var="NAME"),
        ],
        "classes": [],
        "types": [
            QueryPattern("struct $NAME { $$$ }", name_var="NAME"),
            QueryPattern("enum $NAME { $$$ }", name_var="NAME"),
            QueryPattern("trait $NAME { $$$ }", name_var="NAME"),
            QueryPattern("type $NAME = $$$", name_var="NAME"),
            QueryPattern("pub struct $NAME { $$$ }", name_var="NAME"),
            QueryPattern("pub enum $NAME { $$$ }", name_var="NAME"),
            QueryPattern("pub trait $NAME { $$$ }", name_var="NAME"),
            QueryPattern("pub type $NAME = $$$", name_var="NAME"),
        ],
        "constants": [
            QueryPattern("const $NAME: $TYPE = $$$", name_var="NAME"),
            QueryPattern("static $NAME: $TYPE = $$$", name_var="NAME"),
        ],
        "imports": [
            QueryPattern("use $SOURCE;", source_var="SOURCE", kind="use"),
            QueryPattern("use $SOURCE::{ $$$ };", source_var="SOURCE", kind="use"),
            QueryPattern("use $SOURCE::*;", source_var="SOURCE", kind="use"),
        ],
    },
    "go": {
        # Go exports follow capitalization, applied after extraction.
        "exports": [],
        "functions": [
            QueryPattern("func $NAME($$$) { $$$ }", name_var="NAME"),
            QueryPattern("func ($$$) $NAME($$$) { $$$ }", name_var="NAME"),
        ],
        "classes": [],
        "types": [
            QueryPattern("type $NAME struct { $$$ }", name_var="NAME"),
            QueryPattern("type $NAME interface { $$$ }", name_var="NAME"),
            QueryPattern("type $NAME = $$$", name_var="NAME"),
        ],
        "constants": [
            QueryPattern("const $NAME = $$$", name_var="NAME"),
            QueryPattern("const $NAME $TYPE = $$$", name_var="NAME"),
        ],
        "imports": [
            QueryPattern("import $SOURCE", source_var="SOURCE", kind="import"),
            QueryPattern("import $NAME $SOURCE", source_var="SOURCE", kind="import"),
        ],
    },
    "java": {
        "exports": [
            QueryPattern("public class $NAME { $$$ }", name_var="NAME", kind="class"),
            QueryPattern("public interface $NAME { $$$ }", name_var="NAME", kind="class"),
            QueryPattern("public enum $NAME { $$$ }", name_var="NAME", kind="class"),
            QueryPattern("public record $NAME($$$) { $$$ }", name_var="NAME", kind="class"),
            QueryPattern("public $RET $NAME($$$) { $$$ }", name_var="NAME", kind="function"),
            QueryPattern("public static $RET $NAME($$$) { $$$ }", name_var="NAME", kind="function"),
            QueryPattern("public $RET $NAME($$$);", name_var="NAME", kind="function"),
        ],
        "functions": [
            QueryPattern("public $RET $NAME($$$) { $$$ }", name_var="NAME"),
            QueryPattern("public static $RET $NAME($$$) { $$$ }", name_var="NAME"),
            QueryPattern("protected $RET $NAME($$$) { $$$ }", name_var="NAME"),
            QueryPattern("private $RET $NAME($$$) { $$$ }", name_var="NAME"),
        ],
        "classes": [
            QueryPattern("class $NAME { $$$ }", name_var="NAME"),
            QueryPattern("interface $NAME { $$$ }", name_var="NAME"),
            QueryPattern("enum $NAME { $$$ }", name_var="NAME"),
            QueryPattern("record $NAME($$$) { $$$ }", name_var="NAME"),
        ],
        "types": [],
        "constants": [
            QueryPattern("public static final $TYPE $NAME = $$$;", name_var="NAME"),
            QueryPattern("static final $TYPE $NAME = $$$;", name_var="NAME"),
        ],
        "imports": [
            QueryPattern("import $SOURCE;", source_var="SOURCE", kind="import"),
            QueryPattern("import static $SOURCE;", source_var="SOURCE", kind="import"),
        ],
    },
}


def normalize_language(language: str) -> str:
    """Resolve short aliases (``py``, ``ts``, ``node``) to canonical names."""
    language = (language or "").lower()
    return LANGUAGE_ALIASES.get(language, language)


def get_queries_for_language(language: str) -> Optional[Dict[str, List[QueryPattern]]]:
    """Get the pattern table for a language, or None if unsupported."""
    return PATTERNS.get(normalize_language(language))


def language_for_path(path: str) -> Optional[str]:
    """Language whose extension list contains the file's extension."""
    ext = PurePosixPath(path).suffix.lower()
    for language, extensions in LANGUAGE_EXTENSIONS.items():
        if ext in extensions:
            return language
    return None


def is_scannable(path: str) -> bool:
    return PurePosixPath(path).suffix.lower() in SCANNABLE_EXTENSIONS


def get_sg_language_for_file(path: str, language: str) -> str:
    """ast-grep ``--lang`` value for a file.

    JSX and TSX need their own grammars; everything else uses the language name.
    """
    language = normalize_language(language)
    ext = PurePosixPath(path).suffix.lower()
    if language == "javascript" and ext == ".jsx":
        return "jsx"
    if language == "typescript" and ext == ".tsx":
        return "tsx"
    return language if language in PATTERNS else "javascript"
