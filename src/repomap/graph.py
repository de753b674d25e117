#!/usr/bin/env python3
"""DependencyGraph - File-level import graph built from a repo map.

The map already stores each file's import sources, so no file is read
here: sources are resolved against the set of mapped paths and the
result is a networkx DiGraph with an edge from importer to imported file.
PageRank over that graph ranks files by architectural importance, which
propagates transitively instead of just counting importers.

Example:
    >>> graph = DependencyGraph.from_repo_map(cache.load('/my/project'))
    >>> graph.get_importers('src/config.py')
    ['src/app.py', 'src/cli.py']
    >>> for path, score in graph.get_critical_paths(top_n=3):
    ...     print(f"{path}: {score:.4f}")
"""

import logging
import posixpath
from typing import Any, Dict, List, Optional, Tuple

import networkx as nx

from .models import RepoMap

logger = logging.getLogger(__name__)

DEFAULT_DAMPING = 0.85
DEFAULT_MAX_ITER = 100
DEFAULT_TOL = 1e-06
DEFAULT_HUB_THRESHOLD = 3

# Candidates appended to a specifier that names a file without its extension.
JS_CANDIDATE_SUFFIXES = (
    "",
    ".ts",
    ".tsx",
    ".js",
    ".jsx",
    ".mjs",
    ".cjs",
    "/index.ts",
    "/index.tsx",
    "/index.js",
    "/index.jsx",
)
PYTHON_CANDIDATE_SUFFIXES = (".py", "/__init__.py")
SUFFIX_CANDIDATES = ("", ".py", ".ts", ".tsx", ".js", ".jsx", ".go", ".rs", ".java")


class DependencyGraph:
    """Import relationships between the files of a repo map.

    Attributes:
        graph: networkx DiGraph; nodes are repo-relative paths.
        languages: Language of each node, as recorded in the map.
    """

    def __init__(self, damping: float = DEFAULT_DAMPING):
        self.damping = damping
        self.graph: nx.DiGraph = nx.DiGraph()
        self.languages: Dict[str, Optional[str]] = {}
        self._suffix_index: Dict[str, List[str]] = {}
        self._pagerank: Optional[Dict[str, float]] = None

    @classmethod
    def from_repo_map(cls, repo_map: RepoMap, damping: float = DEFAULT_DAMPING) -> "DependencyGraph":
        graph = cls(damping=damping)
        for path, record in repo_map.files.items():
            graph.graph.add_node(path)
            graph.languages[path] = record.language
        graph._build_suffix_index()

        for path, sources in repo_map.dependencies.items():
            if path not in graph.graph:
                continue
            for source in sources:
                target = graph.resolve_import(source, path)
                if target and target != path:
                    graph.graph.add_edge(path, target)

        logger.debug(
            "Built dependency graph: %d files, %d edges",
            graph.graph.number_of_nodes(),
            graph.graph.number_of_edges(),
        )
        return graph

    def _build_suffix_index(self) -> None:
        # "src/core/config.py" is indexed as "core/config.py", "config.py" and
        # the same without extension.
        for path in self.graph.nodes:
            parts = path.split("/")
            for i in range(1, len(parts)):
                suffix = "/".join(parts[i:])
                stem, _ = posixpath.splitext(suffix)
                for key in (suffix, stem):
                    bucket = self._suffix_index.setdefault(key, [])
                    if path not in bucket:
                        bucket.append(path)

    def _first_existing(self, base: str, suffixes) -> Optional[str]:
        for suffix in suffixes:
            candidate = posixpath.normpath(base + suffix) if base + suffix else ""
            if candidate in self.graph:
                return candidate
        return None

    def resolve_import(self, source: str, from_file: str) -> Optional[str]:
        """Map an import source to a file in the graph.

        Args:
            source: Import source as recorded in the map.
            from_file: Path of the importing file.

        Returns:
            Repo-relative path, or None for external or ambiguous imports.
        """
        source = source.strip("\"'`")
        if not source:
            return None
        language = self.languages.get(from_file)
        from_dir = posixpath.dirname(from_file)

        if language == "python":
            return self._resolve_python(source, from_dir)

        if source.startswith("./") or source.startswith("../"):
            return self._first_existing(posixpath.join(from_dir, source), JS_CANDIDATE_SUFFIXES)

        if language == "rust":
            source = source.split("::", 1)[1] if source.startswith("crate::") else source
            source = source.replace("::", "/")

        return self._resolve_suffix(source)

    def _resolve_python(self, source: str, from_dir: str) -> Optional[str]:
        if source.startswith("."):
            level = len(source) - len(source.lstrip("."))
            base_dir = from_dir
            for _ in range(level - 1):
                base_dir = posixpath.dirname(base_dir)
            rest = source[level:].replace(".", "/")
            base = posixpath.join(base_dir, rest) if rest else base_dir
            if not rest:
                return self._first_existing(base, ("/__init__.py",))
            return self._first_existing(base, PYTHON_CANDIDATE_SUFFIXES)

        module_path = source.replace(".", "/")
        found = self._first_existing(module_path, PYTHON_CANDIDATE_SUFFIXES)
        if found:
            return found
        return self._resolve_suffix(module_path, (".py", "/__init__.py"))

    def _resolve_suffix(self, normalized: str, suffixes=SUFFIX_CANDIDATES) -> Optional[str]:
        """Unique file whose path ends with ``normalized``."""
        for suffix in suffixes:
            candidate = normalized + suffix
            if candidate in self.graph:
                return candidate
            files = self._suffix_index.get(candidate, [])
            if len(files) == 1:
                return files[0]
        return None

    def get_importers(self, path: str) -> List[str]:
        """Files that import ``path``."""
        if path not in self.graph:
            return []
        return sorted(self.graph.predecessors(path))

    def get_imports(self, path: str) -> List[str]:
        """Files that ``path`` imports."""
        if path not in self.graph:
            return []
        return sorted(self.graph.successors(path))

    def get_hub_files(self, threshold: int = DEFAULT_HUB_THRESHOLD) -> List[str]:
        """Files imported by at least ``threshold`` other files, most imported first."""
        hubs = [path for path in self.graph.nodes if self.graph.in_degree(path) >= threshold]
        return sorted(hubs, key=lambda path: (-self.graph.in_degree(path), path))

    def _compute_pagerank(self) -> Dict[str, float]:
        if self._pagerank is not None:
            return self._pagerank
        if len(self.graph) == 0:
            self._pagerank = {}
            return self._pagerank
        try:
            self._pagerank = nx.pagerank(
                self.graph, alpha=self.damping, max_iter=DEFAULT_MAX_ITER, tol=DEFAULT_TOL
            )
        except nx.NetworkXError as e:
            logger.debug("PageRank failed (%s); using uniform scores", e)
            uniform = 1.0 / len(self.graph)
            self._pagerank = {path: uniform for path in self.graph.nodes}
        return self._pagerank

    def get_critical_paths(self, top_n: int = 10) -> List[Tuple[str, float]]:
        """Top ``top_n`` files by PageRank, highest first.

        Example:
            >>> graph.get_critical_paths(top_n=2)
            [('src/models.py', 0.2841), ('src/config.py', 0.1733)]
        """
        scores = self._compute_pagerank()
        ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
        return ranked[:top_n]

    def get_stats(self) -> Dict[str, Any]:
        total = len(self.graph)
        languages: Dict[str, int] = {}
        for language in self.languages.values():
            key = language or "unknown"
            languages[key] = languages.get(key, 0) + 1

        return {
            "total_files": total,
            "total_edges": self.graph.number_of_edges(),
            "hub_files": len(self.get_hub_files()),
            "avg_imports_per_file": self.graph.number_of_edges() / max(total, 1),
            "languages": languages,
            "isolated_files": sum(1 for path in self.graph.nodes if self.graph.degree(path) == 0),
        }

    def to_dict(self, top_n: int = 20) -> Dict[str, Any]:
        return {
            "stats": self.get_stats(),
            "hubs": [
                {"path": path, "importers": self.graph.in_degree(path)} for path in self.get_hub_files()
            ],
            "critical_paths": [
                {"path": path, "score": round(score, 6)} for path, score in self.get_critical_paths(top_n)
            ],
        }
