"""Tests for the repo map data model."""

import pytest

from repomap.exceptions import InvalidMapError
from repomap.models import (
    ChangeSummary,
    FileRecord,
    ImportRecord,
    RepoMap,
    ScanError,
    StalenessReport,
    StatusResult,
    Symbol,
    SymbolTable,
    UpdateResult,
    normalize_map_data,
)


def record(*sources, functions=()):
    return FileRecord(
        hash="0123456789abcdef",
        language="python",
        size=10,
        symbols=SymbolTable(functions=[Symbol(name, "function", 1) for name in functions]),
        imports=[ImportRecord(source) for source in sources],
    )


class TestFileRecord:
    """Tests for FileRecord."""

    def test_import_sources_unique_in_order(self):
        """Test that repeated sources collapse to their first occurrence."""
        rec = FileRecord(
            hash="h",
            imports=[ImportRecord("b"), ImportRecord("a", "from"), ImportRecord("b", "from")],
        )
        assert rec.import_sources() == ["b", "a"]

    def test_symbol_count_excludes_exports(self):
        """Test that the exports view is not counted twice."""
        table = SymbolTable(
            exports=[Symbol("f", "function")],
            functions=[Symbol("f", "function")],
            classes=[Symbol("C", "class")],
        )
        assert FileRecord(hash="h", symbols=table).symbol_count == 2


class TestDependencyProjection:
    """Tests that dependencies always mirror the files' imports."""

    def test_set_file_projects_imports(self):
        """Test projection on insert, omitting files without imports."""
        repo_map = RepoMap()
        repo_map.set_file("a.py", record("os", "sys", "os"))
        repo_map.set_file("b.py", record())
        assert repo_map.dependencies == {"a.py": ["os", "sys"]}

    def test_set_file_replaces_projection(self):
        """Test that rescanning a file without imports drops its entry."""
        repo_map = RepoMap()
        repo_map.set_file("a.py", record("os"))
        repo_map.set_file("a.py", record())
        assert repo_map.dependencies == {}

    def test_remove_file(self):
        """Test that removal clears both mappings."""
        repo_map = RepoMap()
        repo_map.set_file("a.py", record("os"))
        assert repo_map.remove_file("a.py") is not None
        assert repo_map.files == {} and repo_map.dependencies == {}
        assert repo_map.remove_file("a.py") is None

    def test_move_file(self):
        """Test that moving re-keys the record and its dependencies."""
        repo_map = RepoMap()
        rec = record("os")
        repo_map.set_file("old.py", rec)

        assert repo_map.move_file("old.py", "new.py") is True
        assert repo_map.files == {"new.py": rec}
        assert repo_map.dependencies == {"new.py": ["os"]}
        assert repo_map.move_file("missing.py", "x.py") is False


class TestStats:
    """Tests for recomputed statistics."""

    def test_recalculate_stats(self):
        """Test totals after inserts and removals."""
        repo_map = RepoMap()
        repo_map.set_file("a.py", record(functions=["f", "g"]))
        repo_map.set_file("b.py", record(functions=["h"]))
        repo_map.set_file("c.py", record())
        repo_map.remove_file("c.py")

        stats = repo_map.recalculate_stats()
        assert stats.total_files == 2
        assert stats.total_symbols == 3


class TestScanErrors:
    """Tests for the per-file error list."""

    def test_record_error_replaces_and_sorts(self):
        """Test that one entry is kept per file, ordered by path."""
        repo_map = RepoMap()
        repo_map.record_error(ScanError("b.py", "first", hash="1111"))
        repo_map.record_error(ScanError("a.py", "broken"))
        repo_map.record_error(ScanError("b.py", "second", hash="2222"))

        assert [(e.file, e.message) for e in repo_map.stats.errors] == [("a.py", "broken"), ("b.py", "second")]
        assert repo_map.error_for("b.py").hash == "2222"
        assert repo_map.error_for("c.py") is None

    def test_set_file_clears_error(self):
        """Test that a successful scan supersedes an earlier failure."""
        repo_map = RepoMap()
        repo_map.record_error(ScanError("a.py", "broken"))
        repo_map.set_file("a.py", record())

        assert repo_map.stats.errors == []

    def test_remove_file_clears_error(self):
        """Test that removing a failed path drops its error entry."""
        repo_map = RepoMap()
        repo_map.record_error(ScanError("gone.py", "broken"))

        assert repo_map.remove_file("gone.py") is None
        assert repo_map.stats.errors == []

    def test_hash_round_trip(self):
        """Test that the failure hash is stored only when known."""
        assert ScanError("a.py", "broken").to_dict() == {"file": "a.py", "message": "broken"}
        data = ScanError("a.py", "broken", hash="abcd").to_dict()
        assert ScanError.from_dict(data) == ScanError("a.py", "broken", hash="abcd")


class TestSerialization:
    """Tests for the JSON shape of a map."""

    def test_camel_case_stats(self):
        """Test that aggregate counters keep their on-disk names."""
        data = RepoMap().to_dict()
        assert set(data["stats"]) == {"totalFiles", "totalSymbols", "scanDurationMs", "errors"}
        assert data["version"] == "1.0.0"
        assert data["git"] is None

    def test_round_trip_preserves_content(self):
        """Test that a loaded map equals the saved one."""
        repo_map = RepoMap()
        repo_map.set_file("a.py", record("os", functions=["main"]))
        repo_map.recalculate_stats()

        assert RepoMap.from_dict(repo_map.to_dict()) == repo_map


class TestNormalizeMapData:
    """Tests for legacy format normalization."""

    def test_docs_field_purged(self):
        """Test that the legacy docs field is dropped without touching the input."""
        raw = {"files": {}, "docs": {"readme": "..."}, "stats": {"errors": "bad"}}
        normalized = normalize_map_data(raw)

        assert "docs" not in normalized
        assert "docs" in raw
        assert normalized["stats"]["errors"] == []
        assert normalized["dependencies"] == {}
        assert normalized["project"] == {}

    @pytest.mark.parametrize("data", [None, [], {"files": []}, {"version": "1.0.0"}])
    def test_invalid_documents(self, data):
        """Test that documents without a files mapping are rejected."""
        with pytest.raises(InvalidMapError):
            normalize_map_data(data)

    def test_malformed_record(self):
        """Test that a malformed file record surfaces as InvalidMapError."""
        with pytest.raises(InvalidMapError):
            RepoMap.from_dict({"files": {"a.py": "not-an-object"}})


class TestResults:
    """Tests for result objects."""

    def test_change_summary_total(self):
        """Test that total counts every change kind once, but not rescans."""
        summary = ChangeSummary(added=1, modified=2, deleted=3, renamed=4, updated=3)
        assert summary.total == 10
        assert summary.to_dict()["total"] == 10

    def test_update_failure(self):
        """Test the failure constructor and its JSON keys."""
        result = UpdateResult.failure("boom", needs_full_rebuild=True, failed_files=["a.py"])
        assert result.to_dict() == {
            "success": False,
            "error": "boom",
            "needsFullRebuild": True,
            "failedFiles": ["a.py"],
        }

    def test_status_without_map(self):
        """Test the JSON of a status call when no map exists."""
        result = StatusResult(exists=False, message="No repo-map found. Run init to create one.")
        assert result.to_dict() == {"exists": False, "message": "No repo-map found. Run init to create one."}

    def test_staleness_keys(self):
        """Test the camelCase staleness keys."""
        assert StalenessReport(is_stale=True, reason="x", commits_behind=2).to_dict() == {
            "isStale": True,
            "reason": "x",
            "commitsBehind": 2,
            "suggestFullRebuild": False,
        }
