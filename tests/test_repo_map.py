"""Tests for the init / update / status operations."""

import asyncio
import json

import pytest

import repomap.repo_map
from repomap import cache, exists, init, load, status, update
from repomap.ast_grep import AstGrepInstall

from conftest import commit_all


def missing_tool(monkeypatch, install):
    async def check_installed(timeout=5.0):
        return install

    monkeypatch.setattr(repomap.repo_map, "check_installed", check_installed)


class TestInit:
    """Tests for init."""

    def test_creates_map(self, python_project, installed):
        """Test a first full scan of three files with two importing files."""
        result = asyncio.run(init(python_project))

        assert result.success, result.error
        assert result.summary.files == 3
        assert result.summary.languages == ["python"]
        assert len(result.repo_map.dependencies) == 2
        assert exists(python_project)

        on_disk = json.loads(cache.get_map_path(python_project).read_text())
        assert sorted(on_disk["files"]) == ["pkg/a.py", "pkg/b.py", "pkg/c.py"]
        assert on_disk["stats"]["totalFiles"] == 3
        assert "docs" not in on_disk

    def test_existing_map_needs_force(self, python_project, installed):
        """Test that init refuses to overwrite without force."""
        asyncio.run(init(python_project))
        result = asyncio.run(init(python_project))

        assert not result.success
        assert "already exists" in result.error
        assert result.existing.files == 3

        assert asyncio.run(init(python_project, force=True)).success

    def test_explicit_languages(self, python_project, installed):
        """Test that aliases are normalized and unsupported names dropped."""
        (python_project / "web.js").write_text("function main() {}\n")
        result = asyncio.run(init(python_project, languages=["py", "cobol"]))

        assert result.repo_map.project.languages == ["python"]
        assert "web.js" not in result.repo_map.files

    def test_no_supported_languages(self, tmp_path, installed):
        """Test a project with nothing to scan."""
        (tmp_path / "README.md").write_text("hi")
        result = asyncio.run(init(tmp_path))

        assert not result.success
        assert result.error == "No supported languages detected in repository"

    def test_tool_not_found(self, python_project, monkeypatch):
        """Test that a missing ast-grep fails with install guidance."""
        missing_tool(monkeypatch, AstGrepInstall(found=False))
        result = asyncio.run(init(python_project))

        assert not result.success
        assert result.error == "ast-grep not found"
        assert "pip install ast-grep-cli" in result.install_suggestion
        assert not exists(python_project)

    def test_tool_too_old(self, python_project, monkeypatch):
        """Test the minimum version check."""
        missing_tool(monkeypatch, AstGrepInstall(found=True, version="0.19.0", command="sg"))
        result = asyncio.run(init(python_project))

        assert not result.success
        assert "0.19.0 is too old" in result.error
        assert "0.20.0" in result.error

    def test_invalid_configuration(self, python_project, installed, monkeypatch):
        """Test that configuration errors become failed results."""
        monkeypatch.setenv("REPOMAP_CONCURRENCY", "lots")
        result = asyncio.run(init(python_project))

        assert not result.success
        assert result.error.startswith("Invalid configuration")


class TestUpdate:
    """Tests for update."""

    def test_without_map(self, python_project, installed):
        """Test that update requires an existing map."""
        result = asyncio.run(update(python_project))

        assert not result.success
        assert result.error == "No repo map found. Run init first."

    def test_incremental_saves(self, git_project, installed):
        """Test that a successful update is persisted and clears the marker."""
        asyncio.run(init(git_project))
        cache.mark_stale(git_project)
        (git_project / "pkg" / "d.py").write_text("def delta():\n    pass\n")
        commit_all(git_project)

        result = asyncio.run(update(git_project))

        assert result.success
        assert result.changes.added == 1
        assert "pkg/d.py" in load(git_project).files
        assert not cache.is_marked_stale(git_project)

    def test_failed_update_not_saved(self, git_project, installed, fake_ast_grep):
        """Test that a failed update leaves the saved map untouched."""
        asyncio.run(init(git_project))
        before = cache.get_map_path(git_project).read_text()
        (git_project / "pkg" / "a.py").write_text("import sys\n")
        commit_all(git_project)
        fake_ast_grep.fail_on.add("pkg/a.py")

        result = asyncio.run(update(git_project))

        assert not result.success
        assert result.needs_full_rebuild
        assert cache.get_map_path(git_project).read_text() == before

    def test_full_rebuild(self, python_project, installed):
        """Test update(full=True) delegating to a forced init."""
        asyncio.run(init(python_project))
        (python_project / "pkg" / "d.py").write_text("def delta():\n    pass\n")

        result = asyncio.run(update(python_project, full=True))

        assert result.success
        assert result.summary.files == 4
        assert result.changes is None

    def test_full_rebuild_of_corrupt_map(self, python_project, installed):
        """Test that a corrupt map can still be rebuilt."""
        path = cache.get_map_path(python_project)
        path.parent.mkdir()
        path.write_text("{ broken")

        assert asyncio.run(update(python_project)).needs_full_rebuild
        assert asyncio.run(update(python_project, full=True)).success


    def test_failed_files_do_not_block_updates(self, python_project, installed, fake_ast_grep):
        """Test that a file that always fails never forces a rebuild loop."""
        (python_project / "pkg" / "bad.py").write_text("def broken(:\n")
        fake_ast_grep.fail_on.add("pkg/bad.py")

        created = asyncio.run(init(python_project))
        assert created.success
        assert [e.file for e in created.repo_map.stats.errors] == ["pkg/bad.py"]

        first = asyncio.run(update(python_project))
        assert first.success
        assert first.changes.total == 0

        assert asyncio.run(update(python_project, full=True)).success
        assert asyncio.run(update(python_project)).success
        assert [e.file for e in load(python_project).stats.errors] == ["pkg/bad.py"]


class TestStatus:
    """Tests for status."""

    def test_no_map(self, tmp_path):
        """Test status without a map."""
        result = status(tmp_path)

        assert result.to_dict() == {"exists": False, "message": "No repo-map found. Run init to create one."}

    def test_fresh_map(self, git_project, installed):
        """Test status right after init."""
        asyncio.run(init(git_project))
        result = status(git_project)

        assert result.exists
        assert result.status.files == 3
        assert result.status.branch == "main"
        assert not result.staleness.is_stale
        assert result.to_dict()["status"]["staleness"]["isStale"] is False

    def test_status_is_read_only(self, git_project, installed):
        """Test that status neither rescans nor rewrites the map."""
        asyncio.run(init(git_project))
        (git_project / "pkg" / "d.py").write_text("x = 1\n")
        commit_all(git_project)
        before = cache.get_map_path(git_project).read_text()

        result = status(git_project)

        assert result.staleness.is_stale
        assert result.staleness.commits_behind == 1
        assert cache.get_map_path(git_project).read_text() == before


@pytest.mark.parametrize("state_dir", [".ai-state", "nested/state"])
def test_state_dir_from_environment(python_project, installed, monkeypatch, state_dir):
    """Test that AI_STATE_DIR moves where init writes."""
    monkeypatch.setenv("AI_STATE_DIR", state_dir)
    asyncio.run(init(python_project))
    assert (python_project / state_dir / "repo-map.json").is_file()


class TestInvalidConfiguration:
    """Tests for load and exists under a broken configuration."""

    def test_load_returns_none(self, python_project, installed, monkeypatch):
        """Test that load reports no map instead of raising."""
        asyncio.run(init(python_project))
        monkeypatch.setenv("REPOMAP_CONCURRENCY", "0")

        assert load(python_project) is None

    def test_exists_returns_false(self, python_project, installed, monkeypatch):
        """Test that exists reports no map instead of raising."""
        asyncio.run(init(python_project))
        monkeypatch.setenv("REPOMAP_CONCURRENCY", "0")

        assert exists(python_project) is False
