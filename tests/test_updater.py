"""Tests for incremental updates and staleness checks."""

import asyncio

import pytest

from repomap import cache
from repomap.discovery import IgnoreMatcher
from repomap.git import DiffChanges, DiffUnavailable, GitIntegration, Rename
from repomap.models import FileRecord, GitInfo, RepoMap
from repomap.scanner import full_scan, hash_file
from repomap.updater import check_staleness, incremental_update, relevant_changes, update_without_git

from conftest import commit_all, run_git

# Long enough that a one-line edit keeps git's rename similarity above 50%.
MODULE_BODY = "".join(f"def helper_{i}():\n    return {i}\n\n\n" for i in range(8))


def scan(root):
    return asyncio.run(full_scan(root, ["python"], "sg"))


def update(root, repo_map):
    return asyncio.run(incremental_update(root, repo_map, command="sg"))


class TestRelevantChanges:
    """Tests for filtering a raw diff down to mapped files."""

    def setup_method(self):
        self.repo_map = RepoMap()
        self.repo_map.set_file("src/app.py", FileRecord(hash="h"))
        self.matcher = IgnoreMatcher(["generated/"])

    def test_unsupported_paths_dropped(self):
        """Test that non-source files never reach the map."""
        diff = DiffChanges(added=["README.md", "src/new.py"], modified=["setup.cfg"], deleted=["docs/x.md"])
        changes = relevant_changes(diff, self.repo_map, self.matcher)

        assert changes.added == ["src/new.py"]
        assert changes.modified == []
        assert changes.deleted == []

    def test_rename_across_boundary(self):
        """Test renames into ignored paths and from unknown paths."""
        diff = DiffChanges(
            renamed=[
                Rename("src/app.py", "generated/app.py"),
                Rename("notes.txt", "src/notes.py"),
            ]
        )
        changes = relevant_changes(diff, self.repo_map, self.matcher)

        assert changes.renamed == []
        assert changes.deleted == ["src/app.py"]
        assert changes.added == ["src/notes.py"]

    def test_edited_rename_kept_once(self):
        """Test that an edited rename is a rename plus a rescan of the target."""
        rename = Rename("src/app.py", "src/main.py", similarity=80)
        diff = DiffChanges(modified=["src/main.py"], renamed=[rename])
        changes = relevant_changes(diff, self.repo_map, self.matcher)

        assert changes.renamed == [rename]
        assert changes.modified == ["src/main.py"]
        assert changes.total == 1


class TestIncrementalUpdateWithGit:
    """Tests for the git diff path against a real repository."""

    @pytest.fixture
    def mapped(self, git_project, fake_ast_grep):
        repo_map = scan(git_project)
        assert repo_map.git is not None
        return git_project, repo_map

    def test_no_changes(self, mapped):
        """Test that an unchanged repository yields zero changes."""
        root, repo_map = mapped
        result = update(root, repo_map)

        assert result.success
        assert result.changes.total == 0
        assert result.repo_map.updated is not None

    def test_modified_file(self, mapped, fake_ast_grep):
        """Test that only the modified file is rescanned."""
        root, repo_map = mapped
        (root / "pkg" / "c.py").write_text("def delta():\n    pass\n")
        commit_all(root)
        fake_ast_grep.calls.clear()

        result = update(root, repo_map)

        assert result.changes.to_dict() == {
            "total": 1, "updated": 1, "added": 0, "modified": 1, "deleted": 0, "renamed": 0,
        }
        assert fake_ast_grep.scanned_files() == ["pkg/c.py"]
        assert [s.name for s in repo_map.files["pkg/c.py"].symbols.functions] == ["delta"]
        assert repo_map.git.commit == run_git(root, "rev-parse", "HEAD")

    def test_deleted_file(self, mapped):
        """Test that deleted files leave the map and its dependencies."""
        root, repo_map = mapped
        run_git(root, "rm", "-q", "pkg/a.py")
        commit_all(root)

        result = update(root, repo_map)

        assert result.changes.deleted == 1
        assert "pkg/a.py" not in repo_map.files
        assert "pkg/a.py" not in repo_map.dependencies
        assert repo_map.stats.total_files == 2

    def test_pure_rename_not_rescanned(self, mapped, fake_ast_grep):
        """Test that a rename without edits re-keys the record without scanning."""
        root, repo_map = mapped
        old_record = repo_map.files["pkg/b.py"]
        run_git(root, "mv", "pkg/b.py", "pkg/beta.py")
        commit_all(root)
        fake_ast_grep.calls.clear()

        result = update(root, repo_map)

        assert result.changes.renamed == 1
        assert result.changes.updated == 0
        assert fake_ast_grep.calls == []
        assert repo_map.files["pkg/beta.py"] is old_record
        assert repo_map.dependencies["pkg/beta.py"] == ["pkg.a"]
        assert "pkg/b.py" not in repo_map.files

    def test_rename_with_edit_counted_once(self, git_project, fake_ast_grep):
        """Test that an edited rename counts as one rename and is rescanned."""
        (git_project / "pkg" / "long.py").write_text(MODULE_BODY)
        commit_all(git_project)
        repo_map = scan(git_project)

        run_git(git_project, "mv", "pkg/long.py", "pkg/longer.py")
        (git_project / "pkg" / "longer.py").write_text(MODULE_BODY + "def extra():\n    return 0\n")
        commit_all(git_project)

        result = update(git_project, repo_map)

        assert result.changes.renamed == 1
        assert result.changes.modified == 0
        assert result.changes.total == 1
        assert result.changes.updated == 1
        names = [s.name for s in repo_map.files["pkg/longer.py"].symbols.functions]
        assert "extra" in names

    def test_added_file(self, mapped):
        """Test that new source files are scanned in."""
        root, repo_map = mapped
        (root / "pkg" / "d.py").write_text("from pkg.c import gamma\n")
        commit_all(root)

        result = update(root, repo_map)

        assert result.changes.added == 1
        assert repo_map.dependencies["pkg/d.py"] == ["pkg.c"]

    def test_unsupported_file_ignored(self, mapped):
        """Test that committing a non-source file changes nothing."""
        root, repo_map = mapped
        (root / "README.md").write_text("# project\n")
        commit_all(root)

        result = update(root, repo_map)

        assert result.success
        assert result.changes.total == 0
        assert "README.md" not in repo_map.files

    def test_idempotent(self, mapped):
        """Test that a second update after the first finds nothing."""
        root, repo_map = mapped
        (root / "pkg" / "a.py").write_text("import sys\n")
        commit_all(root)

        assert update(root, repo_map).changes.total == 1
        assert update(root, repo_map).changes.total == 0

    def test_missing_base_commit(self, mapped):
        """Test that rewritten history requires a full rebuild."""
        root, repo_map = mapped
        repo_map.git = GitInfo(commit="deadbeef" * 5, branch="main")

        result = update(root, repo_map)

        assert not result.success
        assert result.needs_full_rebuild
        assert "not found" in result.error

    def test_scan_failure_aborts(self, mapped, fake_ast_grep):
        """Test that one failed rescan fails the whole update."""
        root, repo_map = mapped
        (root / "pkg" / "a.py").write_text("import sys\n")
        (root / "pkg" / "c.py").write_text("import json\n")
        commit_all(root)
        fake_ast_grep.fail_on.add("pkg/c.py")

        result = update(root, repo_map)

        assert not result.success
        assert result.needs_full_rebuild
        assert result.failed_files == ["pkg/c.py"]

    def test_invalid_map(self, git_project):
        """Test that a missing map asks for a full rebuild."""
        result = update(git_project, None)
        assert result.needs_full_rebuild

    def test_diff_unavailable_falls_back_to_hashes(self, mapped, fake_ast_grep, monkeypatch):
        """Test that a failed git diff switches to hash comparison."""
        root, repo_map = mapped
        recorded = repo_map.git.commit
        monkeypatch.setattr(GitIntegration, "diff_since", lambda self, commit: DiffUnavailable("boom"))
        (root / "pkg" / "a.py").write_text("import sys\n")
        commit_all(root)
        fake_ast_grep.calls.clear()

        result = update(root, repo_map)

        assert result.success
        assert (result.changes.added, result.changes.modified, result.changes.deleted) == (0, 1, 0)
        assert fake_ast_grep.scanned_files() == ["pkg/a.py"]
        assert repo_map.git.commit == recorded

    def test_deleting_failed_file_clears_error(self, git_project, fake_ast_grep):
        """Test that a deleted file drops out of stats.errors."""
        (git_project / "pkg" / "bad.py").write_text("def broken(:\n")
        commit_all(git_project)
        fake_ast_grep.fail_on.add("pkg/bad.py")
        repo_map = scan(git_project)
        assert [e.file for e in repo_map.stats.errors] == ["pkg/bad.py"]

        run_git(git_project, "rm", "-q", "pkg/bad.py")
        commit_all(git_project)
        result = update(git_project, repo_map)

        assert result.success
        assert result.changes.deleted == 1
        assert repo_map.stats.errors == []


class TestUpdateWithoutGit:
    """Tests for the content-hash path."""

    def test_hash_comparison(self, python_project, fake_ast_grep):
        """Test added, modified and deleted detection by hash."""
        repo_map = scan(python_project)
        (python_project / "pkg" / "a.py").write_text("import sys\n")
        (python_project / "pkg" / "c.py").unlink()
        (python_project / "pkg" / "d.py").write_text("def delta():\n    pass\n")
        fake_ast_grep.calls.clear()

        result = update(python_project, repo_map)

        assert result.success
        assert (result.changes.added, result.changes.modified, result.changes.deleted) == (1, 1, 1)
        assert fake_ast_grep.scanned_files() == ["pkg/a.py", "pkg/d.py"]
        assert repo_map.files["pkg/a.py"].hash == hash_file(python_project / "pkg" / "a.py")
        assert repo_map.dependencies["pkg/a.py"] == ["sys"]
        assert repo_map.git is None

    def test_git_field_left_alone(self, python_project, fake_ast_grep):
        """Test that the hash path does not touch the recorded commit."""
        repo_map = scan(python_project)
        repo_map.git = GitInfo(commit="a" * 40)

        result = asyncio.run(update_without_git(python_project, repo_map, command="sg"))

        assert result.changes.total == 0
        assert repo_map.git.commit == "a" * 40

    def test_identical_rewrite_not_rescanned(self, python_project, fake_ast_grep):
        """Test that rewriting a file with the same bytes changes nothing."""
        repo_map = scan(python_project)
        target = python_project / "pkg" / "a.py"
        target.write_bytes(target.read_bytes())
        fake_ast_grep.calls.clear()

        result = update(python_project, repo_map)

        assert result.success
        assert result.changes.modified == 0
        assert fake_ast_grep.calls == []

    def test_new_file_failure_aborts(self, python_project, fake_ast_grep):
        """Test that a failing new file asks for a full rebuild."""
        repo_map = scan(python_project)
        (python_project / "pkg" / "d.py").write_text("def delta():\n    pass\n")
        fake_ast_grep.fail_on.add("pkg/d.py")

        result = update(python_project, repo_map)

        assert not result.success
        assert result.needs_full_rebuild
        assert result.failed_files == ["pkg/d.py"]


class TestFailedFiles:
    """Tests for files a full scan could not process."""

    @pytest.fixture
    def broken(self, python_project, fake_ast_grep):
        (python_project / "pkg" / "bad.py").write_text("def broken(:\n")
        fake_ast_grep.fail_on.add("pkg/bad.py")
        repo_map = scan(python_project)
        assert [e.file for e in repo_map.stats.errors] == ["pkg/bad.py"]
        return python_project, repo_map

    def test_unchanged_failure_skipped(self, broken, fake_ast_grep):
        """Test that an unchanged failed file is not retried or reported."""
        root, repo_map = broken
        fake_ast_grep.calls.clear()

        result = update(root, repo_map)

        assert result.success
        assert result.changes.total == 0
        assert fake_ast_grep.calls == []
        assert [e.file for e in repo_map.stats.errors] == ["pkg/bad.py"]

    def test_updates_keep_succeeding(self, broken):
        """Test that repeated updates never demand a rebuild."""
        root, repo_map = broken

        for _ in range(2):
            result = update(root, repo_map)
            assert result.success
            assert not result.needs_full_rebuild

    def test_changed_failure_recorded_again(self, broken, fake_ast_grep):
        """Test that a file that still fails after an edit refreshes its error."""
        root, repo_map = broken
        (root / "pkg" / "bad.py").write_text("def still_broken(:\n")

        result = update(root, repo_map)

        assert result.success
        assert result.changes.modified == 1
        assert result.changes.updated == 0
        assert repo_map.error_for("pkg/bad.py").hash == hash_file(root / "pkg" / "bad.py")
        assert "pkg/bad.py" not in repo_map.files

    def test_fixed_file_enters_map(self, broken, fake_ast_grep):
        """Test that a repaired file is scanned in and its error cleared."""
        root, repo_map = broken
        (root / "pkg" / "bad.py").write_text("def fixed():\n    pass\n")
        fake_ast_grep.fail_on.clear()

        result = update(root, repo_map)

        assert result.success
        assert result.changes.modified == 1
        assert [s.name for s in repo_map.files["pkg/bad.py"].symbols.functions] == ["fixed"]
        assert repo_map.stats.errors == []
        assert repo_map.stats.total_files == 4

    def test_removed_failure_cleared(self, broken):
        """Test that deleting a failed file drops its error entry."""
        root, repo_map = broken
        (root / "pkg" / "bad.py").unlink()

        result = update(root, repo_map)

        assert result.success
        assert result.changes.deleted == 1
        assert repo_map.stats.errors == []


class TestCheckStaleness:
    """Tests for check_staleness."""

    @pytest.fixture
    def mapped(self, git_project, fake_ast_grep):
        return git_project, scan(git_project)

    def test_fresh(self, mapped):
        """Test a map that matches HEAD."""
        root, repo_map = mapped
        report = check_staleness(root, repo_map)
        assert not report.is_stale
        assert report.reason is None

    def test_commits_behind(self, mapped):
        """Test a map behind HEAD."""
        root, repo_map = mapped
        (root / "pkg" / "d.py").write_text("x = 1\n")
        commit_all(root)

        report = check_staleness(root, repo_map)
        assert report.is_stale
        assert report.commits_behind == 1
        assert report.reason == "1 commit(s) behind HEAD"

    def test_branch_changed(self, mapped):
        """Test switching branches."""
        root, repo_map = mapped
        run_git(root, "checkout", "-q", "-b", "feature")

        report = check_staleness(root, repo_map)
        assert report.is_stale
        assert report.reason == "Branch changed from main to feature"
        assert not report.suggest_full_rebuild

    def test_marker_reason_first(self, mapped):
        """Test that the hook marker takes precedence over later checks."""
        root, repo_map = mapped
        cache.mark_stale(root)
        (root / "pkg" / "d.py").write_text("x = 1\n")
        commit_all(root)

        report = check_staleness(root, repo_map)
        assert report.reason == "Marked stale by hook"
        assert report.commits_behind == 1

    def test_missing_commit(self, mapped):
        """Test rewritten history."""
        root, repo_map = mapped
        repo_map.git = GitInfo(commit="deadbeef" * 5, branch="main")

        report = check_staleness(root, repo_map)
        assert report.is_stale
        assert report.suggest_full_rebuild

    def test_no_git_info(self, python_project):
        """Test a map built outside git."""
        report = check_staleness(python_project, RepoMap())
        assert report.is_stale
        assert report.suggest_full_rebuild
