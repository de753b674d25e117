"""Shared fixtures for repomap tests.

The scanner's only contact with ast-grep is ``repomap.scanner.run_ast_grep``.
``fake_ast_grep`` replaces it with a regex matcher that understands the
Python and JavaScript patterns used here and returns matches in ast-grep's
``--json=stream`` shape, so scans run without the real binary.
"""

import re
import shutil
import subprocess
from pathlib import Path

import pytest

import repomap.repo_map
import repomap.scanner
from repomap.ast_grep import AstGrepInstall
from repomap.exceptions import AstGrepError

# pattern -> (line regex, metavariable names captured by its groups)
FAKE_PATTERNS = {
    "def $NAME($$$): $$$": (r"^\s*def\s+(\w+)\s*\(", ("NAME",)),
    "async def $NAME($$$): $$$": (r"^\s*async\s+def\s+(\w+)\s*\(", ("NAME",)),
    "class $NAME($$$): $$$": (r"^\s*class\s+(\w+)\s*\(", ("NAME",)),
    "class $NAME: $$$": (r"^\s*class\s+(\w+)\s*:", ("NAME",)),
    "from $SOURCE import $NAME": (r"^from\s+(\S+)\s+import\s+(\w+)", ("SOURCE", "NAME")),
    "from $SOURCE import ($$$)": (r"^from\s+(\S+)\s+import\s+\(", ("SOURCE",)),
    "export function $NAME($$$) { $$$ }": (r"^export\s+function\s+(\w+)\s*\(", ("NAME",)),
    "function $NAME($$$) { $$$ }": (r"^(?:export\s+)?function\s+(\w+)\s*\(", ("NAME",)),
    "export class $NAME { $$$ }": (r"^export\s+class\s+(\w+)", ("NAME",)),
    "class $NAME { $$$ }": (r"^(?:export\s+)?class\s+(\w+)", ("NAME",)),
    "export const $NAME = $$$": (r"^export\s+const\s+(\w+)\s*=", ("NAME",)),
    "import { $$$ } from $SOURCE": (r"^import\s+\{[^}]*\}\s+from\s+(['\"][^'\"]+['\"])", ("SOURCE",)),
    "import $NAME from $SOURCE": (r"^import\s+(\w+)\s+from\s+(['\"][^'\"]+['\"])", ("NAME", "SOURCE")),
}

# "import $SOURCE" means different things per language.
PYTHON_IMPORT = (r"^import\s+(.+?)\s*$", ("SOURCE",))
JS_SIDE_EFFECT_IMPORT = (r"^import\s+(['\"][^'\"]+['\"])", ("SOURCE",))


class FakeAstGrep:
    """Regex stand-in for ast-grep, with call recording and failure injection.

    ``calls`` holds one (file, pattern) entry per file per invocation and
    ``invocations`` one entry per simulated process.
    """

    def __init__(self):
        self.calls = []
        self.invocations = []
        self.fail_on = set()

    def _spec(self, pattern, sg_language):
        if pattern == "import $SOURCE":
            return PYTHON_IMPORT if sg_language == "python" else JS_SIDE_EFFECT_IMPORT
        return FAKE_PATTERNS.get(pattern)

    async def __call__(self, command, file_paths, pattern, sg_language, base_path, timeout=30.0):
        file_paths = list(file_paths)
        self.invocations.append((tuple(file_paths), pattern))
        self.calls.extend((file_path, pattern) for file_path in file_paths)
        if self.fail_on.intersection(file_paths):
            raise AstGrepError(f"{command} exited with status 2: parse error", returncode=2)

        spec = self._spec(pattern, sg_language)
        if spec is None:
            return []
        regex, names = spec

        matches = []
        for file_path in file_paths:
            content = (Path(base_path) / file_path).read_text(encoding="utf-8")
            for number, line in enumerate(content.splitlines()):
                found = re.search(regex, line)
                if not found:
                    continue
                matches.append({
                    "text": line.strip(),
                    "file": file_path,
                    "range": {"start": {"line": number, "column": 0}},
                    "metaVariables": {
                        "single": {name: {"text": found.group(i + 1)} for i, name in enumerate(names)},
                        "multi": {},
                    },
                })
        return matches

    def scanned_files(self):
        return sorted({file_path for file_path, _ in self.calls})


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep user settings and enclosing repositories out of every test."""
    for name in ("AI_STATE_DIR", "REPOMAP_CONCURRENCY", "NO_COLOR", "FORCE_COLOR"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path.parent))


@pytest.fixture
def fake_ast_grep(monkeypatch):
    fake = FakeAstGrep()
    monkeypatch.setattr(repomap.scanner, "run_ast_grep", fake)
    return fake


@pytest.fixture
def installed(monkeypatch, fake_ast_grep):
    """Pretend a recent ast-grep is on PATH."""
    install = AstGrepInstall(found=True, version="0.30.1", command="sg", path="/usr/bin/sg")

    async def check_installed(timeout=5.0):
        return install

    monkeypatch.setattr(repomap.repo_map, "check_installed", check_installed)
    return install


@pytest.fixture
def python_project(tmp_path):
    """Three Python files; two of them import something."""
    root = tmp_path / "project"
    pkg = root / "pkg"
    pkg.mkdir(parents=True)
    (pkg / "a.py").write_text("import os\n\n\ndef alpha():\n    return os.getcwd()\n")
    (pkg / "b.py").write_text("from pkg.a import alpha\n\n\nclass Beta:\n    def run(self):\n        return alpha()\n")
    (pkg / "c.py").write_text("def _private():\n    pass\n\n\ndef gamma():\n    pass\n")
    return root


def run_git(repo, *args):
    return subprocess.run(
        ["git", *args], cwd=repo, check=True, capture_output=True, text=True
    ).stdout.strip()


def commit_all(repo, message="change"):
    run_git(repo, "add", "-A")
    run_git(repo, "commit", "-q", "-m", message)
    return run_git(repo, "rev-parse", "HEAD")


@pytest.fixture
def git_project(python_project):
    """``python_project`` as a git repository on branch main with one commit."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    run_git(python_project, "init", "-q")
    run_git(python_project, "symbolic-ref", "HEAD", "refs/heads/main")
    run_git(python_project, "config", "user.email", "dev@example.com")
    run_git(python_project, "config", "user.name", "Dev")
    run_git(python_project, "config", "commit.gpgsign", "false")
    (python_project / ".gitignore").write_text(".claude/\n")
    commit_all(python_project, "initial")
    return python_project
