"""ast-grep detection and version checks.

repomap drives the ``ast-grep`` command line tool (also installed as ``sg``)
and relies on its ``--json=stream`` output. This module finds a runnable
command and verifies that its version is new enough for that output format.

Requirements:
    pip install ast-grep-cli

Example:
    >>> install = check_installed_sync()
    >>> if install.found and meets_minimum_version(install.version):
    ...     print(f"using {install.command} {install.version}")
"""

import asyncio
import logging
import re
import shutil
import subprocess
import sys
from dataclasses import dataclass
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

# Tried in order; the first that answers --version wins.
AST_GREP_COMMANDS = ("sg", "ast-grep")

# First release with stable --json=stream output.
MINIMUM_VERSION = "0.20.0"

VERSION_TIMEOUT = 5.0

_VERSION_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)")


@dataclass
class AstGrepInstall:
    """Result of probing for ast-grep.

    Attributes:
        found: Whether any candidate command answered.
        version: Reported version string (``0.25.3``), if found.
        command: Command name to invoke (``sg`` or ``ast-grep``).
        path: Resolved executable path, when available.
    """

    found: bool
    version: Optional[str] = None
    command: Optional[str] = None
    path: Optional[str] = None

    def to_dict(self):
        return {"found": self.found, "version": self.version, "command": self.command, "path": self.path}


def _clean_version(output: str) -> Optional[str]:
    """Extract the version from ``--version`` output.

    Returns None when the output is not from ast-grep, which happens when
    ``sg`` resolves to the unrelated shadow-utils command.
    """
    text = output.strip()
    if text.startswith("ast-grep "):
        return text[len("ast-grep "):].strip()
    if parse_version(text):
        return text
    return None


async def _read_version(command: str, timeout: float) -> Optional[str]:
    """Run ``<command> --version`` and return the version text."""
    try:
        process = await asyncio.create_subprocess_exec(
            command,
            "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError:
        return None

    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        logger.debug("%s --version timed out after %ss", command, timeout)
        return None

    if process.returncode != 0:
        return None
    return _clean_version(stdout.decode("utf-8", errors="replace"))


async def check_installed(timeout: float = VERSION_TIMEOUT) -> AstGrepInstall:
    """Find a working ast-grep command.

    Never raises; a missing or hanging tool yields ``found=False``.

    Args:
        timeout: Seconds allowed for each ``--version`` call.

    Returns:
        AstGrepInstall describing the first command that answered.
    """
    for command in AST_GREP_COMMANDS:
        version = await _read_version(command, timeout)
        if version is not None:
            logger.debug("Found %s version %s", command, version)
            return AstGrepInstall(found=True, version=version, command=command, path=shutil.which(command))
    return AstGrepInstall(found=False)


def check_installed_sync(timeout: float = VERSION_TIMEOUT) -> AstGrepInstall:
    """Blocking variant of :func:`check_installed` for non-async callers."""
    for command in AST_GREP_COMMANDS:
        try:
            result = subprocess.run(
                [command, "--version"],
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError, OSError):
            continue
        version = _clean_version(result.stdout) if result.returncode == 0 else None
        if version is not None:
            return AstGrepInstall(
                found=True,
                version=version,
                command=command,
                path=shutil.which(command),
            )
    return AstGrepInstall(found=False)


def parse_version(version: Optional[str]) -> Optional[Tuple[int, int, int]]:
    """Parse the ``major.minor.patch`` prefix of a version string."""
    if not version:
        return None
    match = _VERSION_RE.match(version.strip())
    if not match:
        return None
    return tuple(int(part) for part in match.groups())


def meets_minimum_version(version: Optional[str], minimum: str = MINIMUM_VERSION) -> bool:
    """Check a version against the floor.

    Unparseable versions fail the check.

    Example:
        >>> meets_minimum_version("0.25.1")
        True
        >>> meets_minimum_version("dev")
        False
    """
    parsed = parse_version(version)
    if parsed is None:
        return False
    return parsed >= parse_version(minimum)


def get_minimum_version() -> str:
    return MINIMUM_VERSION


def get_install_instructions() -> str:
    """Multi-line install guidance for users without ast-grep."""
    return """ast-grep (sg) is required for repo-map functionality.

Install using one of these methods:

  pip:      pip install ast-grep-cli
  npm:      npm install -g @ast-grep/cli
  brew:     brew install ast-grep
  cargo:    cargo install ast-grep --locked
  scoop:    scoop install main/ast-grep

After installation, verify with: sg --version

Documentation: https://ast-grep.github.io/"""


def get_short_install_suggestion(platform: Optional[str] = None) -> str:
    """One-line install hint tailored to the platform."""
    platform = platform or sys.platform
    if platform == "win32":
        return "Install ast-grep: pip install ast-grep-cli (or scoop install ast-grep)"
    if platform == "darwin":
        return "Install ast-grep: brew install ast-grep (or pip install ast-grep-cli)"
    return "Install ast-grep: pip install ast-grep-cli (or npm i -g @ast-grep/cli)"
