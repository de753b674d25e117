"""Terminal colors for repomap's human-readable output.

Honours NO_COLOR (https://no-color.org/) and FORCE_COLOR, and stays plain
when stdout is not a terminal.

Example:
    >>> c = Colors(enabled=True)
    >>> print(c.success("done") + " " + c.cyan("src/app.py"))
"""

import os
import sys


class Colors:
    """ANSI styling that degrades to plain text when disabled.

    Attributes:
        enabled: Whether escape codes are emitted.
    """

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"

    def __init__(self, enabled: bool = None):
        self.enabled = self._should_enable_colors() if enabled is None else enabled

    @staticmethod
    def _should_enable_colors() -> bool:
        if os.environ.get("NO_COLOR"):
            return False
        if os.environ.get("FORCE_COLOR"):
            return True
        if not hasattr(sys.stdout, "isatty") or not sys.stdout.isatty():
            return False
        return os.environ.get("TERM", "") != "dumb"

    def _colorize(self, text: str, *codes: str) -> str:
        if not self.enabled:
            return text
        return f"{''.join(codes)}{text}{self.RESET}"

    def red(self, text: str) -> str:
        return self._colorize(text, self.RED)

    def green(self, text: str) -> str:
        return self._colorize(text, self.GREEN)

    def yellow(self, text: str) -> str:
        return self._colorize(text, self.YELLOW)

    def magenta(self, text: str) -> str:
        return self._colorize(text, self.MAGENTA)

    def cyan(self, text: str) -> str:
        """Paths and identifiers."""
        return self._colorize(text, self.CYAN)

    def bold(self, text: str) -> str:
        return self._colorize(text, self.BOLD)

    def dim(self, text: str) -> str:
        return self._colorize(text, self.DIM)

    def success(self, text: str) -> str:
        return self._colorize(text, self.BOLD, self.GREEN)

    def error(self, text: str) -> str:
        return self._colorize(text, self.BOLD, self.RED)

    def warning(self, text: str) -> str:
        return self.yellow(text)


def get_colors(no_color: bool = False) -> Colors:
    """Colors for the current process; ``no_color`` forces plain text."""
    if no_color:
        return Colors(enabled=False)
    return Colors()
