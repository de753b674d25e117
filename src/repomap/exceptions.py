"""Exception hierarchy for repomap.

Exceptions never cross the public ``init``/``update``/``status`` boundary;
they are raised by the lower layers and converted into structured results
(or ``None``) where those layers meet the facade.
"""


class RepoMapError(Exception):
    """Base class for all repomap errors."""


class ConfigError(RepoMapError):
    """Raised when a configuration value has the wrong type or range."""


class AstGrepError(RepoMapError):
    """Raised when an ast-grep invocation fails.

    Attributes:
        command: The argument list that was executed.
        returncode: Process exit status, or None if the process never finished.
        stderr: Captured standard error, truncated.
    """

    def __init__(self, message: str, command=None, returncode=None, stderr: str = ""):
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class InvalidMapError(RepoMapError):
    """Raised when persisted map data does not have the expected structure."""
