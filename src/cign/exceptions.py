"""Exception hierarchy for cign."""


class CignError(Exception):
    """Base error for all cign failures."""


class EntryError(CignError):
    """Failure tied to a single tracked entry.

    These are the only errors the skip-or-abort policy may swallow.
    """


class ExpansionError(EntryError):
    """Raised when a configured path cannot be expanded."""


class DiscoveryError(EntryError):
    """Raised when a path is not a usable git working tree or directory."""


class QueryError(EntryError):
    """Raised when a git query fails on an opened repository."""

    def __init__(self, command: list[str], returncode: int, stderr: str | None = None):
        message = "git query failed"
        if command:
            message = f"git query failed: {' '.join(command)}"
        if stderr:
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr or ""


class SubprocessError(EntryError):
    """Raised when a shell command could not be spawned at all."""


class TraversalError(CignError):
    """Raised when recursive discovery hits an unreadable directory."""


class WorkingDirectoryError(CignError):
    """Raised when the previous working directory cannot be restored."""


class ConfirmationDeclined(CignError):
    """Raised when the user declines or cancels an interactive prompt."""


class PersistenceError(CignError):
    """Raised when the configuration cannot be read or written."""
