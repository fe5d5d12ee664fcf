"""cign: Can I Go Now? A friendly reminder for your unpushed code."""

# Guard against deleted CWD (e.g. directory removed while a fix shell ran in it).
# rich crashes on import if os.getcwd() fails, so recover before any imports.
import os

try:
    os.getcwd()
except (OSError, PermissionError):
    os.chdir(os.path.expanduser("~"))

from ._version import __version__
from .config import Config, load_config, save_config
from .core import (
    CustomCheckResult,
    CustomEntry,
    FixLoop,
    FixOutcome,
    GitOperations,
    GitRepository,
    RepoCheckResult,
    RepoEntry,
    RepositoryState,
    ScanRecord,
    ScanSummary,
    SkipPolicy,
    collect_failing,
    discover_recursive,
    discover_repository,
    expand_path,
    refresh_all,
    resolve_paths,
    scan_entries,
    working_directory,
)
from .formatters import OutputFormatter

__all__ = [
    # Version
    "__version__",
    # Models
    "Config",
    "CustomCheckResult",
    "CustomEntry",
    "FixOutcome",
    "RepoCheckResult",
    "RepoEntry",
    "RepositoryState",
    "ScanRecord",
    "ScanSummary",
    # Operations
    "FixLoop",
    "GitOperations",
    "GitRepository",
    "SkipPolicy",
    # Functions
    "collect_failing",
    "discover_recursive",
    "discover_repository",
    "expand_path",
    "load_config",
    "refresh_all",
    "resolve_paths",
    "save_config",
    "scan_entries",
    "working_directory",
    # Formatters
    "OutputFormatter",
]
