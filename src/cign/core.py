"""
cign: Can I Go Now?

Checks a configured set of git working trees and custom directories for
unfinished business (uncommitted changes, diverged history, an operation in
progress, or a failing check command) and walks the user through fixing them.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from collections import deque
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar, Protocol

from rich.console import Console
from rich.markup import escape

from .exceptions import (
    DiscoveryError,
    EntryError,
    ExpansionError,
    QueryError,
    SubprocessError,
    TraversalError,
    WorkingDirectoryError,
)
from .interactive import confirm

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

ALL_GOOD = "all good"

# =============================================================================
# Domain Models
# =============================================================================


class RepositoryState(StrEnum):
    """Repository lifecycle state, clean or an operation in progress."""

    CLEAN = "clean"
    MERGE = "merge"
    REVERT = "revert"
    REVERT_SEQUENCE = "revert_sequence"
    CHERRY_PICK = "cherry_pick"
    CHERRY_PICK_SEQUENCE = "cherry_pick_sequence"
    BISECT = "bisect"
    REBASE = "rebase"
    REBASE_INTERACTIVE = "rebase_interactive"
    REBASE_MERGE = "rebase_merge"
    APPLY_MAILBOX = "apply_mailbox"
    APPLY_MAILBOX_OR_REBASE = "apply_mailbox_or_rebase"

    @property
    def display_name(self) -> str:
        """CamelCase spelling used in scan output, e.g. ``RebaseInteractive``."""
        return "".join(part.capitalize() for part in self.value.split("_"))


@dataclass(frozen=True)
class StatusEntry:
    """One working-tree status line (changed, unmerged or untracked path)."""

    code: str
    path: str


@dataclass(frozen=True)
class HeadInfo:
    """Where HEAD points.

    ``branch`` is the full ref name (``refs/heads/main``) or None when HEAD is
    detached. ``oid`` is None when the branch has no commits yet.
    """

    branch: str | None
    oid: str | None

    @property
    def is_branch(self) -> bool:
        return self.branch is not None


@dataclass(frozen=True)
class RepoCheckResult:
    """Dirtiness signals collected from one git working tree."""

    state: RepositoryState = RepositoryState.CLEAN
    uncommitted_count: int = 0
    commits_ahead: int = 0
    commits_behind: int = 0

    def is_all_good(self) -> bool:
        """True if no unfinished business was detected."""
        return (
            self.state == RepositoryState.CLEAN
            and self.uncommitted_count == 0
            and self.commits_ahead == 0
            and self.commits_behind == 0
        )

    def describe(self) -> list[str]:
        """Return the non-clean facts, in display order."""
        if self.is_all_good():
            return [ALL_GOOD]

        facts = []
        if self.state != RepositoryState.CLEAN:
            facts.append(f"unclean state {self.state.display_name}")
        if self.uncommitted_count > 0:
            facts.append(f"{self.uncommitted_count} uncommitted change(s)")
        if self.commits_ahead > 0:
            facts.append(f"{self.commits_ahead} commit(s) ahead")
        if self.commits_behind > 0:
            facts.append(f"{self.commits_behind} commit(s) behind")
        return facts

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "uncommitted_count": self.uncommitted_count,
            "commits_ahead": self.commits_ahead,
            "commits_behind": self.commits_behind,
            "all_good": self.is_all_good(),
            "facts": self.describe(),
        }


@dataclass(frozen=True)
class CustomCheckResult:
    """Verdict of a custom check command: exit status 0 means clean."""

    passed: bool

    state: ClassVar[str] = "n/a"
    uncommitted_count: ClassVar[int] = 0
    commits_ahead: ClassVar[int] = 0
    commits_behind: ClassVar[int] = 0

    def is_all_good(self) -> bool:
        return self.passed

    def describe(self) -> list[str]:
        if self.passed:
            return [ALL_GOOD]
        return ["check failed"]

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "all_good": self.is_all_good(),
            "facts": self.describe(),
        }


CheckResult = RepoCheckResult | CustomCheckResult


@dataclass
class OperationResult:
    """Result of running a refresh command for one entry."""

    identity: str
    path: Path
    operation: str
    returncode: int

    @property
    def success(self) -> bool:
        return self.returncode == 0

    def to_dict(self) -> dict:
        return {
            "identity": self.identity,
            "path": str(self.path),
            "operation": self.operation,
            "returncode": self.returncode,
            "success": self.success,
        }


# =============================================================================
# Path Expansion and Skip Policy
# =============================================================================

_ENV_VAR = re.compile(
    r"\$(?:\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}"
    r"|(?P<bare>[A-Za-z_][A-Za-z0-9_]*))"
)


def _expand_env(raw: str, text: str) -> str:
    pieces = []
    position = 0
    for match in _ENV_VAR.finditer(text):
        pieces.append(_literal(raw, text[position : match.start()]))
        name = match.group("braced") or match.group("bare")
        value = os.environ.get(name)
        if not value and match.group("default") is not None:
            value = match.group("default")
        if value is None:
            raise ExpansionError(f"{raw}: environment variable {name} is not set")
        pieces.append(value)
        position = match.end()
    pieces.append(_literal(raw, text[position:]))
    return "".join(pieces)


def _literal(raw: str, text: str) -> str:
    if "${" in text:
        raise ExpansionError(f"{raw}: malformed variable reference")
    return text


def expand_path(raw: str) -> str:
    """Expand ``~`` and ``$VAR``/``${VAR}``/``${VAR:-default}`` like a shell.

    Unlike ``os.path.expandvars``, an unset variable is an error rather than
    being left in place.
    """
    if raw == "~" or raw.startswith("~/"):
        home = os.path.expanduser("~")
        if home == "~":
            raise ExpansionError(f"{raw}: cannot determine home directory")
        return home + _expand_env(raw, raw[1:])
    return _expand_env(raw, raw)


class SkipPolicy:
    """Skip-or-abort handling shared by every batch operation.

    With ``no_skip`` the first per-entry failure aborts the batch; otherwise it
    is logged and the entry is left out.
    """

    def __init__(self, no_skip: bool = False):
        self.no_skip = no_skip

    @contextmanager
    def guard(self, label: str, action: str = "checking") -> Iterator[None]:
        try:
            yield
        except EntryError as e:
            if self.no_skip:
                raise
            logger.warning("%s: Skipping because %s failed: %s", label, action, e)


def resolve_paths(path_strings: Iterable[str], no_skip: bool = False) -> list[Path]:
    """Expand configured path strings, keeping the input order."""
    policy = SkipPolicy(no_skip)
    resolved = []
    for raw in path_strings:
        with policy.guard(raw, "expanding the path"):
            resolved.append(Path(expand_path(raw)))
    return resolved


# =============================================================================
# Process Boundary
# =============================================================================

ShellRunner = Callable[..., int]


def change_directory(path: Path) -> None:
    try:
        os.chdir(path)
    except OSError as e:
        raise DiscoveryError(f"{path}: cannot enter directory: {e}") from e


@contextmanager
def working_directory(path: Path | None = None) -> Iterator[Path]:
    """Optionally enter ``path``; the previous directory is restored on exit."""
    try:
        previous = Path.cwd()
    except OSError as e:
        raise WorkingDirectoryError(f"current directory is gone: {e}") from e

    if path is not None:
        change_directory(path)
    try:
        yield previous
    finally:
        try:
            os.chdir(previous)
        except OSError as e:
            raise WorkingDirectoryError(f"{previous}: cannot restore directory: {e}") from e


def run_in_shell(
    command: str,
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
) -> int:
    """Run ``command`` through ``/bin/sh`` and return its exit status.

    Output is not captured; interactive commands talk to the terminal.
    """
    merged_env = {**os.environ, **env} if env else None
    try:
        completed = subprocess.run(command, shell=True, cwd=cwd, env=merged_env, check=False)
    except OSError as e:
        raise SubprocessError(f"could not run {command!r}: {e}") from e
    return completed.returncode


# =============================================================================
# Git Operations (Low-level)
# =============================================================================

# Variables that would redirect git away from the directory we query.
_GIT_LOCATION_VARS = frozenset({"GIT_DIR", "GIT_WORK_TREE", "GIT_INDEX_FILE", "GIT_COMMON_DIR"})


def _git_env() -> dict[str, str]:
    return {key: value for key, value in os.environ.items() if key not in _GIT_LOCATION_VARS}


class GitOperations:
    """Low-level read-only git queries for a single repository."""

    def __init__(self, repo_path: Path, git_dir: Path | None = None):
        self.repo_path = repo_path
        self.git_dir = git_dir

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        """Run a git command in the repository.

        Output is decoded with ``surrogateescape`` so paths that are not valid
        UTF-8 survive decoding and map back to the same bytes in ``Path``.
        """
        command = ["git", *args]
        try:
            result = subprocess.run(
                command,
                cwd=self.repo_path,
                capture_output=True,
                encoding="utf-8",
                errors="surrogateescape",
                env=_git_env(),
                check=False,
            )
        except OSError as e:
            raise SubprocessError(f"could not run git in {self.repo_path}: {e}") from e
        if check and result.returncode != 0:
            raise QueryError(command, result.returncode, result.stderr)
        return result

    def locate(self) -> tuple[Path, Path] | None:
        """Return (working tree root, git dir), or None outside a working tree."""
        result = self._run("rev-parse", "--show-toplevel", "--absolute-git-dir", check=False)
        if result.returncode != 0:
            return None
        lines = result.stdout.splitlines()
        if len(lines) != 2:
            return None
        return Path(lines[0]), Path(lines[1])

    def get_state(self) -> RepositoryState:
        """Infer the in-progress operation from marker files in the git dir."""
        git_dir = self.git_dir
        if git_dir is None:
            raise QueryError([], 0, f"{self.repo_path}: git dir unknown")

        def has(*parts: str) -> bool:
            return git_dir.joinpath(*parts).exists()

        if has("rebase-merge", "interactive"):
            return RepositoryState.REBASE_INTERACTIVE
        if has("rebase-merge"):
            return RepositoryState.REBASE_MERGE
        if has("rebase-apply", "rebasing"):
            return RepositoryState.REBASE
        if has("rebase-apply", "applying"):
            return RepositoryState.APPLY_MAILBOX
        if has("rebase-apply"):
            return RepositoryState.APPLY_MAILBOX_OR_REBASE
        if has("MERGE_HEAD"):
            return RepositoryState.MERGE
        if has("REVERT_HEAD"):
            if has("sequencer", "todo"):
                return RepositoryState.REVERT_SEQUENCE
            return RepositoryState.REVERT
        if has("CHERRY_PICK_HEAD"):
            if has("sequencer", "todo"):
                return RepositoryState.CHERRY_PICK_SEQUENCE
            return RepositoryState.CHERRY_PICK
        if has("BISECT_LOG"):
            return RepositoryState.BISECT
        return RepositoryState.CLEAN

    def get_status_entries(self) -> list[StatusEntry]:
        """List changed, unmerged and untracked paths, ignored files excluded.

        Uses 'git status --porcelain=v2 -z'. ``--no-optional-locks`` keeps the
        query from refreshing the index, so it never writes to the repository.
        """
        result = self._run(
            "--no-optional-locks",
            "status",
            "--porcelain=v2",
            "-z",
            "--untracked-files=all",
            "--ignored=no",
        )
        entries = []
        records = iter(result.stdout.split("\0"))
        for record in records:
            if not record or record.startswith("#"):
                continue
            if record.startswith("1 "):
                # 1 XY sub mH mI mW hH hI path
                fields = record.split(" ", 8)
                entries.append(StatusEntry(fields[1], fields[8]))
            elif record.startswith("2 "):
                # 2 XY sub mH mI mW hH hI Xscore path, original path follows
                fields = record.split(" ", 9)
                entries.append(StatusEntry(fields[1], fields[9]))
                next(records, None)
            elif record.startswith("u "):
                # u XY sub m1 m2 m3 mW h1 h2 h3 path
                fields = record.split(" ", 10)
                entries.append(StatusEntry(fields[1], fields[10]))
            elif record.startswith("? "):
                entries.append(StatusEntry("??", record[2:]))
        return entries

    def resolve_commit(self, rev: str) -> str | None:
        """Return the commit id ``rev`` points at, or None if it does not resolve."""
        result = self._run("rev-parse", "-q", "--verify", f"{rev}^{{commit}}", check=False)
        if result.returncode == 0:
            return result.stdout.strip()
        return None

    def get_head(self) -> HeadInfo:
        """Get the branch HEAD points at (None if detached) and its commit."""
        result = self._run("symbolic-ref", "-q", "HEAD", check=False)
        if result.returncode == 0:
            branch = result.stdout.strip()
        elif result.returncode == 1:
            branch = None
        else:
            raise QueryError(["git", "symbolic-ref", "-q", "HEAD"], result.returncode, result.stderr)
        return HeadInfo(branch=branch, oid=self.resolve_commit("HEAD"))

    def get_upstream(self, branch_ref: str) -> str | None:
        """Get the configured upstream tracking ref of a local branch."""
        result = self._run("for-each-ref", "--format=%(upstream)", branch_ref)
        return result.stdout.strip() or None

    def get_ahead_behind(self, local: str, upstream: str) -> tuple[int, int]:
        """Count commits only on ``local`` (ahead) and only on ``upstream`` (behind)."""
        result = self._run("rev-list", "--left-right", "--count", f"{local}...{upstream}")
        parts = result.stdout.split()
        if len(parts) != 2:
            raise QueryError(["git", "rev-list"], 0, f"unexpected output {result.stdout!r}")
        return int(parts[0]), int(parts[1])


# =============================================================================
# Repository
# =============================================================================


class GitRepository:
    """A discovered git working tree."""

    def __init__(self, path: Path, git_dir: Path):
        self.path = path
        self.name = path.name
        self.git_dir = git_dir
        self.ops = GitOperations(path, git_dir)

    def __repr__(self) -> str:
        return f"GitRepository({str(self.path)!r})"

    def _ahead_behind(self, head: HeadInfo) -> tuple[int, int]:
        if head.oid is None:
            logger.debug("%s: HEAD has no commits yet, skipping ahead/behind...", self.path)
            return 0, 0
        if not head.is_branch:
            logger.debug("%s: HEAD is not a branch, skipping ahead/behind...", self.path)
            return 0, 0

        upstream = self.ops.get_upstream(head.branch)
        if upstream is None:
            logger.debug(
                "%s: %s has no upstream, skipping ahead/behind...", self.path, head.branch
            )
            return 0, 0

        upstream_oid = self.ops.resolve_commit(upstream)
        if upstream_oid is None:
            logger.debug(
                "%s: upstream %s of %s is gone, skipping ahead/behind...",
                self.path,
                upstream,
                head.branch,
            )
            return 0, 0

        return self.ops.get_ahead_behind(head.oid, upstream_oid)

    def check(self) -> RepoCheckResult:
        """Collect state, uncommitted changes and ahead/behind into one verdict."""
        state = self.ops.get_state()
        statuses = self.ops.get_status_entries()
        for entry in statuses:
            logger.debug("%s: %s: status %s", self.path, entry.path, entry.code)

        ahead, behind = self._ahead_behind(self.ops.get_head())
        return RepoCheckResult(
            state=state,
            uncommitted_count=len(statuses),
            commits_ahead=ahead,
            commits_behind=behind,
        )


def discover_repository(path: Path | str) -> GitRepository:
    """Open the working tree ``path`` belongs to, searching upward."""
    path = Path(path)
    if not path.is_dir():
        raise DiscoveryError(f"{path}: not a directory")
    location = GitOperations(path).locate()
    if location is None:
        raise DiscoveryError(f"{path}: not a git working tree")
    toplevel, git_dir = location
    return GitRepository(toplevel, git_dir)


def discover_recursive(root_path: Path | str) -> list[GitRepository]:
    """Find every working tree under ``root_path`` without entering any of them.

    Directories are visited breadth-first in name order. Paths already seen
    (through symlinks) are not visited twice.
    """
    found: list[GitRepository] = []
    seen: set[Path] = set()
    pending = deque([Path(root_path)])

    while pending:
        candidate = pending.popleft()
        key = candidate.resolve()
        if key in seen:
            continue
        seen.add(key)

        try:
            repo = discover_repository(candidate)
        except DiscoveryError:
            pass
        except SubprocessError as e:
            raise TraversalError(f"{candidate}: cannot inspect directory: {e}") from e
        else:
            logger.debug("Found repository %s", repo.path)
            found.append(repo)
            continue

        try:
            children = sorted(candidate.iterdir())
        except OSError as e:
            raise TraversalError(f"{candidate}: cannot read directory: {e}") from e
        pending.extend(child for child in children if child.name != ".git" and child.is_dir())

    return found


# =============================================================================
# Tracked Entries
# =============================================================================


class TrackedEntry(Protocol):
    """What the scan, fix and refresh drivers need from an entry."""

    kind: ClassVar[str]

    @property
    def label(self) -> str: ...

    def resolve(self) -> Path: ...

    def identity(self) -> str: ...

    def evaluate(self) -> CheckResult: ...


@dataclass(frozen=True)
class RepoEntry:
    """A configured git directory, as written in the configuration."""

    path: str

    kind: ClassVar[str] = "git"

    @property
    def label(self) -> str:
        return self.path

    def resolve(self) -> Path:
        return Path(expand_path(self.path))

    def identity(self) -> str:
        """Canonical path, so spellings of the same directory compare equal."""
        return str(self.resolve().resolve())

    def open(self) -> GitRepository:
        return discover_repository(self.resolve())

    def evaluate(self) -> RepoCheckResult:
        return self.open().check()


@dataclass(frozen=True)
class CustomEntry:
    """A directory judged by user shell commands instead of git."""

    name: str
    path: str
    check_cmd: str = "true"
    refresh_cmd: str = "true"

    kind: ClassVar[str] = "custom"

    @property
    def label(self) -> str:
        return self.name

    def resolve(self) -> Path:
        return Path(expand_path(self.path))

    def identity(self) -> str:
        return self.name

    def _run_inside(self, command: str, runner: ShellRunner) -> int:
        directory = self.resolve()
        with working_directory(directory):
            return runner(command, cwd=directory)

    def check(self, runner: ShellRunner = run_in_shell) -> bool:
        """Run ``check_cmd`` inside the directory; exit status 0 means clean."""
        returncode = self._run_inside(self.check_cmd, runner)
        if returncode != 0:
            logger.debug("%s: check command exited with code %d", self.name, returncode)
        return returncode == 0

    def evaluate(self) -> CustomCheckResult:
        return CustomCheckResult(passed=self.check())

    def refresh(self, runner: ShellRunner = run_in_shell) -> OperationResult:
        """Run ``refresh_cmd`` inside the directory; a failing exit is only logged."""
        returncode = self._run_inside(self.refresh_cmd, runner)
        if returncode != 0:
            logger.warning(
                "%s: custom dir refresh command exited with code %d", self.path, returncode
            )
        return OperationResult(
            identity=self.name,
            path=self.resolve(),
            operation="refresh",
            returncode=returncode,
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": self.path,
            "check_cmd": self.check_cmd,
            "refresh_cmd": self.refresh_cmd,
        }


# =============================================================================
# Scan
# =============================================================================


@dataclass
class ScanRecord:
    """Evaluation of one entry during a scan."""

    entry: Any
    identity: str
    result: CheckResult

    @property
    def is_all_good(self) -> bool:
        return self.result.is_all_good()

    def to_dict(self) -> dict:
        return {
            "kind": self.entry.kind,
            "identity": self.identity,
            "path": self.entry.path,
            **self.result.to_dict(),
        }


@dataclass
class ScanSummary:
    """Counts over one scan."""

    total: int = 0
    clean: int = 0
    dirty: int = 0
    skipped: int = 0

    @classmethod
    def from_records(cls, records: list[ScanRecord], configured: int) -> ScanSummary:
        clean = sum(1 for r in records if r.is_all_good)
        return cls(
            total=configured,
            clean=clean,
            dirty=len(records) - clean,
            skipped=configured - len(records),
        )

    def to_dict(self) -> dict:
        return asdict(self)


def scan_entries(entries: Iterable[TrackedEntry], no_skip: bool = False) -> list[ScanRecord]:
    """Evaluate each entry in order; failures follow the skip-or-abort policy."""
    policy = SkipPolicy(no_skip)
    records = []
    for entry in entries:
        with policy.guard(entry.label):
            identity = entry.identity()
            logger.debug("Visiting %s dir %s", entry.kind, identity)
            records.append(ScanRecord(entry=entry, identity=identity, result=entry.evaluate()))
    return records


def collect_failing(entries: Iterable[TrackedEntry], no_skip: bool = False) -> list[ScanRecord]:
    """Like ``scan_entries`` but keeps only the dirty entries."""
    return [record for record in scan_entries(entries, no_skip) if not record.is_all_good]


# =============================================================================
# Fix/Retry Loop
# =============================================================================


class EntryState(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    RESOLVED = "resolved"


class Resolution(StrEnum):
    FIXED = "fixed"
    DECLINED = "declined"
    SKIPPED = "skipped"


@dataclass
class FixOutcome:
    """Progress of one entry through the fix loop."""

    identity: str
    state: EntryState = EntryState.PENDING
    resolution: Resolution | None = None
    attempts: int = 0
    last_result: CheckResult | None = None

    def resolve(self, resolution: Resolution) -> None:
        self.state = EntryState.RESOLVED
        self.resolution = resolution


class FixLoop:
    """Run a remediation command in each dirty entry until it is clean or the user gives up.

    The process working directory moves into each entry while its command
    runs and is restored once, after the whole batch.
    """

    def __init__(
        self,
        command: str,
        console: Console | None = None,
        *,
        no_skip: bool = False,
        confirm: Callable[[str], bool] = confirm,
        runner: ShellRunner = run_in_shell,
    ):
        self.command = command
        self.console = console or Console(soft_wrap=True, highlight=False)
        self.policy = SkipPolicy(no_skip)
        self.confirm = confirm
        self.runner = runner

    def run(self, records: list[ScanRecord]) -> list[FixOutcome]:
        """Visit failing entries in order and return how each one ended."""
        outcomes = [FixOutcome(identity=record.identity) for record in records]
        if not records:
            return outcomes

        total = len(records)
        self.console.print(f"Fixing {total} {records[0].entry.kind} dirs")

        with working_directory():
            for index, (record, outcome) in enumerate(zip(records, outcomes), start=1):
                with self.policy.guard(record.identity, "fixing"):
                    self._fix_one(index, total, record.entry, outcome)
                if outcome.state is not EntryState.RESOLVED:
                    outcome.resolve(Resolution.SKIPPED)
                self.console.print(f"{index}/{total}: Leaving {self._leaving_label(record)}")

        return outcomes

    def _fix_one(self, index: int, total: int, entry: Any, outcome: FixOutcome) -> None:
        directory = entry.resolve()
        outcome.state = EntryState.RUNNING

        while outcome.state is EntryState.RUNNING:
            change_directory(directory)
            self.console.print(f"{index}/{total}: Fixing {self._fixing_label(entry, directory)}")

            outcome.attempts += 1
            returncode = self.runner(self.command, cwd=directory)
            if returncode != 0:
                logger.warning("%s: command exited with code %d", directory, returncode)

            result = entry.evaluate()
            outcome.last_result = result
            if result.is_all_good():
                outcome.resolve(Resolution.FIXED)
            elif not self.confirm(
                f"{outcome.identity}: still failing ({', '.join(result.describe())}). Retry?"
            ):
                outcome.resolve(Resolution.DECLINED)

    @staticmethod
    def _fixing_label(entry: Any, directory: Path) -> str:
        match entry:
            case CustomEntry():
                return escape(
                    f"custom dir {entry.name!r} ({directory}, check_cmd: {entry.check_cmd!r})"
                )
            case _:
                return escape(f"git dir {directory}")

    @staticmethod
    def _leaving_label(record: ScanRecord) -> str:
        match record.entry:
            case CustomEntry():
                return escape(f"{record.entry.name!r} ({record.entry.path})")
            case _:
                return escape(record.identity)


# =============================================================================
# Refresh
# =============================================================================


def refresh_all(
    config: Config,
    no_skip: bool = False,
    console: Console | None = None,
    runner: ShellRunner = run_in_shell,
) -> list[OperationResult]:
    """Run the shared refresh command for every repository, then each custom refresh.

    Repositories are targeted through ``GIT_DIR``; the working directory does
    not move. Nothing is re-checked afterwards.
    """
    console = console or Console(soft_wrap=True, highlight=False)
    policy = SkipPolicy(no_skip)
    results: list[OperationResult] = []

    directories = resolve_paths(config.repo_paths, no_skip)
    for index, directory in enumerate(directories, start=1):
        console.print(f"[{index}/{len(directories)}] Refreshing git dir {escape(str(directory))}:")
        with policy.guard(str(directory), "opening the repo"):
            repo = discover_repository(directory)
            returncode = runner(config.refresh_cmd, env={"GIT_DIR": str(repo.git_dir)})
            if returncode != 0:
                logger.warning("%s: refresh command exited with code %d", directory, returncode)
            results.append(
                OperationResult(
                    identity=str(directory.resolve()),
                    path=repo.path,
                    operation="refresh",
                    returncode=returncode,
                )
            )

    for index, entry in enumerate(config.custom, start=1):
        console.print(
            escape(
                f"[{index}/{len(config.custom)}] Refreshing custom dir {entry.name!r} "
                f"({entry.path}, refresh_cmd: {entry.refresh_cmd!r}):"
            )
        )
        with policy.guard(entry.name, "refreshing"):
            results.append(entry.refresh(runner=runner))

    return results
