"""Command-line interface for cign."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from . import interactive
from ._version import __version__
from .config import (
    DEFAULT_CONFIG_PATH,
    Config,
    load_or_create_config,
    resolve_config_path,
    save_config,
)
from .core import (
    CustomEntry,
    FixLoop,
    ScanSummary,
    collect_failing,
    discover_recursive,
    discover_repository,
    expand_path,
    refresh_all,
    scan_entries,
)
from .exceptions import CignError, ConfirmationDeclined, DiscoveryError
from .formatters import OutputFormatter

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="cign",
    help="cign = Can I Go Now? A friendly reminder for your unpushed code.",
    add_completion=False,
)


@dataclass
class CliState:
    config_path: str
    verbose: bool = False
    no_skip: bool = False

    def config_file(self) -> Path:
        return resolve_config_path(self.config_path)

    def load(self) -> Config:
        return load_or_create_config(self.config_file())

    def save(self, config: Config) -> None:
        save_config(config, self.config_file())


def setup_logging() -> None:
    """Log to stderr through rich; ``CIGN_LOG`` overrides the INFO default."""
    level_name = os.environ.get("CIGN_LOG", "INFO").upper()
    level = logging.getLevelNamesMapping().get(level_name, logging.INFO)

    package_logger = logging.getLogger("cign")
    package_logger.setLevel(level)
    if not package_logger.handlers:
        handler = RichHandler(
            console=Console(stderr=True),
            show_time=False,
            show_path=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        package_logger.addHandler(handler)


def get_console_and_formatter(json_output: bool = False) -> tuple[Console, OutputFormatter]:
    """Create console and formatter."""
    console = Console(soft_wrap=True, highlight=False)
    formatter = OutputFormatter(console, use_json=json_output)
    return console, formatter


@contextmanager
def reporting_errors() -> Iterator[None]:
    """Turn a CignError into a red message and exit status 1."""
    try:
        yield
    except CignError as e:
        Console(stderr=True, soft_wrap=True, highlight=False).print(
            f"[red]Error: {escape(str(e))}[/]"
        )
        raise typer.Exit(1) from e


def default_fix_cmd() -> str:
    return os.environ.get("SHELL") or "sh"


def canonical_directory(raw: str) -> Path:
    """Expand and canonicalize ``raw``; it must be an existing directory."""
    path = Path(expand_path(raw))
    try:
        path = path.resolve(strict=True)
    except OSError as e:
        raise DiscoveryError(f"{raw}: {e}") from e
    if not path.is_dir():
        raise DiscoveryError(f"{raw} is not a directory")
    return path


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"cign {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: str = typer.Option(
        DEFAULT_CONFIG_PATH,
        "--config",
        "-c",
        help="Path to cign configuration. Created if not found",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Print more info to stdout",
    ),
    no_skip: bool = typer.Option(
        False,
        "--no-skip",
        "-s",
        help="Fail on errors instead of skipping when possible",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output the scan as JSON",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """Check every configured directory; exit 1 if any has unfinished business."""
    setup_logging()
    ctx.obj = CliState(config_path=config, verbose=verbose, no_skip=no_skip)

    if ctx.invoked_subcommand is None:
        scan(ctx.obj, json_output)


def scan(state: CliState, json_output: bool = False) -> None:
    console, formatter = get_console_and_formatter(json_output)

    with reporting_errors():
        cfg = state.load()
        entries = cfg.entries()
        records = scan_entries(entries, no_skip=state.no_skip)

    summary = ScanSummary.from_records(records, configured=len(entries))
    formatter.print_scan(records, summary, verbose=state.verbose)

    if summary.dirty > 0:
        raise typer.Exit(1)
    if not json_output:
        Console(stderr=True).print("OK")


@app.command()
def add(
    ctx: typer.Context,
    directory: str = typer.Argument(".", metavar="DIR", help="Directory to add"),
    recursive: bool = typer.Option(
        False,
        "--recursive",
        "-r",
        help="Add every git repository found under DIR",
    ),
):
    """Add the specified git repo to the config."""
    state: CliState = ctx.obj
    console, _ = get_console_and_formatter()

    with reporting_errors():
        cfg = state.load()
        target = canonical_directory(directory)

        if recursive:
            paths = [str(repo.path) for repo in discover_recursive(target)]
            if not paths:
                raise DiscoveryError(f"No git repositories found under {target}")
        else:
            try:
                discover_repository(target)
            except DiscoveryError as e:
                raise DiscoveryError(f"{directory} is not a git repo dir") from e
            paths = [str(target)]

        for path in paths:
            cfg.git.add(path)
            console.print(f"Adding {escape(path)}")
        state.save(cfg)


@app.command(name="add-custom")
def add_custom(
    ctx: typer.Context,
    directory: str = typer.Argument(".", metavar="DIR", help="Custom directory to add"),
):
    """Prompt for a new custom directory entry."""
    state: CliState = ctx.obj
    console, _ = get_console_and_formatter()

    with reporting_errors():
        cfg = state.load()
        path = str(canonical_directory(directory))

        default_name = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        while True:
            name = interactive.text_input("Name", default=default_name)
            if cfg.find_custom(name) is None:
                break
            console.print(f"[yellow]{escape(name)} is taken[/]")

        check_cmd = interactive.text_input("Custom check command", default="true")
        refresh_cmd = interactive.text_input("Custom refresh command", default="true")

        console.print(f'Adding custom dir {escape(path)} with name "{escape(name)}"')
        cfg.add_custom(
            CustomEntry(name=name, path=path, check_cmd=check_cmd, refresh_cmd=refresh_cmd)
        )
        state.save(cfg)


@app.command(name="del")
def delete(
    ctx: typer.Context,
    directory: str = typer.Argument(".", metavar="DIR", help="Directory to remove"),
):
    """Remove the specified git repo from the config."""
    state: CliState = ctx.obj
    console, _ = get_console_and_formatter()

    with reporting_errors():
        cfg = state.load()

        key = directory
        if key not in cfg.git:
            key = os.path.realpath(expand_path(directory))
        if key not in cfg.git:
            raise CignError(f"No directory named {directory} in config")

        if not interactive.confirm(f"Remove {key}?"):
            raise ConfirmationDeclined("Deletion not confirmed, bailing out.")

        cfg.git.remove(key)
        console.print(f"Removing {escape(key)}")
        state.save(cfg)


@app.command(name="del-custom")
def delete_custom(
    ctx: typer.Context,
    name: str = typer.Argument(None, help="The custom entry name to delete"),
):
    """Remove a custom directory from the config."""
    state: CliState = ctx.obj
    console, _ = get_console_and_formatter()

    with reporting_errors():
        cfg = state.load()
        if not cfg.custom:
            raise CignError("No custom entries in config")

        if name is None:
            name = interactive.choose("Choose custom entry to delete", sorted(cfg.custom_names()))
        entry = cfg.find_custom(name)
        if entry is None:
            raise CignError(f"No custom entry named {name} in config")

        if not interactive.confirm(f"Remove {name} ({entry.path})?"):
            raise ConfirmationDeclined("Deletion not confirmed, bailing out.")

        cfg.remove_custom(name)
        console.print(f"Removing {escape(name)} ({escape(entry.path)})")
        state.save(cfg)


@app.command()
def fix(
    ctx: typer.Context,
    cmd: str = typer.Argument(
        None,
        help="Command to run in each failing directory (default: $SHELL)",
    ),
):
    """Visit all failing directories one-by-one to fix them."""
    state: CliState = ctx.obj
    console, _ = get_console_and_formatter()
    command = cmd or default_fix_cmd()

    with reporting_errors():
        cfg = state.load()
        loop = FixLoop(command, console, no_skip=state.no_skip)
        loop.run(collect_failing(cfg.repo_entries(), no_skip=state.no_skip))
        loop.run(collect_failing(cfg.custom, no_skip=state.no_skip))


@app.command()
def init(ctx: typer.Context):
    """Initialize a default config."""
    state: CliState = ctx.obj
    console, _ = get_console_and_formatter()

    with reporting_errors():
        path = state.config_file()
        if path.exists():
            console.print("Config exists")
            raise typer.Exit(1)
        save_config(Config(), path)
        console.print(f"Initialized {escape(str(path))}")


@app.command(name="list")
def list_entries(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
):
    """Show all configured directories."""
    state: CliState = ctx.obj
    _, formatter = get_console_and_formatter(json_output)

    with reporting_errors():
        cfg = state.load()
    formatter.print_entry_list(cfg)


@app.command()
def refresh(ctx: typer.Context):
    """Run the refresh command for every repo and custom directory."""
    state: CliState = ctx.obj
    console, formatter = get_console_and_formatter()

    with reporting_errors():
        cfg = state.load()
        results = refresh_all(cfg, no_skip=state.no_skip, console=console)
    formatter.print_operation_results(results, "refresh")


# Short aliases, hidden from help.
for _alias, _command in (
    ("a", add),
    ("ac", add_custom),
    ("d", delete),
    ("dc", delete_custom),
    ("f", fix),
    ("i", init),
    ("l", list_entries),
    ("r", refresh),
):
    app.command(name=_alias, hidden=True)(_command)
