"""Output formatters for console and JSON display."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape

if TYPE_CHECKING:
    from .config import Config
    from .core import OperationResult, ScanRecord, ScanSummary


class OutputFormatter:
    """Format output for console or JSON."""

    def __init__(self, console: Console, use_json: bool = False):
        self.console = console
        self.use_json = use_json

    def _print_json(self, data: dict) -> None:
        self.console.print(json.dumps(data, indent=2), markup=False)

    def print_scan(self, records: list[ScanRecord], summary: ScanSummary, verbose: bool = False):
        """Print one line per dirty entry (every entry when verbose)."""
        if self.use_json:
            self._print_json(
                {
                    "entries": [record.to_dict() for record in records],
                    "summary": summary.to_dict(),
                }
            )
            return

        for record in records:
            if record.is_all_good and not verbose:
                continue
            facts = " | ".join(record.result.describe())
            self.console.print(f"{escape(record.identity)}: {facts}")

        if verbose:
            self._print_summary(summary)

    def _print_summary(self, summary: ScanSummary):
        parts = [f"[bold]Total:[/] {summary.total}"]
        if summary.clean > 0:
            parts.append(f"[green]✓ Clean:[/] {summary.clean}")
        if summary.dirty > 0:
            parts.append(f"[yellow]✎ Dirty:[/] {summary.dirty}")
        if summary.skipped > 0:
            parts.append(f"[red]✗ Skipped:[/] {summary.skipped}")
        self.console.print(" | ".join(parts))

    def print_entry_list(self, config: Config):
        """Print repository paths, then custom entries as ``name (path)``."""
        if self.use_json:
            self._print_json(
                {
                    "git": config.repo_paths,
                    "custom": [entry.to_dict() for entry in config.custom],
                }
            )
            return

        for path in config.repo_paths:
            self.console.print(path, markup=False)
        for entry in config.custom:
            self.console.print(f"{entry.name} ({entry.path})", markup=False)

    def print_operation_results(self, results: list[OperationResult], operation: str):
        """Summarize refresh results."""
        if self.use_json:
            self._print_json({"operation": operation, "results": [r.to_dict() for r in results]})
            return

        failed = [r for r in results if not r.success]
        if failed:
            self.console.print(
                f"[yellow]{operation.capitalize()}ed {len(results) - len(failed)}/{len(results)}[/]"
            )
        else:
            self.console.print(f"[green]{operation.capitalize()}ed {len(results)}/{len(results)}[/]")
