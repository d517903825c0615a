"""Output formatting for the PyGitSync CLI."""

import json
from typing import Any, Optional

from rich.console import Console
from rich.table import Table

from .models import ActionKind, ChangeAction, SyncResult

ACTION_SYMBOLS = {
    ActionKind.UPLOAD_CREATE: "↑ +",
    ActionKind.UPLOAD_UPDATE: "↑ ~",
    ActionKind.UPLOAD_DELETE: "↑ ✗",
    ActionKind.DOWNLOAD_CREATE: "↓ +",
    ActionKind.DOWNLOAD_UPDATE: "↓ ~",
    ActionKind.DOWNLOAD_DELETE: "↓ ✗",
    ActionKind.CONFLICT_SKIP: "⚠",
}


class OutputFormatter:
    """Formats CLI output as rich text or JSON."""

    def __init__(
        self,
        json_output: bool = False,
        quiet: bool = False,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
    ):
        """Initialize output formatter.

        Args:
            json_output: Emit machine-readable JSON instead of text
            quiet: Suppress non-essential output
            console: Console for regular output
            err_console: Console for errors and warnings
        """
        self.json_output = json_output
        self.quiet = quiet
        self.console = console or Console()
        self.err_console = err_console or Console(stderr=True)

    def print(self, message: str = "") -> None:
        if not self.quiet and not self.json_output:
            self.console.print(message)

    def info(self, message: str) -> None:
        if not self.quiet and not self.json_output:
            self.console.print(message)

    def success(self, message: str) -> None:
        if not self.quiet and not self.json_output:
            self.console.print(f"[green]{message}[/green]")

    def warning(self, message: str) -> None:
        if not self.json_output:
            self.err_console.print(f"[yellow]{message}[/yellow]")

    def error(self, message: str) -> None:
        self.err_console.print(f"[red]Error:[/red] {message}")

    def output_json(self, data: Any) -> None:
        """Print data as JSON (always, regardless of quiet)."""
        self.console.print_json(json.dumps(data, default=str))

    def print_summary(self, title: str, items: list[tuple[str, str]]) -> None:
        """Print a two-column summary table."""
        if self.quiet or self.json_output:
            return
        table = Table(title=title, show_header=False)
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in items:
            table.add_row(key, value)
        self.console.print(table)

    def print_actions(self, actions: list[ChangeAction]) -> None:
        """Print a planned action list."""
        if self.json_output:
            self.output_json(
                [
                    {
                        "action": a.kind.value,
                        "path": a.path,
                        "resolution": a.resolution.value if a.resolution else None,
                        "reason": a.reason,
                    }
                    for a in actions
                ]
            )
            return
        if not actions:
            self.success("No changes needed - everything is in sync!")
            return
        for action in actions:
            line = f"  {ACTION_SYMBOLS[action.kind]} {action.path}"
            if action.is_conflict:
                self.warning(f"{line}: {action.reason}")
            else:
                self.info(line)

    def print_result(self, operation: str, result: SyncResult) -> None:
        """Print the outcome of a push, pull or sync."""
        if self.json_output:
            self.output_json(result.to_dict())
            return

        for path in result.conflicts:
            self.warning(f"Conflict: {path}")
        for failure in result.failures:
            self.warning(f"Failed: {failure.path}: {failure.message}")
        for skipped in result.skipped:
            self.warning(f"Skipped: {skipped.path} ({skipped.message})")

        if not result.changed and not result.conflicts:
            self.success("No changes needed - everything is in sync!")
            return

        items = [
            ("Pushed", str(result.pushed)),
            ("Pulled", str(result.pulled)),
            ("Conflicts", str(len(result.conflicts))),
        ]
        if result.failures:
            items.append(("Failed", str(len(result.failures))))
        if result.commit_sha:
            items.append(("Commit", result.commit_sha[:7]))
        self.print_summary(f"{operation.capitalize()} Complete", items)
