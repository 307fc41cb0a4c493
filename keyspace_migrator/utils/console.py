"""
Rich console utilities for dual-mode CLI output.

Human-friendly output for operators and structured JSON for automation.
All output functions adapt to the global output_mode setting.

This module provides:
- OutputMode: Output format (text/json) and JSON buffering
- spinner(): Context manager showing progress in human mode
- success(), error(), warning(), info(): Status messages
- print_history_table(), print_pending_table(), print_migration_summary()

Human Mode (--format text):
    - Rich spinners and colored tables
    - ANSI colors and Unicode symbols

Agent Mode (--format json):
    - One JSON document on stdout per command
    - No ANSI codes or spinners

Examples:
    >>> output_mode.format = "json"
    >>> success("Keyspace up to date")  # Buffers to JSON
    >>> output_mode.flush_json()        # Outputs JSON to stdout
"""

from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

if TYPE_CHECKING:
    from keyspace_migrator.models import Migration, MigrationRecord
    from keyspace_migrator.task import MigrationResult


class OutputMode:
    """
    Output mode configuration for the CLI.

    Attributes:
        format: "text" (human) or "json" (agent)
        _json_buffer: Data accumulated in agent mode until flush_json()
    """

    FORMATS = ("text", "json")

    def __init__(self, format_type: str = "text"):
        if format_type not in self.FORMATS:
            raise ValueError(f"Invalid format: {format_type}. Must be 'text' or 'json'")

        self.format = format_type
        self._json_buffer: dict[str, Any] = {}

    def is_human(self) -> bool:
        return self.format == "text"

    def is_agent(self) -> bool:
        return self.format == "json"

    def add_json(self, key: str, value: Any) -> None:
        """Add key-value pair to the JSON buffer (agent mode)."""
        self._json_buffer[key] = value

    def flush_json(self) -> None:
        """
        Write buffered JSON to stdout and clear the buffer.

        No-op in human mode or when nothing was buffered.
        """
        if self.is_agent() and self._json_buffer:
            json.dump(self._json_buffer, sys.stdout, indent=2, default=str)
            sys.stdout.write("\n")
            sys.stdout.flush()
        self._json_buffer.clear()


# Global output mode instance (set by CLI flags)
output_mode = OutputMode()

console = Console()  # stdout
console_err = Console(stderr=True)  # stderr


@contextmanager
def spinner(message: str):
    """Show a Rich spinner with message in human mode; silent otherwise."""
    if output_mode.is_human():
        with console.status(f"[bold blue]{message}", spinner="dots") as status:
            yield status
    else:
        yield None


def success(message: str) -> None:
    if output_mode.is_human():
        console.print(f"[green]✓[/green] {escape(message)}")
    elif output_mode.is_agent():
        output_mode.add_json("status", "success")
        output_mode.add_json("message", message)


def error(message: str) -> None:
    """Print an error to stderr (human) or buffer it (agent)."""
    if output_mode.is_human():
        console_err.print(f"[red]✗[/red] {escape(message)}", style="red")
    elif output_mode.is_agent():
        output_mode.add_json("status", "error")
        output_mode.add_json("error", message)


def warning(message: str) -> None:
    if output_mode.is_human():
        console.print(f"[yellow]⚠[/yellow] {escape(message)}", style="yellow")
    elif output_mode.is_agent():
        output_mode.add_json("warning", message)


def info(message: str) -> None:
    """Print an informational line in human mode; silent for agents."""
    if output_mode.is_human():
        console.print(f"[blue]ℹ[/blue] {escape(message)}")


def print_history_table(records: list[MigrationRecord]) -> None:
    """
    Print the migration log.

    Human mode: Rich table, one row per attempt
    Agent mode: Buffered as a "history" array
    """
    if output_mode.is_agent():
        output_mode.add_json(
            "history",
            [
                {
                    "version": r.version,
                    "script_name": r.script_name,
                    "applied_successfully": r.applied_successfully,
                    "executed_at": r.executed_at.isoformat(),
                }
                for r in records
            ],
        )
        return

    if not records:
        info("No migrations have been recorded yet")
        return

    table = Table(title="Migration History", box=box.ROUNDED)
    table.add_column("Version", justify="right", style="cyan")
    table.add_column("Script", style="magenta")
    table.add_column("Executed At (UTC)")
    table.add_column("Status", justify="center")

    for record in records:
        status = (
            "[green]applied[/green]" if record.applied_successfully else "[red]failed[/red]"
        )
        table.add_row(
            str(record.version),
            record.script_name,
            record.executed_at.strftime("%Y-%m-%d %H:%M:%S"),
            status,
        )

    console.print(table)


def print_pending_table(
    migrations: list[Migration],
    statement_counts: dict[int, int] | None = None,
    json_key: str = "migrations",
) -> None:
    """Print migrations with optional per-script statement counts."""
    if output_mode.is_agent():
        output_mode.add_json(
            json_key,
            [
                {
                    "version": m.version,
                    "script_name": m.script_name,
                    **(
                        {"statements": statement_counts[m.version]}
                        if statement_counts is not None
                        else {}
                    ),
                }
                for m in migrations
            ],
        )
        return

    if not migrations:
        return

    table = Table(box=box.ROUNDED)
    table.add_column("Version", justify="right", style="cyan")
    table.add_column("Script", style="magenta")
    if statement_counts is not None:
        table.add_column("Statements", justify="right")

    for migration in migrations:
        row = [str(migration.version), migration.script_name]
        if statement_counts is not None:
            row.append(str(statement_counts[migration.version]))
        table.add_row(*row)

    console.print(table)


def print_migration_summary(result: MigrationResult) -> None:
    """Summarize a finished migrate() call."""
    if output_mode.is_agent():
        output_mode.add_json("outcome", result.outcome.value)
        output_mode.add_json("starting_version", result.starting_version)
        output_mode.add_json("final_version", result.final_version)
        output_mode.add_json("applied", [m.script_name for m in result.applied])
        output_mode.add_json(
            "failed",
            [
                {
                    "script_name": f.migration.script_name,
                    "statement": f.error.statement,
                    "cause": str(f.error.cause),
                }
                for f in result.failed
            ],
        )
        return

    for migration in result.applied:
        console.print(f"  [green]✓[/green] {escape(migration.script_name)}")
    for failed in result.failed:
        console_err.print(
            f"  [red]✗[/red] {escape(failed.migration.script_name)}: "
            f"{escape(str(failed.error.cause))}"
        )
