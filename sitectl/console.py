"""
Console management for sitectl.

Provides utility functions and classes for managing console output,
error handling, and formatting for sitectl commands.
"""

from collections.abc import Iterable
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table


class ConsoleManager:
    """Manages console output and error handling for sitectl."""

    def __init__(self) -> None:
        """Initialize the console manager with stdout and stderr consoles."""
        self.console = Console(soft_wrap=True)
        self.error_console = Console(stderr=True, soft_wrap=True)

    def print(
        self,
        message: str,
        markup: bool = True,
        highlight: bool = False,
        end: str = "\n",
    ) -> None:
        """Print a message to the standard console."""
        self.console.print(message, markup=markup, highlight=highlight, end=end)

    def print_raw(self, message: str, end: str = "\n") -> None:
        """Print raw output without markup or highlighting."""
        self.console.print(
            message, markup=False, highlight=False, end=end, soft_wrap=True
        )

    def safe_print(self, console: Console, renderable: Any) -> None:
        """Print a rich renderable (table, panel) to the given console."""
        console.print(renderable)

    def print_error(self, message: str, end: str = "\n") -> None:
        """Print an error message to the error console."""
        self.error_console.print(
            f"[bold red]Error:[/bold red] {escape(message)}", end=end, highlight=False
        )

    def print_warning(self, message: str, end: str = "\n") -> None:
        """Print a warning message to the error console."""
        self.error_console.print(
            f"[yellow]Warning:[/yellow] {escape(message)}", end=end, highlight=False
        )

    def print_note(
        self, message: str, error: Exception | None = None, end: str = "\n"
    ) -> None:
        """Print a note message to the error console, optionally with an error."""
        if error:
            self.error_console.print(
                f"[yellow]Note:[/yellow] {escape(message)}: "
                f"[red]{escape(str(error))}[/red]",
                end=end,
            )
        else:
            self.error_console.print(
                f"[yellow]Note:[/yellow] {escape(message)}", end=end
            )

    def print_success(self, message: str) -> None:
        """Print a success message."""
        self.console.print(f"[green]✓[/] {escape(message)}", highlight=False)

    def print_processing(self, message: str) -> None:
        """Print a progress message for a long-running step."""
        self.console.print(f"[blue]ℹ[/blue] {escape(message)}", highlight=False)

    def print_bullets(self, lines: Iterable[str]) -> None:
        """Print an indented list of lines."""
        for line in lines:
            self.console.print(
                f"  - {line}", markup=False, highlight=False, soft_wrap=True
            )

    def print_config_table(self, config_data: dict[str, Any]) -> None:
        """Print a table showing configuration data."""
        table = Table(
            title="sitectl Configuration", show_header=True, title_justify="center"
        )
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in _flatten(config_data):
            table.add_row(key, str(value))

        self.safe_print(self.console, table)

    def print_site_listing(self, rows: list[dict[str, str]]) -> None:
        """Print one block per site: domain, status line, then optional paths."""
        for row in rows:
            color = "yellow" if row.get("disabled") else "green"
            self.console.print(f"[{color}]●[/{color}] {escape(row['domain'])}")
            status = f"Status: {row['status']}"
            if row.get("ssl"):
                status += f" | SSL: {row['ssl']}"
            self.print_raw(f"   {status}")
            if row.get("config"):
                self.print_raw(f"   Config: {row['config']}")
            if row.get("files"):
                self.print_raw(f"   Files: {row['files']}")
            self.print_raw("")


def _flatten(data: dict[str, Any], prefix: str = "") -> list[tuple[str, Any]]:
    items: list[tuple[str, Any]] = []
    for key, value in data.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            items.extend(_flatten(value, path))
        else:
            items.append((path, value))
    return items


# Create global instance for easy import
console_manager = ConsoleManager()
