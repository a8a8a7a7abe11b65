"""Terminal output using Rich."""

from typing import Any

import yaml
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table


class OutputFormatter:
    """Status lines, panels and tables for CLI commands."""

    def __init__(self, color: bool = True, quiet: bool = False):
        self.color = color
        self.quiet = quiet
        self._console = Console(no_color=not color, highlight=False)
        self._error_console = Console(stderr=True, no_color=not color, highlight=False)

    def print(self, message: str, style: str | None = None) -> None:
        """Print a message to stdout."""
        if self.quiet:
            return
        self._console.print(message, style=style)

    def print_error(self, message: str) -> None:
        """Print an error message to stderr. Never silenced by quiet."""
        self._error_console.print(f"[red][ERR ][/red]  {message}")

    def print_warning(self, message: str) -> None:
        if self.quiet:
            return
        self._console.print(f"[yellow][WARN][/yellow]  {message}")

    def print_success(self, message: str) -> None:
        if self.quiet:
            return
        self._console.print(f"[green][ OK ][/green]  {message}")

    def print_info(self, message: str) -> None:
        if self.quiet:
            return
        self._console.print(f"[cyan][INFO][/cyan]  {message}")

    def print_panel(self, content: str, title: str | None = None, style: str = "cyan") -> None:
        """Print content in a panel."""
        if self.quiet:
            return
        self._console.print(Panel(content, title=title, border_style=style, expand=False))

    def print_table(
        self,
        rows: list[dict[str, Any]],
        headers: list[str] | None = None,
        title: str | None = None,
    ) -> None:
        """Print a list of records as a table.

        Args:
            rows: records to display, one per row
            headers: column order; defaults to the keys of the first row
            title: optional table title
        """
        if self.quiet:
            return
        if not rows:
            self._console.print("[dim]No data to display[/dim]")
            return

        if headers is None:
            headers = list(rows[0].keys())

        table = Table(title=title, show_header=True, header_style="bold cyan")
        for header in headers:
            table.add_column(header)

        for row in rows:
            table.add_row(*[str(row.get(h, "")) for h in headers])

        self._console.print(table)

    def print_yaml(self, data: Any) -> None:
        """Print data as YAML."""
        if self.quiet:
            return
        yaml_str = yaml.dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False)
        if self.color:
            self._console.print(Syntax(yaml_str, "yaml", theme="monokai"))
        else:
            print(yaml_str, end="")


def format_duration(seconds: float) -> str:
    """Format seconds to human-readable duration."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"
