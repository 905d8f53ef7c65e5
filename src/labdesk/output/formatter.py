"""Dual-mode output — Rich for humans, JSON for agents."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Human output goes to stdout; in JSON mode, human messages go to stderr
_console = Console()
_err_console = Console(stderr=True)

STATUS_STYLES = {
    "Order Created": "dim",
    "Sample Collection": "blue",
    "In Progress": "yellow",
    "Pending Approval": "magenta",
    "Completed": "green",
    "Delivered": "bold green",
    "Not started": "dim",
    "In progress": "yellow",
    "Complete": "cyan",
    "Verified": "bold green",
}

FLAG_STYLES = {
    "High": "red",
    "Low": "blue",
    "Critical": "bold red",
    "Normal": "green",
}


class OutputFormatter:
    """Routes output to Rich (human) or JSON (agent) depending on mode."""

    def __init__(self, json_mode: bool = False, date_format: str = "%b %d, %Y") -> None:
        self.json_mode = json_mode
        self.date_format = date_format

    # ── JSON output ──────────────────────────────────────────────

    def json(self, data: Any, status: str = "success") -> None:
        """Print structured JSON to stdout."""
        envelope = {"status": status, "data": data}
        print(json.dumps(envelope, indent=2, default=str))

    def json_error(self, message: str, code: int = 1) -> None:
        """Print a JSON error envelope to stdout."""
        envelope = {"status": "error", "error": {"message": message, "code": code}}
        print(json.dumps(envelope, indent=2))

    # ── Human output ─────────────────────────────────────────────

    def print(self, message: str = "", **kwargs: Any) -> None:
        """Print a message, routing to stderr in JSON mode."""
        console = _err_console if self.json_mode else _console
        console.print(message, **kwargs)

    def success(self, message: str) -> None:
        if self.json_mode:
            return
        _console.print(f"[green]✓[/green] {message}")

    def warning(self, message: str) -> None:
        console = _err_console if self.json_mode else _console
        console.print(f"[yellow]![/yellow] {message}")

    def error(self, message: str) -> None:
        console = _err_console if self.json_mode else _console
        console.print(f"[red]✗[/red] {message}")

    def info(self, message: str) -> None:
        if self.json_mode:
            return
        _console.print(f"[dim]ℹ[/dim] {message}")

    def table(
        self,
        title: str,
        columns: list[tuple[str, str]],
        rows: list[list[str]],
        data_for_json: list[dict[str, Any]] | None = None,
    ) -> None:
        """Print a table (Rich for humans, JSON for agents).

        columns: list of (header, style) tuples
        rows: list of row data (strings)
        data_for_json: if provided, used as the JSON payload instead of rows
        """
        if self.json_mode:
            self.json(
                data_for_json
                if data_for_json is not None
                else [dict(zip([c[0] for c in columns], r)) for r in rows]
            )
            return

        table = Table(title=title, show_header=True, header_style="bold cyan")
        for header, style in columns:
            table.add_column(header, style=style)
        for row in rows:
            table.add_row(*row)
        _console.print(table)

    def panel(self, content: str, title: str = "", border_style: str = "blue") -> None:
        if self.json_mode:
            return
        _console.print(Panel(content, title=title, border_style=border_style))

    def format_date(self, date_str: str | None) -> str:
        return format_date(date_str, self.date_format)


def format_date(date_str: str | None, fmt: str = "%b %d, %Y") -> str:
    """Format an ISO date string for display."""
    if not date_str:
        return "—"
    try:
        return datetime.fromisoformat(date_str).strftime(fmt)
    except (ValueError, TypeError):
        return date_str


def styled(value: str | None, styles: dict[str, str]) -> str:
    """Wrap a status or flag name in its Rich markup."""
    if not value:
        return "—"
    style = styles.get(value)
    return f"[{style}]{value}[/{style}]" if style else value


def progress_bar(percent: int, width: int = 20) -> str:
    """Render a percentage as a fixed-width text bar."""
    percent = max(0, min(100, percent))
    filled = round(width * percent / 100)
    return f"[green]{'█' * filled}[/green][dim]{'░' * (width - filled)}[/dim] {percent:3d}%"
