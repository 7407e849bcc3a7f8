"""
CLI utility helpers: consoles, logging setup, dict rendering.
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.table import Table

from agentbox.core.config import ExecutorSettings
from agentbox.core.logging import configure_logging

console = Console()
err_console = Console(stderr=True)


def setup_logging(settings: ExecutorSettings) -> None:
    """Configure structlog from settings for a CLI command."""
    configure_logging(
        level=settings.log_level,
        json_format=settings.json_logs,
        service=settings.service_name,
    )


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a flat dict as a two-column Rich table."""
    table = Table(title=title or None, show_header=False, pad_edge=False)
    table.add_column("Key", style="bold")
    table.add_column("Value", overflow="fold")
    for key, value in data.items():
        if isinstance(value, list | tuple):
            value = ", ".join(str(v) for v in value) or "-"
        table.add_row(str(key), str(value))
    console.print(table)
