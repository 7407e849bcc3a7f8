"""
CLI: ``agentbox config`` — configuration inspection.
"""

from __future__ import annotations

import typer

from agentbox.cli.utils import console, print_dict

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show_config(
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json, env"),
) -> None:
    """Show the effective executor settings."""
    from agentbox.core.config import get_settings

    settings = get_settings()

    if format == "json":
        console.print_json(settings.model_dump_json())
        return

    if format == "env":
        for key, value in sorted(settings.model_dump().items()):
            console.print(f"AGENTBOX_{key.upper()}={value}", highlight=False)
        return

    print_dict(settings.model_dump(), title="agentbox settings")
