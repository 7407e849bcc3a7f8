"""agentbox command-line interface (typer + rich)."""

from agentbox.cli.app import app

__all__ = ["app"]
