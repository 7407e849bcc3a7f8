"""
Root Typer application for the agentbox CLI.

``worker`` and ``config`` are sub-apps; ``sweep`` and ``run-task`` are
top-level commands. ``run-task`` is the command the execution container
runs, so it must work without Redis or Docker.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from typer import Typer

from agentbox.cli.utils import console, err_console, print_dict, setup_logging

app = Typer(
    name="agentbox",
    help="agentbox — run queued tasks in bounded, isolated containers.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from agentbox import __version__

        typer.echo(f"agentbox {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """agentbox CLI — worker, sweeper, configuration and task runner."""


# ── Sub-command registration ─────────────────────────────────────────────

from agentbox.cli.config import app as config_app  # noqa: E402
from agentbox.cli.worker import app as worker_app  # noqa: E402

app.add_typer(worker_app, name="worker", help="Task executor worker.")
app.add_typer(config_app, name="config", help="Configuration inspection.")


# ── Top-level commands ───────────────────────────────────────────────────


@app.command("sweep")
def sweep(
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
) -> None:
    """Run one cleanup sweep: remove labelled containers past retention."""
    from agentbox.core.config import get_settings
    from agentbox.core.errors import ContainerRuntimeError
    from agentbox.execution.runtimes import DockerCLIRuntime
    from agentbox.execution.sweeper import CleanupSweeper
    from agentbox.execution.workspace import TaskWorkspace

    settings = get_settings()
    setup_logging(settings)
    try:
        runtime = DockerCLIRuntime(
            settings.docker_binary,
            command_timeout=settings.docker_command_timeout_seconds,
        )
    except ContainerRuntimeError as exc:
        err_console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(code=1)

    sweeper = CleanupSweeper(runtime, settings, workspace=TaskWorkspace(settings.workspace_dir))
    report = asyncio.run(sweeper.sweep_once())

    if as_json:
        console.print_json(data=report.to_dict())
    else:
        print_dict(report.to_dict(), title="Sweep report")
    if report.errors:
        raise typer.Exit(code=1)


@app.command("run-task")
def run_task_command(
    task_id: str = typer.Argument(..., help="Task id; reads <workspace>/task.json"),
    workspace: Path | None = typer.Option(  # noqa: UP007
        None,
        "--workspace",
        "-w",
        envvar="AGENTBOX_RUNNER_WORKSPACE",
        help="This task's workspace directory (default: the container workspace mount)",
    ),
) -> None:
    """Container entrypoint: run the task's tools and write result.json."""
    from agentbox.core.config import get_settings
    from agentbox.runner import run_task

    settings = get_settings()
    setup_logging(settings)
    directory = workspace or Path(settings.container_workspace_path)
    raise typer.Exit(code=run_task(task_id, directory))
