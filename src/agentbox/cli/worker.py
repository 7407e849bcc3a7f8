"""
CLI: ``agentbox worker`` — run the task executor.
"""

from __future__ import annotations

import asyncio

import typer

from agentbox.cli.utils import console, err_console, setup_logging

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    max_containers: int | None = typer.Option(  # noqa: UP007
        None, "--max-containers", "-n", min=1, help="Override AGENTBOX_MAX_CONTAINERS"
    ),
    queue: str | None = typer.Option(None, "--queue", "-q", help="Override AGENTBOX_QUEUE_NAME"),  # noqa: UP007
    env_file: str | None = typer.Option(None, "--env-file", help="Load settings from this .env file"),  # noqa: UP007
) -> None:
    """Start the executor: consume the queue and run each task in a container.

    Stops gracefully on SIGINT / SIGTERM after in-flight tasks finish.

    Example::

        agentbox worker start
        agentbox worker start --max-containers 4 --queue agentbox:queue:tasks
    """
    from agentbox.core.config import get_settings
    from agentbox.core.errors import ContainerRuntimeError
    from agentbox.execution.worker import ExecutorWorker

    settings = get_settings(env_file=env_file)
    overrides = {
        key: value
        for key, value in (("max_containers", max_containers), ("queue_name", queue))
        if value is not None
    }
    if overrides:
        settings = settings.model_copy(update=overrides)
    setup_logging(settings)

    console.print(
        f"[bold green]Starting agentbox worker[/bold green] "
        f"(containers={settings.max_containers}, queue={settings.queue_name}, "
        f"timeout={settings.task_timeout_seconds:g}s)"
    )

    try:
        worker = ExecutorWorker.from_settings(settings)
        stats = asyncio.run(worker.run())
    except ContainerRuntimeError as exc:
        err_console.print(f"[red]Container runtime unavailable: {exc.message}[/red]")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Worker stopped by user[/yellow]")
        return

    console.print(
        f"[bold]Worker stopped[/bold]  processed={stats.processed}  "
        f"completed={stats.completed}  failed={stats.failed}  dropped={stats.dropped}"
    )
