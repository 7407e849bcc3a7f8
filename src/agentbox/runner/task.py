"""In-environment task runner (the container entrypoint).

The container is told only its task id. Everything else comes from its
own workspace directory, mounted at ``container_workspace_path``:

.. code-block:: text

    <workspace>/task.json    → TaskEnvelope
        │
        ▼
    for name in envelope.tools:            (in order)
        output = registry.resolve(name).execute({"task": ..., "previous": output})
        │
        ▼
    <workspace>/result.json  ← {"taskId", "tools": {name: output}, "completedAt"}

Exit codes: ``0`` success, ``1`` unknown tool or tool failure (an error
artifact is written), ``2`` missing or invalid ``task.json``,
or one written for another task.

Tags:
    agentbox, runner, entrypoint, tools, workspace
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from agentbox.core.errors import AgentboxError, ToolNotFoundError
from agentbox.core.logging import get_logger
from agentbox.core.models import TaskEnvelope, utcnow_iso
from agentbox.execution.workspace import RESULT_FILE, TASK_FILE
from agentbox.runner.registry import ToolRegistry, get_default_registry

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_TOOL_FAILED = 1
EXIT_BAD_INPUT = 2


def _write_artifact(directory: Path, payload: dict[str, Any]) -> None:
    (directory / RESULT_FILE).write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")


def run_task(
    task_id: str,
    workspace_dir: Path | str,
    registry: ToolRegistry | None = None,
) -> int:
    """Execute the tools requested by ``task.json`` and write ``result.json``.

    ``workspace_dir`` is the task's own directory, not the workspace root.
    """
    registry = registry or get_default_registry()
    directory = Path(workspace_dir)

    try:
        envelope = TaskEnvelope.model_validate_json((directory / TASK_FILE).read_bytes())
    except (OSError, ValidationError) as exc:
        logger.error("runner.bad_input", task_id=task_id, error=str(exc))
        return EXIT_BAD_INPUT
    if envelope.id != task_id:
        logger.error("runner.task_mismatch", task_id=task_id, envelope_id=envelope.id)
        return EXIT_BAD_INPUT

    outputs: dict[str, Any] = {}
    previous: Any = None
    for name in envelope.tools:
        logger.info("runner.tool_started", task_id=task_id, tool=name)
        try:
            previous = registry.resolve(name).execute({"task": envelope.task, "previous": previous})
        except ToolNotFoundError as exc:
            return _fail(directory, task_id, name, exc.to_dict(), outputs)
        except Exception as exc:
            logger.exception("runner.tool_failed", task_id=task_id, tool=name)
            error = AgentboxError(f"Tool {name!r} failed: {exc}", cause=exc).to_dict()
            return _fail(directory, task_id, name, error, outputs)
        outputs[name] = previous

    _write_artifact(
        directory,
        {"taskId": task_id, "tools": outputs, "completedAt": utcnow_iso()},
    )
    logger.info("runner.completed", task_id=task_id, tools=len(outputs))
    return EXIT_OK


def _fail(
    directory: Path,
    task_id: str,
    tool_name: str,
    error: dict[str, Any],
    outputs: dict[str, Any],
) -> int:
    logger.error("runner.failed", task_id=task_id, tool=tool_name, error=error["message"])
    # Printed so the supervisor's log tail carries the reason
    print(f"agentbox-runner: {error['message']}")
    _write_artifact(
        directory,
        {"taskId": task_id, "tools": outputs, "error": error, "completedAt": utcnow_iso()},
    )
    return EXIT_TOOL_FAILED
