"""
Execution Supervisor: one task, start to finish.

Manifesto:
    A task may fail in many places (the pool is full, the engine refuses,
    the container hangs or exits non-zero), but it must always end in
    exactly one terminal state with its container gone. The supervisor
    owns that guarantee. ``run()`` never raises for a per-task failure; it
    converts every error into a ``failed`` Task State and returns it.

State machine::

    STARTING ──(handle acquired, workspace written)──► INITIALIZING
       10%                                                 30%
        │                                                   │ start
        │ PoolExhaustedError / ProvisioningError            ▼
        │                                                RUNNING
        │                                   exit 0 ┌───────┴───────┐ timeout / exit≠0
        │                                          ▼               ▼
        │                                    FINALIZING          FAILED 0%
        │                                       90%
        │                                          │ read result.json (absent → null)
        ▼                                          ▼
      FAILED 0%                               COMPLETED 100%

    Container removal runs in ``finally`` and completes before the terminal
    state is published; usage counters are incremented after it.

Tags:
    agentbox, execution, supervisor, state-machine, lifecycle
"""

from __future__ import annotations

import time
from typing import Any

from agentbox.core.config import ExecutorSettings
from agentbox.core.errors import (
    AgentboxError,
    ExecutionTimeoutError,
    NonZeroExitError,
)
from agentbox.core.logging import LogContext, get_logger
from agentbox.core.models import TaskEnvelope, TaskPhase, TaskState, TaskStatus, utcnow_iso
from agentbox.core.store import TaskStateStore
from agentbox.execution.pool import ContainerHandle, ContainerPool
from agentbox.execution.progress import ProgressPublisher
from agentbox.execution.workspace import TaskWorkspace

logger = get_logger(__name__)

LOG_TAIL_LINES = 20

_PHASE_PROGRESS = {
    TaskPhase.STARTING: (10, "Starting task execution"),
    TaskPhase.INITIALIZING: (30, "Initializing environment"),
    TaskPhase.FINALIZING: (90, "Finalizing results"),
    TaskPhase.COMPLETED: (100, "Task completed successfully"),
}


def _tail(text: str, lines: int = LOG_TAIL_LINES) -> str:
    return "\n".join(text.strip().splitlines()[-lines:])


class ExecutionSupervisor:
    """Drives one task through the pool and reports every transition.

    Example::

        supervisor = ExecutionSupervisor(pool, publisher, store, workspace, settings)
        state = await supervisor.run(envelope)
        assert state.is_terminal
    """

    def __init__(
        self,
        pool: ContainerPool,
        publisher: ProgressPublisher,
        store: TaskStateStore,
        workspace: TaskWorkspace,
        settings: ExecutorSettings,
    ) -> None:
        self._pool = pool
        self._publisher = publisher
        self._store = store
        self._workspace = workspace
        self._timeout = settings.task_timeout_seconds

    async def run(self, envelope: TaskEnvelope) -> TaskState:
        with LogContext(task_id=envelope.id):
            return await self._run(envelope)

    async def _run(self, envelope: TaskEnvelope) -> TaskState:
        task_id = envelope.id
        existing = await self._store.get(task_id)
        if existing is not None and (
            existing.is_terminal
            or (existing.status == TaskStatus.RUNNING and self._pool.is_active(task_id))
        ):
            logger.warning("task.duplicate_ignored", status=existing.status.value)
            return existing

        started = time.monotonic()
        logger.info("task.started", tools=len(envelope.tools), caller=envelope.caller_prefix)

        await self._advance(
            envelope, TaskPhase.STARTING,
            status=TaskStatus.RUNNING, started_at=utcnow_iso(),
        )

        handle: ContainerHandle | None = None
        result: Any = None
        error: AgentboxError | None = None
        try:
            handle = await self._pool.create(task_id)
            self._workspace.prepare(envelope)
            await self._advance(envelope, TaskPhase.INITIALIZING)

            await self._pool.start(handle)
            try:
                exit_code = await self._pool.wait(handle, self._timeout)
            except ExecutionTimeoutError as exc:
                exc.with_context(logs=_tail(await self._pool.logs(handle)))
                raise

            logs = await self._pool.logs(handle)
            if exit_code != 0:
                raise NonZeroExitError(exit_code).with_context(
                    container_name=handle.container_name, logs=_tail(logs),
                )

            await self._advance(envelope, TaskPhase.FINALIZING)
            result = self._workspace.read_result(task_id)
        except AgentboxError as exc:
            error = exc.with_context(task_id=task_id)
        except Exception as exc:
            logger.exception("task.unexpected_error")
            error = AgentboxError(f"Unexpected error: {exc}", cause=exc).with_context(task_id=task_id)
        finally:
            if handle is not None:
                await self._pool.remove(handle)

        duration = int((time.monotonic() - started) * 1000)
        if error is None:
            state = await self._advance(
                envelope, TaskPhase.COMPLETED,
                status=TaskStatus.COMPLETED,
                completed_at=utcnow_iso(),
                duration=duration,
                result=result,
            )
            logger.info("task.completed", duration_ms=duration, has_result=result is not None)
        else:
            state = await self._publisher.update(
                task_id,
                webhook_url=envelope.webhook_url,
                status=TaskStatus.FAILED,
                progress=0,
                step=TaskPhase.FAILED.value,
                message=error.message,
                completed_at=utcnow_iso(),
                duration=duration,
                error=error.to_dict(),
            )
            logger.warning(
                "task.failed",
                duration_ms=duration,
                error_type=type(error).__name__,
                category=error.category.value,
                error=error.message,
            )

        await self._store.record_outcome(envelope.caller_prefix, state.status.value)
        return state

    async def _advance(self, envelope: TaskEnvelope, phase: TaskPhase, **fields: Any) -> TaskState:
        progress, message = _PHASE_PROGRESS[phase]
        return await self._publisher.update(
            envelope.id,
            webhook_url=envelope.webhook_url,
            progress=progress,
            step=phase.value,
            message=message,
            **fields,
        )
