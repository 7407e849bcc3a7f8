"""Periodic reaper of stale execution containers.

The sweeper is the safety net for everything the supervisor's ``finally``
cannot cover: a worker killed mid-task, a ``docker rm`` that failed, a
container started by a previous process. It never consults the pool's
in-memory arena. It asks the runtime for every container carrying the
managed label and removes those older than ``cleanup_after_ms``, judging
age by the runtime's own creation timestamp.

.. code-block:: text

    every cleanup_interval_seconds:
        runtime.list_containers("<label_prefix>.managed=true")
            └── age > cleanup_after_ms → runtime.remove(name)
        workspace.stale(cleanup_after_ms)
            └── task not active        → workspace.remove(task_id)

Removing a container that is already gone is a no-op, so sweeps can
overlap with each other and with the supervisor.

Tags:
    agentbox, execution, sweeper, cleanup, background
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from agentbox.core.config import ExecutorSettings
from agentbox.core.errors import ContainerRuntimeError
from agentbox.core.logging import get_logger
from agentbox.execution.runtimes import ContainerRuntime
from agentbox.execution.workspace import TaskWorkspace

logger = get_logger(__name__)


@dataclass
class SweepReport:
    """Outcome of one sweep tick."""

    inspected: int = 0
    removed: list[str] = field(default_factory=list)
    workspaces_removed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "inspected": self.inspected,
            "removed": list(self.removed),
            "workspaces_removed": list(self.workspaces_removed),
            "errors": list(self.errors),
        }


class CleanupSweeper:
    """Background task removing labelled containers past their retention."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        settings: ExecutorSettings,
        *,
        workspace: TaskWorkspace | None = None,
        is_active: Callable[[str], bool] | None = None,
    ) -> None:
        self._runtime = runtime
        self._label = f"{settings.label_prefix}.managed=true"
        self._max_age_ms = settings.cleanup_after_ms
        self._interval = settings.cleanup_interval_seconds
        self._workspace = workspace
        self._is_active = is_active or (lambda _task_id: False)
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.tick_count = 0
        self.last_tick: datetime | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self, *, now: datetime | None = None) -> SweepReport:
        """Run one sweep. Never raises; failures are collected in the report."""
        now = now or datetime.now(UTC)
        report = SweepReport()

        try:
            records = await self._runtime.list_containers(self._label)
        except ContainerRuntimeError as exc:
            logger.error("sweeper.list_failed", error=exc.message)
            report.errors.append(exc.message)
            records = []

        report.inspected = len(records)
        for record in records:
            age_ms = record.age_ms(now)
            if age_ms <= self._max_age_ms:
                continue
            try:
                await self._runtime.remove(record.name)
            except ContainerRuntimeError as exc:
                logger.error("sweeper.remove_failed", container=record.name, error=exc.message)
                report.errors.append(f"{record.name}: {exc.message}")
                continue
            report.removed.append(record.name)
            logger.info(
                "sweeper.container_removed",
                container=record.name,
                age_ms=int(age_ms),
                state=record.state,
            )

        if self._workspace is not None:
            self._sweep_workspaces(report, now)

        self.tick_count += 1
        self.last_tick = now
        if report.removed or report.workspaces_removed or report.errors:
            logger.info("sweeper.tick", **report.to_dict())
        return report

    def _sweep_workspaces(self, report: SweepReport, now: datetime) -> None:
        try:
            stale = self._workspace.stale(self._max_age_ms, now=now.timestamp())
        except OSError as exc:
            logger.error("sweeper.workspace_scan_failed", error=str(exc))
            report.errors.append(str(exc))
            return
        for task_id in stale:
            if self._is_active(task_id):
                continue
            if self._workspace.remove(task_id):
                report.workspaces_removed.append(task_id)

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task[None]:
        if not self.running:
            self._stop.clear()
            self._task = asyncio.create_task(self._loop(), name="agentbox-sweeper")
            logger.info(
                "sweeper.started",
                interval_seconds=self._interval,
                max_age_ms=self._max_age_ms,
            )
        return self._task

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("sweeper.stopped", ticks=self.tick_count)

    async def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
            except TimeoutError:
                pass
            else:
                break
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("sweeper.tick_failed")
