"""
Executor Worker: the process main loop.

Manifesto:
    One worker process drains the task queue into at most N concurrent
    supervisors, N being the container pool's capacity. A slot is taken
    *before* a message is popped, so the worker never holds a task it
    cannot start; queued work stays in Redis where other workers can see it.

Architecture::

    ExecutorWorker.run()
      ├── sweeper.start()                      (background, own interval)
      └── loop until stop():
            slots.acquire()                    (Semaphore(max_containers))
            envelope = consumer.next()         (BRPOP, malformed dropped)
            create_task(supervisor.run(envelope)) → slots.release() when done

    stop() / SIGINT / SIGTERM
      → consumer.stop() → loop exits at next poll tick
      → await in-flight supervisors → publisher.flush() → sweeper.stop()

Tags:
    agentbox, execution, worker, asyncio, semaphore, signals
"""

from __future__ import annotations

import asyncio
import os
import platform
import signal
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from redis.exceptions import RedisError

from agentbox.core.config import ExecutorSettings
from agentbox.core.events.redis import RedisEventBus
from agentbox.core.logging import get_logger
from agentbox.core.models import TaskEnvelope, TaskStatus
from agentbox.core.store import RedisTaskStateStore
from agentbox.execution.pool import ContainerPool
from agentbox.execution.progress import ProgressPublisher
from agentbox.execution.queue import QueueConsumer
from agentbox.execution.runtimes import ContainerRuntime, DockerCLIRuntime
from agentbox.execution.supervisor import ExecutionSupervisor
from agentbox.execution.sweeper import CleanupSweeper
from agentbox.execution.webhooks import WebhookNotifier
from agentbox.execution.workspace import TaskWorkspace

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class WorkerStats:
    """Aggregate statistics for a worker."""

    processed: int = 0
    completed: int = 0
    failed: int = 0
    dropped: int = 0
    active: int = 0
    uptime_seconds: float = 0
    started_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "completed": self.completed,
            "failed": self.failed,
            "dropped": self.dropped,
            "active": self.active,
            "uptime_seconds": round(self.uptime_seconds, 2),
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }


class ExecutorWorker:
    """Consumes the task queue with up to ``max_containers`` tasks in flight.

    Components are injected so tests can run the loop against the stub
    runtime and in-memory stores; :meth:`from_settings` wires the
    production stack.
    """

    def __init__(
        self,
        consumer: QueueConsumer,
        supervisor: ExecutionSupervisor,
        publisher: ProgressPublisher,
        sweeper: CleanupSweeper | None = None,
        *,
        concurrency: int = 1,
        retry_delay: float = 1.0,
        worker_id: str | None = None,
        resources: list[Any] | None = None,
    ) -> None:
        self._consumer = consumer
        self._supervisor = supervisor
        self._publisher = publisher
        self._sweeper = sweeper
        self._concurrency = concurrency
        self._slots = asyncio.Semaphore(concurrency)
        self._retry_delay = retry_delay
        self._worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self._resources = resources or []
        self._stopping = asyncio.Event()
        self._in_flight: set[asyncio.Task[None]] = set()
        self._stats = WorkerStats()
        self._started_at: datetime | None = None

    @classmethod
    def from_settings(
        cls,
        settings: ExecutorSettings,
        *,
        runtime: ContainerRuntime | None = None,
        client: Any = None,
    ) -> ExecutorWorker:
        """Wire Redis, Docker, httpx and the executor components from settings."""
        if client is None:
            import redis.asyncio as aioredis

            client = aioredis.from_url(settings.redis_url)
        runtime = runtime or DockerCLIRuntime(
            settings.docker_binary,
            command_timeout=settings.docker_command_timeout_seconds,
        )

        store = RedisTaskStateStore(client, key_prefix=settings.key_prefix)
        bus = RedisEventBus(client, channel_prefix=settings.key_prefix)
        notifier = WebhookNotifier(timeout=settings.webhook_timeout_seconds)
        publisher = ProgressPublisher(store, bus, notifier, source=settings.service_name)
        workspace = TaskWorkspace(settings.workspace_dir)
        pool = ContainerPool(runtime, settings)

        return cls(
            consumer=QueueConsumer(client, settings.queue_name, poll_seconds=settings.queue_poll_seconds),
            supervisor=ExecutionSupervisor(pool, publisher, store, workspace, settings),
            publisher=publisher,
            sweeper=CleanupSweeper(runtime, settings, workspace=workspace, is_active=pool.is_active),
            concurrency=settings.max_containers,
            retry_delay=settings.queue_poll_seconds,
            resources=[bus, notifier, store],
        )

    @property
    def worker_id(self) -> str:
        return self._worker_id

    def get_stats(self) -> WorkerStats:
        self._stats.active = len(self._in_flight)
        self._stats.dropped = self._consumer.dropped
        self._stats.started_at = self._started_at
        if self._started_at is not None:
            self._stats.uptime_seconds = (_utcnow() - self._started_at).total_seconds()
        return self._stats

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Request graceful shutdown; in-flight tasks run to completion."""
        if not self._stopping.is_set():
            logger.info("worker.stopping", worker_id=self._worker_id, in_flight=len(self._in_flight))
        self._stopping.set()
        self._consumer.stop()

    async def run(self) -> WorkerStats:
        """Run until :meth:`stop` (or a signal). Returns the final stats."""
        self._started_at = _utcnow()
        logger.info(
            "worker.started",
            worker_id=self._worker_id,
            pid=os.getpid(),
            host=platform.node(),
            concurrency=self._concurrency,
            queue=self._consumer.queue_name,
        )
        self._install_signal_handlers()
        if self._sweeper is not None:
            self._sweeper.start()

        try:
            await self._consume()
        finally:
            await self._shutdown()

        stats = self.get_stats()
        logger.info("worker.stopped", worker_id=self._worker_id, **stats.to_dict())
        return stats

    async def _consume(self) -> None:
        while not self._stopping.is_set():
            await self._slots.acquire()
            if self._stopping.is_set():
                self._slots.release()
                break
            try:
                envelope = await self._consumer.next()
            except RedisError as exc:
                self._slots.release()
                logger.error("worker.queue_unavailable", error=str(exc), retry_in=self._retry_delay)
                await asyncio.sleep(self._retry_delay)
                continue
            except BaseException:
                self._slots.release()
                raise
            if envelope is None:
                self._slots.release()
                break

            task = asyncio.create_task(self._execute(envelope), name=f"task-{envelope.id}")
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    async def _execute(self, envelope: TaskEnvelope) -> None:
        try:
            state = await self._supervisor.run(envelope)
        except Exception:
            self._stats.failed += 1
            logger.exception("worker.supervisor_crashed", task_id=envelope.id)
        else:
            if state.status is TaskStatus.COMPLETED:
                self._stats.completed += 1
            elif state.status is TaskStatus.FAILED:
                self._stats.failed += 1
        finally:
            self._stats.processed += 1
            self._slots.release()

    async def _shutdown(self) -> None:
        if self._in_flight:
            logger.info("worker.draining", in_flight=len(self._in_flight))
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)
        await self._publisher.flush()
        if self._sweeper is not None:
            await self._sweeper.stop()
        for resource in self._resources:
            await resource.close()
        self._remove_signal_handlers()

    # ------------------------------------------------------------------
    # Signal handling
    # ------------------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._handle_signal, signum)
            except (NotImplementedError, RuntimeError, ValueError):
                # Not in the main thread, or no signal support (Windows)
                return

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(signum)
            except (NotImplementedError, RuntimeError, ValueError):
                return

    def _handle_signal(self, signum: int) -> None:
        logger.info("worker.signal_received", signal=signal.Signals(signum).name)
        self.stop()
