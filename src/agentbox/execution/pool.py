"""
Bounded pool of execution containers.

Manifesto:
    Containers are the expensive resource. The pool is the only component
    that creates or destroys them on behalf of tasks, and it enforces the
    hard ceiling ``max_containers``: the size check and the reservation
    happen under one lock, so concurrent supervisors can never push the
    arena past N.

Architecture:
    ::

        ContainerPool(runtime, settings)
          │
          ├── create(task_id) ──► reserve slot (lock) ──► runtime.create(spec)
          │                         │                      │
          │                         └─ full → PoolExhaustedError
          │                                                └─ error → release, ProvisioningError
          ├── start(handle)    ──► runtime.start(name)
          ├── wait(handle, t)  ──► wait_for(runtime.wait(name), t)
          ├── logs(handle)     ──► runtime.logs(name)  (best effort)
          └── remove(handle)   ──► runtime.remove(name) + unregister (idempotent)

    Every successful ``create`` is matched by exactly one effective
    ``remove``. The supervisor guarantees the call; the pool guarantees it
    is safe to repeat.

Tags:
    agentbox, execution, pool, containers, concurrency
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from agentbox.core.config import ExecutorSettings
from agentbox.core.errors import (
    ContainerRuntimeError,
    ExecutionTimeoutError,
    PoolExhaustedError,
    ProvisioningError,
)
from agentbox.core.logging import get_logger
from agentbox.execution.runtimes import (
    ContainerRuntime,
    ContainerSpec,
    ResourceLimits,
    VolumeMount,
)

logger = get_logger(__name__)


@dataclass
class ContainerHandle:
    """The pool's record of one live execution container."""

    task_id: str
    container_name: str
    container_id: str = ""
    workspace_path: Path | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    removed: bool = False


class ContainerPool:
    """Creates, starts, waits on and removes containers, at most N at a time.

    Example::

        pool = ContainerPool(DockerCLIRuntime(), settings)
        handle = await pool.create("t1")
        try:
            await pool.start(handle)
            exit_code = await pool.wait(handle, timeout=300)
        finally:
            await pool.remove(handle)
    """

    def __init__(self, runtime: ContainerRuntime, settings: ExecutorSettings) -> None:
        self._runtime = runtime
        self._settings = settings
        self._capacity = settings.max_containers
        self._active: dict[str, ContainerHandle] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def active_count(self) -> int:
        return len(self._active)

    def is_active(self, task_id: str) -> bool:
        return task_id in self._active

    def active_task_ids(self) -> set[str]:
        return set(self._active)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def container_name(self, task_id: str) -> str:
        return f"{self._settings.container_prefix}{task_id}"

    def workspace_path(self, task_id: str) -> Path:
        return (self._settings.workspace_dir / task_id).resolve()

    def build_spec(self, task_id: str) -> ContainerSpec:
        """Container definition for one task.

        The entrypoint receives only the task id; the task itself is read
        from the mounted workspace. Only the task's own directory is
        mounted, never the workspace root.
        """
        s = self._settings
        return ContainerSpec(
            name=self.container_name(task_id),
            image=s.image,
            command=(*s.entrypoint, task_id),
            env={
                "TASK_ID": task_id,
                "REDIS_URL": s.redis_url,
                "QUEUE_NAME": s.queue_name,
                "CONFIG_PATH": s.container_config_path,
            },
            labels={
                f"{s.label_prefix}.managed": "true",
                f"{s.label_prefix}.task_id": task_id,
            },
            volumes=(
                VolumeMount(str(self.workspace_path(task_id)), s.container_workspace_path),
                VolumeMount(str(s.config_dir.resolve()), s.container_config_path, read_only=True),
            ),
            resources=ResourceLimits(memory=s.memory_limit, cpus=s.cpu_limit),
            network_mode=s.network_mode,
            working_dir="/app",
        )

    async def create(self, task_id: str) -> ContainerHandle:
        """Reserve a slot and provision a container for ``task_id``.

        Raises:
            PoolExhaustedError: ``max_containers`` handles are already active.
            ProvisioningError: The runtime refused, or ``task_id`` is already active.
        """
        handle = ContainerHandle(
            task_id=task_id,
            container_name=self.container_name(task_id),
            workspace_path=self.workspace_path(task_id),
        )
        async with self._lock:
            if task_id in self._active:
                raise ProvisioningError(
                    f"Task {task_id} already holds a container",
                ).with_context(task_id=task_id, container_name=handle.container_name)
            if len(self._active) >= self._capacity:
                raise PoolExhaustedError(self._capacity).with_context(task_id=task_id)
            self._active[task_id] = handle

        try:
            # The bind source must exist, or the engine creates it root-owned
            handle.workspace_path.mkdir(parents=True, exist_ok=True)
            handle.container_id = await self._runtime.create(self.build_spec(task_id))
        except OSError as exc:
            await self._release(handle)
            raise ProvisioningError(
                f"Failed to create workspace {handle.workspace_path}: {exc}",
                cause=exc,
            ).with_context(task_id=task_id, container_name=handle.container_name) from exc
        except ContainerRuntimeError as exc:
            await self._release(handle)
            raise ProvisioningError(
                f"Failed to create container {handle.container_name}: {exc.message}",
                cause=exc,
            ).with_context(task_id=task_id, container_name=handle.container_name) from exc
        except BaseException:
            await self._release(handle)
            raise

        logger.info(
            "container.created",
            task_id=task_id,
            container=handle.container_name,
            container_id=handle.container_id,
            active=self.active_count,
            capacity=self._capacity,
        )
        return handle

    async def start(self, handle: ContainerHandle) -> None:
        try:
            await self._runtime.start(handle.container_name)
        except ContainerRuntimeError as exc:
            raise ProvisioningError(
                f"Failed to start container {handle.container_name}: {exc.message}",
                cause=exc,
            ).with_context(task_id=handle.task_id, container_name=handle.container_name) from exc
        logger.debug("container.started", task_id=handle.task_id, container=handle.container_name)

    async def wait(self, handle: ContainerHandle, timeout: float) -> int:
        """Block until the container exits and return its exit status.

        Raises:
            ExecutionTimeoutError: The container is still running after ``timeout`` seconds.
        """
        try:
            return await asyncio.wait_for(self._runtime.wait(handle.container_name), timeout)
        except TimeoutError as exc:
            raise ExecutionTimeoutError(timeout).with_context(
                task_id=handle.task_id, container_name=handle.container_name,
            ) from exc

    async def logs(self, handle: ContainerHandle) -> str:
        """Captured stdout/stderr, or ``""`` if the runtime cannot provide them."""
        try:
            return await self._runtime.logs(handle.container_name)
        except ContainerRuntimeError as exc:
            logger.warning(
                "container.logs_unavailable",
                task_id=handle.task_id,
                container=handle.container_name,
                error=exc.message,
            )
            return ""

    async def remove(self, handle: ContainerHandle) -> None:
        """Force-remove the container and unregister the handle.

        Idempotent; runtime errors are logged and never raised. Any
        container the runtime failed to remove is left for the sweeper.
        """
        if handle.removed:
            return
        handle.removed = True
        try:
            existed = await self._runtime.remove(handle.container_name)
            logger.info(
                "container.removed",
                task_id=handle.task_id,
                container=handle.container_name,
                existed=existed,
            )
        except ContainerRuntimeError as exc:
            logger.error(
                "container.remove_failed",
                task_id=handle.task_id,
                container=handle.container_name,
                error=exc.message,
            )
        finally:
            await self._release(handle)

    async def _release(self, handle: ContainerHandle) -> None:
        async with self._lock:
            if self._active.get(handle.task_id) is handle:
                del self._active[handle.task_id]
