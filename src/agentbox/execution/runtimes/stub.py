"""In-memory container runtime for tests and dry runs.

No real containers are created. Each stubbed container follows a
:class:`StubBehavior` chosen by name prefix or the runtime default, which
lets tests script exits, hangs, and engine failures.

.. code-block:: text

    StubContainerRuntime behavior:

    create(spec)
      ├── fail_create=True     → ContainerRuntimeError
      └── otherwise            → record container (state="created")

    start(name)
      ├── fail_start=True      → ContainerRuntimeError
      ├── on_start(spec)       → e.g. write the result artifact
      ├── hang=True            → wait() blocks until removed/cancelled
      └── otherwise            → exits after ``run_seconds`` with exit_code

    Track usage:
      runtime.create_count / remove_count / live_high_water
      runtime.calls  → [("create", name), ("start", name), ...]

Tags:
    agentbox, execution, runtimes, stub, testing
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from agentbox.core.errors import ContainerNotFoundError, ContainerRuntimeError
from agentbox.execution.runtimes._types import (
    ContainerRecord,
    ContainerSpec,
    _utcnow,
)


@dataclass
class StubBehavior:
    """Scripted outcome for a stubbed container."""

    exit_code: int = 0
    run_seconds: float = 0.0
    hang: bool = False
    logs: list[str] = field(default_factory=lambda: ["[stub] started", "[stub] finished"])
    fail_create: bool = False
    fail_start: bool = False
    on_start: Callable[[ContainerSpec], None] | None = None


@dataclass
class _StubContainer:
    spec: ContainerSpec
    container_id: str
    behavior: StubBehavior
    created_at: datetime = field(default_factory=_utcnow)
    state: str = "created"
    exit_code: int | None = None
    exited: asyncio.Event = field(default_factory=asyncio.Event)


class StubContainerRuntime:
    """Container runtime that keeps everything in memory.

    Example:
        >>> runtime = StubContainerRuntime()
        >>> runtime.behaviors["agentbox-task-slow"] = StubBehavior(hang=True)
    """

    def __init__(self, default: StubBehavior | None = None) -> None:
        self.default = default or StubBehavior()
        self.behaviors: dict[str, StubBehavior] = {}
        self.containers: dict[str, _StubContainer] = {}
        self.calls: list[tuple[str, str]] = []
        self.create_count = 0
        self.remove_count = 0
        self.live_high_water = 0

    @property
    def runtime_name(self) -> str:
        return "stub"

    def behavior_for(self, name: str) -> StubBehavior:
        for prefix, behavior in self.behaviors.items():
            if name.startswith(prefix):
                return behavior
        return self.default

    def add_orphan(
        self,
        name: str,
        *,
        labels: dict[str, str],
        created_at: datetime,
        state: str = "exited",
    ) -> None:
        """Register a container the pool never created (e.g. left by a crash)."""
        spec = ContainerSpec(name=name, image="stub", labels=labels)
        self.containers[name] = _StubContainer(
            spec=spec,
            container_id=uuid.uuid4().hex[:12],
            behavior=StubBehavior(),
            created_at=created_at,
            state=state,
        )

    async def create(self, spec: ContainerSpec) -> str:
        self.calls.append(("create", spec.name))
        behavior = self.behavior_for(spec.name)
        if behavior.fail_create:
            raise ContainerRuntimeError(f"Stub: create failure injected for {spec.name}")
        if spec.name in self.containers:
            raise ContainerRuntimeError(f"Stub: container name {spec.name} already in use")

        container = _StubContainer(
            spec=spec,
            container_id=uuid.uuid4().hex[:12],
            behavior=behavior,
        )
        self.containers[spec.name] = container
        self.create_count += 1
        self.live_high_water = max(self.live_high_water, len(self.containers))
        return container.container_id

    async def start(self, name: str) -> None:
        self.calls.append(("start", name))
        container = self._get(name)
        if container.behavior.fail_start:
            raise ContainerRuntimeError(f"Stub: start failure injected for {name}")
        container.state = "running"
        if container.behavior.on_start is not None:
            container.behavior.on_start(container.spec)
        if not container.behavior.hang:
            asyncio.get_running_loop().call_later(
                container.behavior.run_seconds,
                self._exit,
                container,
                container.behavior.exit_code,
            )

    async def wait(self, name: str) -> int:
        self.calls.append(("wait", name))
        container = self._get(name)
        await container.exited.wait()
        if container.exit_code is None:
            raise ContainerNotFoundError(f"Stub: {name} removed while waiting")
        return container.exit_code

    async def logs(self, name: str) -> str:
        container = self._get(name)
        return "\n".join(container.behavior.logs)

    async def remove(self, name: str) -> bool:
        self.calls.append(("remove", name))
        container = self.containers.pop(name, None)
        if container is None:
            return False
        self.remove_count += 1
        container.state = "removed"
        container.exited.set()
        return True

    async def list_containers(self, label: str) -> list[ContainerRecord]:
        key, _, value = label.partition("=")
        return [
            ContainerRecord(
                container_id=c.container_id,
                name=name,
                created_at=c.created_at,
                labels=dict(c.spec.labels),
                state=c.state,
            )
            for name, c in self.containers.items()
            if key in c.spec.labels and (not value or c.spec.labels[key] == value)
        ]

    def _get(self, name: str) -> _StubContainer:
        container = self.containers.get(name)
        if container is None:
            raise ContainerNotFoundError(f"Stub: no such container: {name}")
        return container

    @staticmethod
    def _exit(container: _StubContainer, exit_code: int) -> None:
        if container.state == "running":
            container.state = "exited"
            container.exit_code = exit_code
            container.exited.set()
