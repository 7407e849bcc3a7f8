"""Container runtime protocol and type definitions.

``ContainerRuntime`` is the seam between the executor and the container
engine. The pool builds a :class:`ContainerSpec` and drives one container
through ``create → start → wait → logs → remove``; the sweeper uses
``list_containers`` to find stale ones by label.

.. code-block:: text

    ContainerSpec ──► runtime.create() ──► container id
                      runtime.start(name)
                      runtime.wait(name)  ──► exit code (blocks)
                      runtime.logs(name)  ──► combined stdout/stderr
                      runtime.remove(name) ─► True | False (already gone)
                      runtime.list_containers(label) ──► [ContainerRecord]

Tags:
    agentbox, execution, runtimes, protocol, types
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class VolumeMount:
    """Bind mount from a host path into the container."""

    host_path: str
    mount_path: str
    read_only: bool = False

    def to_docker_arg(self) -> str:
        mode = "ro" if self.read_only else "rw"
        return f"{self.host_path}:{self.mount_path}:{mode}"


@dataclass(frozen=True)
class ResourceLimits:
    """Memory ceiling and CPU quota for one container."""

    memory: str = "256m"     # Docker syntax: "256m", "1g"
    cpus: float = 0.5        # Fractional CPUs


@dataclass(frozen=True)
class ContainerSpec:
    """Everything a runtime needs to create one execution environment."""

    name: str
    image: str
    command: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    volumes: tuple[VolumeMount, ...] = ()
    resources: ResourceLimits = field(default_factory=ResourceLimits)
    network_mode: str = "none"
    working_dir: str | None = None


@dataclass
class ContainerRecord:
    """A container as reported by the runtime itself (not by the pool)."""

    container_id: str
    name: str
    created_at: datetime
    labels: dict[str, str] = field(default_factory=dict)
    state: str = "unknown"

    def age_ms(self, now: datetime | None = None) -> float:
        now = now or _utcnow()
        return (now - self.created_at).total_seconds() * 1000


_FRACTION = re.compile(r"\.(\d+)")


def parse_docker_timestamp(value: str) -> datetime:
    """Parse Docker's RFC 3339 nanosecond timestamps.

    ``2024-01-15T10:30:00.123456789Z`` → aware ``datetime`` (microseconds).

    Raises:
        ValueError: If the value is not a timestamp.
    """
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    value = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@runtime_checkable
class ContainerRuntime(Protocol):
    """Protocol for container engines.

    Implementations raise :class:`~agentbox.core.errors.ContainerRuntimeError`
    on engine failures and :class:`~agentbox.core.errors.ContainerNotFoundError`
    when a named container does not exist.
    """

    @property
    def runtime_name(self) -> str:
        ...

    async def create(self, spec: ContainerSpec) -> str:
        """Create (but do not start) a container; return its id."""
        ...

    async def start(self, name: str) -> None:
        ...

    async def wait(self, name: str) -> int:
        """Block until the container exits; return its exit code.

        Must be cancellable: the pool enforces the timeout by cancelling.
        """
        ...

    async def logs(self, name: str) -> str:
        ...

    async def remove(self, name: str) -> bool:
        """Force-remove the container. Return ``False`` if it was already gone."""
        ...

    async def list_containers(self, label: str) -> list[ContainerRecord]:
        """List all containers (any state) carrying ``label`` (``key=value``)."""
        ...
