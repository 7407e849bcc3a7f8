"""
Task State persistence and usage counters.

Manifesto:
    Pollers never talk to the executor; they read the state store. That
    makes the store, not any in-process structure, the source of truth for
    what a task is doing. Each task is one Redis hash under
    ``<prefix>task:<id>``, written only through the Progress Publisher.

Backends:
    RedisTaskStateStore      Redis hashes + INCR counters (production)
    InMemoryTaskStateStore   dicts (tests, dry runs)

Key layout::

    <prefix>task:<task_id>                 hash   TaskState.to_hash()
    <prefix>usage:<token10>:<outcome>      int    per-caller counter
    <prefix>metrics:<outcome>              int    global counter

Tags:
    agentbox, state-store, redis, counters, usage
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from agentbox.core.models import TaskState


@runtime_checkable
class TaskStateStore(Protocol):
    """Protocol for Task State backends."""

    async def get(self, task_id: str) -> TaskState | None:
        """Return the stored state, or ``None`` if the task is unknown."""
        ...

    async def put(self, state: TaskState) -> None:
        """Persist the full state record."""
        ...

    async def record_outcome(self, caller_prefix: str, outcome: str) -> None:
        """Increment the per-caller and global counters for ``outcome``."""
        ...

    async def get_counter(self, name: str) -> int:
        """Read a counter by its un-prefixed name (e.g. ``metrics:completed``)."""
        ...

    async def close(self) -> None:
        ...


def usage_counter(caller_prefix: str, outcome: str) -> str:
    return f"usage:{caller_prefix}:{outcome}"


def metrics_counter(outcome: str) -> str:
    return f"metrics:{outcome}"


class RedisTaskStateStore:
    """Redis-backed state store.

    Example::

        client = redis.asyncio.from_url("redis://localhost:6379/0")
        store = RedisTaskStateStore(client, key_prefix="agentbox:")
        await store.put(TaskState(task_id="t1"))
    """

    def __init__(self, client: Any, *, key_prefix: str = "agentbox:") -> None:
        self._client = client
        self._prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, *, key_prefix: str = "agentbox:") -> RedisTaskStateStore:
        import redis.asyncio as aioredis

        return cls(aioredis.from_url(url), key_prefix=key_prefix)

    def _task_key(self, task_id: str) -> str:
        return f"{self._prefix}task:{task_id}"

    async def get(self, task_id: str) -> TaskState | None:
        raw = await self._client.hgetall(self._task_key(task_id))
        if not raw:
            return None
        return TaskState.from_hash(raw)

    async def put(self, state: TaskState) -> None:
        await self._client.hset(self._task_key(state.task_id), mapping=state.to_hash())

    async def record_outcome(self, caller_prefix: str, outcome: str) -> None:
        await self._client.incr(f"{self._prefix}{usage_counter(caller_prefix, outcome)}")
        await self._client.incr(f"{self._prefix}{metrics_counter(outcome)}")

    async def get_counter(self, name: str) -> int:
        value = await self._client.get(f"{self._prefix}{name}")
        return int(value) if value is not None else 0

    async def close(self) -> None:
        await self._client.aclose()


class InMemoryTaskStateStore:
    """Dictionary-backed state store for tests and single-process runs.

    ``history`` keeps every state written per task, which lets tests assert
    on the exact progress sequence a poller could have observed.
    """

    def __init__(self) -> None:
        self._states: dict[str, TaskState] = {}
        self._counters: dict[str, int] = {}
        self.history: dict[str, list[TaskState]] = {}

    async def get(self, task_id: str) -> TaskState | None:
        state = self._states.get(task_id)
        return state.model_copy() if state is not None else None

    async def put(self, state: TaskState) -> None:
        self._states[state.task_id] = state.model_copy()
        self.history.setdefault(state.task_id, []).append(state.model_copy())

    async def record_outcome(self, caller_prefix: str, outcome: str) -> None:
        for name in (usage_counter(caller_prefix, outcome), metrics_counter(outcome)):
            self._counters[name] = self._counters.get(name, 0) + 1

    async def get_counter(self, name: str) -> int:
        return self._counters.get(name, 0)

    async def close(self) -> None:
        pass

    def progress_history(self, task_id: str) -> list[int]:
        return [s.progress for s in self.history.get(task_id, [])]


__all__ = [
    "InMemoryTaskStateStore",
    "RedisTaskStateStore",
    "TaskStateStore",
    "metrics_counter",
    "usage_counter",
]
