"""Best-effort broadcast bus for progress events.

Why This Package Exists
-----------------------
Real-time observers (SSE/WebSocket gateways) want to see progress as it
happens, but the executor must not depend on them being connected. The
``EventBus`` protocol decouples the Progress Publisher from whatever
transport carries events; it only needs ``publish`` and ``close``.
Delivery is best-effort: a missed event is harmless because pollers
re-read the persisted Task State.

Event types are channel names relative to the key prefix, e.g.
``progress:t1``. The in-memory bus also accepts subscriptions by exact name
or trailing ``*`` (``progress:*``) so tests can observe the stream.

Usage::

    bus = InMemoryEventBus()
    sub_id = await bus.subscribe("progress:*", handler)
    await bus.publish(Event(event_type="progress:t1", source="executor",
                            payload={"progress": 10}))

Modules
-------
memory      InMemoryEventBus -- in-process with subscriptions, used by tests
redis       RedisEventBus -- Redis Pub/Sub publisher, one channel per task
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

__all__ = [
    "Event",
    "EventBus",
    "EventHandler",
]


@dataclass
class Event:
    """Event payload delivered to subscribers.

    Attributes:
        event_type: Channel name relative to the prefix (``progress:t1``)
        source: Origin component
        payload: Event-specific data (the JSON body on the wire)
        timestamp: When the event occurred (UTC)
        correlation_id: Optional ID linking related events (the task id)
        event_id: Unique event identifier
    """

    event_type: str
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    correlation_id: str | None = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def matches(self, pattern: str) -> bool:
        """Check if the event type matches a subscription pattern.

        Examples:
            - ``progress:*`` matches ``progress:t1``
            - ``*`` matches everything
            - ``progress:t1`` matches exactly ``progress:t1``
        """
        if pattern == "*":
            return True
        if pattern.endswith("*"):
            return self.event_type.startswith(pattern[:-1])
        return self.event_type == pattern


EventHandler = Callable[[Event], Awaitable[None]]


@runtime_checkable
class EventBus(Protocol):
    """Protocol for event bus implementations."""

    async def publish(self, event: Event) -> None:
        """Broadcast an event; delivery is best-effort."""
        ...

    async def close(self) -> None:
        ...
