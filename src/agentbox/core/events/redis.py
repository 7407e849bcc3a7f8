"""
Redis Pub/Sub event bus implementation.

Manifesto:
    Observers of task progress live in other processes (the API's SSE
    endpoint, dashboards). Redis Pub/Sub carries events across process
    boundaries with fire-and-forget semantics: nothing is persisted, and a
    subscriber that was not listening simply misses the event.

Each event is published to ``<channel_prefix><event_type>``, so progress for
task ``t1`` lands on ``agentbox:progress:t1``. The message body is the JSON
encoded ``event.payload``. The executor only publishes; subscribing is the
observers' business.

Requires: ``redis`` (``redis.asyncio``)

Tags:
    agentbox, events, redis, pub-sub, async
"""

from __future__ import annotations

import json
from typing import Any

from agentbox.core.events import Event

__all__ = ["RedisEventBus"]


class RedisEventBus:
    """Redis Pub/Sub publisher.

    Example::

        bus = RedisEventBus(client, channel_prefix="agentbox:")
        await bus.publish(Event(event_type="progress:t1", source="executor",
                                payload={"progress": 10}))
    """

    def __init__(
        self,
        client: Any = None,
        *,
        redis_url: str = "redis://localhost:6379/0",
        channel_prefix: str = "agentbox:",
    ) -> None:
        self._redis = client
        self._owns_client = client is None
        self._redis_url = redis_url
        self._channel_prefix = channel_prefix
        self._closed = False

    async def connect(self) -> None:
        """Create a client if none was injected."""
        if self._redis is None:
            import redis.asyncio as aioredis

            self._redis = aioredis.from_url(self._redis_url)

    def channel_for(self, event_type: str) -> str:
        return f"{self._channel_prefix}{event_type}"

    async def publish(self, event: Event) -> None:
        """Publish an event to its Redis channel. A closed bus drops it."""
        if self._closed:
            return
        if self._redis is None:
            raise RuntimeError("RedisEventBus not connected. Call connect() first.")
        message = json.dumps(event.payload)
        await self._redis.publish(self.channel_for(event.event_type), message)

    async def close(self) -> None:
        """Stop publishing.

        An injected client is owned by the caller and is left open; one
        created by :meth:`connect` is closed here.
        """
        self._closed = True
        if self._owns_client and self._redis is not None:
            await self._redis.aclose()
            self._redis = None
