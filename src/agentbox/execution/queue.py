"""Inbound task queue consumer.

Reads task envelopes from a Redis list with ``BRPOP``. Delivery is
at-most-once: the message leaves Redis the moment it is popped, so a crash
between dequeue and completion loses the task. There is no retry and no
dead-letter list; a payload that cannot be decoded is logged and dropped.

.. code-block:: text

    LPUSH agentbox:queue:tasks '{"id": "t1", ...}'     (submitter)
                     │
                     ▼
    QueueConsumer.next()
      ├── BRPOP (poll_seconds)  → None on idle tick, loop
      ├── decode → TaskEnvelope → return
      └── malformed → log + drop, loop
      stop() → next() returns None at the next tick

Tags:
    agentbox, execution, queue, redis, brpop, consumer
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from agentbox.core.errors import MalformedEnvelopeError
from agentbox.core.logging import get_logger
from agentbox.core.models import TaskEnvelope

logger = get_logger(__name__)


class QueueConsumer:
    """Blocking reader of the inbound Redis list."""

    def __init__(self, client: Any, queue_name: str, *, poll_seconds: float = 1.0) -> None:
        self._client = client
        self.queue_name = queue_name
        self._poll_seconds = poll_seconds
        self._stopped = False
        self.received = 0
        self.dropped = 0

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        self._stopped = True

    async def next_raw(self) -> bytes | str | None:
        """Pop one raw message, blocking until one arrives or ``stop()`` is called."""
        while not self._stopped:
            # redis-py wants an integer timeout on older servers; 0 would block forever
            timeout = max(1, int(self._poll_seconds))
            item = await self._client.brpop([self.queue_name], timeout=timeout)
            if item is None:
                continue
            _, raw = item
            self.received += 1
            return raw
        return None

    async def next(self) -> TaskEnvelope | None:
        """Return the next decodable envelope, dropping malformed messages."""
        while True:
            raw = await self.next_raw()
            if raw is None:
                return None
            try:
                return self.decode(raw)
            except MalformedEnvelopeError as exc:
                self.dropped += 1
                logger.error(
                    "queue.message_dropped",
                    queue=self.queue_name,
                    error=exc.message,
                    preview=_preview(raw),
                )

    @staticmethod
    def decode(raw: bytes | str) -> TaskEnvelope:
        """Parse one queue payload.

        Raises:
            MalformedEnvelopeError: Not JSON, not an object, or invalid fields.
        """
        try:
            return TaskEnvelope.model_validate_json(raw)
        except ValidationError as exc:
            raise MalformedEnvelopeError(
                f"Invalid task envelope: {exc.error_count()} error(s): "
                f"{exc.errors()[0]['msg']}",
                raw=raw,
                cause=exc,
            ) from exc


def _preview(raw: bytes | str, limit: int = 120) -> str:
    text = raw.decode(errors="replace") if isinstance(raw, bytes) else raw
    return text if len(text) <= limit else text[:limit] + "..."
