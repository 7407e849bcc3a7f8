"""Outbound webhook callbacks.

Manifesto:
    A submitter may ask to be called back on every progress change. The
    callback is a courtesy, never part of correctness: each delivery is a
    single POST with no retry, and a failure is logged at debug and
    forgotten. Pollers still have the state store.

Deliveries run as background asyncio tasks so a slow endpoint never holds
up the supervisor. ``flush()`` waits for whatever is still in flight,
which the worker calls on shutdown.

Tags:
    agentbox, execution, webhook, httpx, fire-and-forget
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from agentbox.core.logging import get_logger

logger = get_logger(__name__)


class WebhookNotifier:
    """Best-effort, zero-retry JSON POST delivery.

    Example::

        notifier = WebhookNotifier(timeout=5.0)
        notifier.notify("https://example.com/hook", {"taskId": "t1", "progress": 10})
        await notifier.flush()
        await notifier.close()
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float = 5.0,
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._pending: set[asyncio.Task[None]] = set()
        self.delivered = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return len(self._pending)

    def notify(self, url: str, payload: dict[str, Any]) -> asyncio.Task[None]:
        """Schedule exactly one delivery of ``payload`` to ``url``."""
        task = asyncio.create_task(self._deliver(url, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _deliver(self, url: str, payload: dict[str, Any]) -> None:
        try:
            response = await self._client.post(url, json=payload)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            self.failed += 1
            logger.debug("webhook.delivery_failed", url=url, error=str(exc))
            return
        self.delivered += 1
        logger.debug("webhook.delivered", url=url, status=response.status_code)

    async def flush(self) -> None:
        """Wait for all in-flight deliveries."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.flush()
        if self._owns_client:
            await self._client.aclose()
