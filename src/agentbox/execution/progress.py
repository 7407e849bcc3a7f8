"""
Progress Publisher: the single writer of Task State.

Manifesto:
    Pollers, channel subscribers and webhook receivers must all see the
    same story. Every change to a task's state therefore goes through
    :meth:`ProgressPublisher.update`, which applies it in a fixed order:

    ::

        merge fields into stored TaskState
            │  terminal already?  → reject, warn, return stored state
            │  progress went down while running? → clamp to stored value
            ▼
        store.put(state)            (source of truth, errors propagate)
            ▼
        bus.publish(progress:<id>)  (best effort, errors logged)
            ▼
        notifier.notify(webhook)    (best effort, background, optional)

Tags:
    agentbox, execution, progress, state, pub-sub, webhook
"""

from __future__ import annotations

from typing import Any

from agentbox.core.events import Event, EventBus
from agentbox.core.logging import get_logger
from agentbox.core.models import TaskState, TaskStatus, utcnow_iso
from agentbox.core.store import TaskStateStore
from agentbox.execution.webhooks import WebhookNotifier

logger = get_logger(__name__)

_UPDATABLE = frozenset(TaskState.model_fields) - {"task_id", "updated_at"}


class ProgressPublisher:
    """Merge, persist, broadcast and notify task progress."""

    def __init__(
        self,
        store: TaskStateStore,
        bus: EventBus | None = None,
        notifier: WebhookNotifier | None = None,
        *,
        source: str = "agentbox.executor",
    ) -> None:
        self._store = store
        self._bus = bus
        self._notifier = notifier
        self._source = source

    async def update(
        self,
        task_id: str,
        *,
        webhook_url: str | None = None,
        **fields: Any,
    ) -> TaskState:
        """Apply ``fields`` to the task's state and fan the result out.

        Returns the state as persisted (or the stored terminal state when
        the update was rejected).
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise TypeError(f"Unknown TaskState fields: {sorted(unknown)}")

        current = await self._store.get(task_id) or TaskState(task_id=task_id)
        if current.is_terminal:
            logger.warning(
                "progress.update_after_terminal",
                task_id=task_id,
                status=current.status.value,
                rejected=sorted(fields),
            )
            return current

        if "status" in fields:
            fields["status"] = TaskStatus(fields["status"])
        merged = current.model_copy(update=fields)

        progress = max(0, min(100, int(merged.progress)))
        if not merged.is_terminal and progress < current.progress:
            logger.debug(
                "progress.regression_clamped",
                task_id=task_id,
                requested=progress,
                stored=current.progress,
            )
            progress = current.progress
        merged = merged.model_copy(update={"progress": progress, "updated_at": utcnow_iso()})

        await self._store.put(merged)
        payload = merged.to_event().to_payload()
        await self._broadcast(task_id, payload)

        if webhook_url and self._notifier is not None:
            self._notifier.notify(webhook_url, payload)

        logger.debug(
            "progress.updated",
            task_id=task_id,
            status=merged.status.value,
            progress=merged.progress,
            step=merged.step,
        )
        return merged

    async def _broadcast(self, task_id: str, payload: dict[str, Any]) -> None:
        if self._bus is None:
            return
        event = Event(
            event_type=f"progress:{task_id}",
            source=self._source,
            payload=payload,
            correlation_id=task_id,
        )
        try:
            await self._bus.publish(event)
        except Exception as exc:
            logger.warning("progress.publish_failed", task_id=task_id, error=str(exc))

    async def flush(self) -> None:
        """Wait for outstanding webhook deliveries."""
        if self._notifier is not None:
            await self._notifier.flush()
