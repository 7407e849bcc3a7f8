"""
Wire and state models for the executor.

Three shapes cross the executor's boundaries:

- :class:`TaskEnvelope` — the immutable work description read from the queue
  and written into the task workspace.
- :class:`TaskState` — the authoritative record pollers read from the state
  store. Stored as a flat Redis hash (see :meth:`TaskState.to_hash`).
- :class:`ProgressEvent` — the merged state broadcast on the per-task channel
  and POSTed to the webhook.

All three use camelCase on the wire (``callerToken``, ``startedAt``) and
snake_case in Python.

Tags:
    models, pydantic, envelope, task-state, progress, agentbox
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


class TaskStatus(str, Enum):
    """Externally visible task status."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class TaskPhase(str, Enum):
    """Supervisor state machine phases.

    ``STARTING → INITIALIZING → RUNNING → FINALIZING → COMPLETED | FAILED``
    """

    STARTING = "starting"
    INITIALIZING = "initializing"
    RUNNING = "running"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


_WIRE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TaskEnvelope(BaseModel):
    """Immutable description of work submitted for execution.

    ``apiKey`` is accepted as a legacy spelling of ``callerToken``.

    Example:
        >>> TaskEnvelope.model_validate_json('{"id": "t1", "task": "hi", "callerToken": "ask_1"}')
        TaskEnvelope(id='t1', task='hi', tools=[], ...)
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    id: str = Field(min_length=1)
    task: str
    tools: list[str] = Field(default_factory=list)
    caller_token: str = Field(
        default="",
        validation_alias=AliasChoices("callerToken", "caller_token", "apiKey"),
    )
    webhook_url: str | None = None
    created_at: str = Field(default_factory=utcnow_iso)

    @field_validator("id")
    @classmethod
    def _strip_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("id must not be blank")
        if "/" in value or value in (".", ".."):
            raise ValueError("id must be usable as a path segment")
        return value

    @property
    def caller_prefix(self) -> str:
        """Truncated caller token used for coarse usage accounting."""
        return self.caller_token[:10] or "anonymous"

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


class ProgressEvent(BaseModel):
    """Merged Task State as broadcast to observers."""

    model_config = _WIRE_CONFIG

    task_id: str
    status: TaskStatus
    progress: int = Field(ge=0, le=100)
    step: str = ""
    message: str = ""
    started_at: str | None = None
    completed_at: str | None = None
    duration: int | None = None
    result: Any = None
    timestamp: str = Field(default_factory=utcnow_iso)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# Hash fields holding JSON documents rather than plain strings.
_JSON_FIELDS = ("result", "error")


class TaskState(BaseModel):
    """Authoritative state of one task.

    Terminal once ``status`` is ``completed`` or ``failed``.
    """

    model_config = _WIRE_CONFIG

    task_id: str
    status: TaskStatus = TaskStatus.QUEUED
    progress: int = Field(default=0, ge=0, le=100)
    step: str = ""
    message: str = ""
    started_at: str | None = None
    completed_at: str | None = None
    duration: int | None = None
    result: Any = None
    error: dict[str, Any] | None = None
    updated_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_event(self) -> ProgressEvent:
        return ProgressEvent(
            task_id=self.task_id,
            status=self.status,
            progress=self.progress,
            step=self.step,
            message=self.message,
            started_at=self.started_at,
            completed_at=self.completed_at,
            duration=self.duration,
            result=self.result,
        )

    def to_hash(self) -> dict[str, str]:
        """Flatten to string fields for a Redis hash (None values omitted)."""
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        flat: dict[str, str] = {}
        for key, value in data.items():
            if key in _JSON_FIELDS:
                flat[key] = json.dumps(value)
            else:
                flat[key] = str(value)
        return flat

    @classmethod
    def from_hash(cls, raw: dict[Any, Any]) -> TaskState:
        """Rebuild from a Redis hash (bytes or str keys/values)."""
        data: dict[str, Any] = {}
        for key, value in raw.items():
            key = key.decode() if isinstance(key, bytes) else key
            value = value.decode() if isinstance(value, bytes) else value
            if key in _JSON_FIELDS:
                value = json.loads(value)
            data[key] = value
        return cls.model_validate(data)


__all__ = [
    "ProgressEvent",
    "TaskEnvelope",
    "TaskPhase",
    "TaskState",
    "TaskStatus",
    "utcnow_iso",
]
