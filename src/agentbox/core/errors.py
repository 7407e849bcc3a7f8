"""
Structured error types for the executor.

Every failure a task can meet on its way through the executor has its own
type. The supervisor catches them at the task boundary and turns them into a
terminal ``failed`` Task State, using ``to_dict()`` for the persisted error
detail and ``message`` for the human-readable text pollers see.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        AgentboxError                          │
        │   (category, retryable, context, cause, to_dict())            │
        ├──────────────────────────────────────────────────────────────┤
        │  MalformedEnvelopeError   PARSE      dropped at the consumer  │
        │  PoolExhaustedError       CAPACITY   no container created     │
        │  ProvisioningError        RUNTIME    create/start failed      │
        │  ExecutionTimeoutError    TIMEOUT    wait exceeded bound      │
        │  NonZeroExitError         EXECUTION  container signalled fail │
        │  ToolNotFoundError        CONFIG     unknown tool name        │
        └──────────────────────────────────────────────────────────────┘

    A missing result artifact is *not* an error: the task completes with
    ``result = None``.

Guardrails:
    ❌ DON'T: Retry any of these inside the executor
    ✅ DO: Let the submitter re-enqueue the task

    ❌ DON'T: Swallow the original exception when wrapping
    ✅ DO: Pass it as ``cause=``

Tags:
    error-handling, exception-hierarchy, agentbox
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and alerting."""

    PARSE = "PARSE"                # Undecodable queue payload
    CAPACITY = "CAPACITY"          # Container pool full
    RUNTIME = "RUNTIME"            # Container engine failures
    TIMEOUT = "TIMEOUT"            # Execution exceeded its bound
    EXECUTION = "EXECUTION"        # Task ran and reported failure
    CONFIG = "CONFIG"              # Settings, unknown tools
    INTERNAL = "INTERNAL"          # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Only non-None fields are serialized by :meth:`to_dict`.
    """

    task_id: str | None = None
    container_name: str | None = None
    step: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for key in ("task_id", "container_name", "step"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class AgentboxError(Exception):
    """Base exception for all executor errors.

    Subclasses set ``default_category`` and ``default_retryable``. Nothing in
    the executor retries automatically; ``retryable`` is a hint for the
    submitter that reads the error detail.

    Examples:
        >>> error = AgentboxError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(task_id="t1").context.task_id
        't1'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> AgentboxError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging and the Task State."""
        result: dict[str, Any] = {
            "type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


class MalformedEnvelopeError(AgentboxError):
    """Queue payload could not be decoded into a task envelope.

    Raised and handled inside the consumer: the message is logged and
    dropped, and no Task State is ever created for it.
    """

    default_category = ErrorCategory.PARSE

    def __init__(self, message: str, *, raw: str | bytes | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.raw = raw


class PoolExhaustedError(AgentboxError):
    """The container pool already holds its maximum number of handles."""

    default_category = ErrorCategory.CAPACITY
    default_retryable = True

    def __init__(self, capacity: int, **kwargs: Any):
        super().__init__(f"Container pool exhausted ({capacity} active)", **kwargs)
        self.capacity = capacity


class ProvisioningError(AgentboxError):
    """A container could not be created or started."""

    default_category = ErrorCategory.RUNTIME


class ContainerRuntimeError(AgentboxError):
    """A container engine command failed.

    Raised by runtime adapters; the pool translates it into
    :class:`ProvisioningError` on create/start and logs it on remove.
    """

    default_category = ErrorCategory.RUNTIME

    def __init__(self, message: str, *, returncode: int | None = None, stderr: str = "", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.returncode = returncode
        self.stderr = stderr


class ContainerNotFoundError(ContainerRuntimeError):
    """The named container does not exist (already removed)."""


class ExecutionTimeoutError(AgentboxError):
    """The container did not exit within the configured bound."""

    default_category = ErrorCategory.TIMEOUT

    def __init__(self, timeout_seconds: float, **kwargs: Any):
        super().__init__(f"Task timed out after {timeout_seconds:g}s", **kwargs)
        self.timeout_seconds = timeout_seconds


class NonZeroExitError(AgentboxError):
    """The container ran but exited with a failure status."""

    default_category = ErrorCategory.EXECUTION

    def __init__(self, exit_code: int, *, detail: str | None = None, **kwargs: Any):
        message = f"Task exited with code {exit_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, **kwargs)
        self.exit_code = exit_code


class ToolNotFoundError(AgentboxError):
    """A task requested a tool that is not registered."""

    default_category = ErrorCategory.CONFIG

    def __init__(self, name: str, available: list[str] | None = None, **kwargs: Any):
        known = ", ".join(sorted(available or [])) or "none"
        super().__init__(f"Unknown tool {name!r} (registered: {known})", **kwargs)
        self.name = name


__all__ = [
    "AgentboxError",
    "ContainerNotFoundError",
    "ContainerRuntimeError",
    "ErrorCategory",
    "ErrorContext",
    "ExecutionTimeoutError",
    "MalformedEnvelopeError",
    "NonZeroExitError",
    "PoolExhaustedError",
    "ProvisioningError",
    "ToolNotFoundError",
]
