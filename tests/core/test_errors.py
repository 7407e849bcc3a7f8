"""Tests for agentbox.core.errors — categories, messages and serialization."""

from __future__ import annotations

from agentbox.core.errors import (
    AgentboxError,
    ContainerNotFoundError,
    ContainerRuntimeError,
    ErrorCategory,
    ErrorContext,
    ExecutionTimeoutError,
    MalformedEnvelopeError,
    NonZeroExitError,
    PoolExhaustedError,
    ProvisioningError,
    ToolNotFoundError,
)


class TestAgentboxError:
    def test_defaults(self):
        err = AgentboxError("oops")
        assert err.category == ErrorCategory.INTERNAL
        assert err.retryable is False
        assert err.cause is None
        assert str(err) == "oops"

    def test_with_context_sets_known_fields_and_metadata(self):
        err = AgentboxError("oops").with_context(task_id="t1", logs="tail")
        assert err.context.task_id == "t1"
        assert err.context.metadata == {"logs": "tail"}

    def test_to_dict(self):
        cause = ValueError("inner")
        err = ProvisioningError("create failed", cause=cause).with_context(task_id="t1")
        data = err.to_dict()
        assert data == {
            "type": "ProvisioningError",
            "message": "create failed",
            "category": "RUNTIME",
            "retryable": False,
            "context": {"task_id": "t1"},
            "cause": "inner",
        }
        assert err.__cause__ is cause

    def test_context_omits_none(self):
        assert ErrorContext(step="wait").to_dict() == {"step": "wait"}


class TestSubclasses:
    def test_pool_exhausted(self):
        err = PoolExhaustedError(2)
        assert "pool exhausted" in err.message
        assert err.category == ErrorCategory.CAPACITY
        assert err.retryable is True
        assert err.capacity == 2

    def test_timeout_message(self):
        err = ExecutionTimeoutError(300.0)
        assert err.message == "Task timed out after 300s"
        assert err.category == ErrorCategory.TIMEOUT

    def test_non_zero_exit(self):
        assert NonZeroExitError(3).message == "Task exited with code 3"
        err = NonZeroExitError(1, detail="tool crashed")
        assert err.message == "Task exited with code 1: tool crashed"
        assert err.exit_code == 1
        assert err.category == ErrorCategory.EXECUTION

    def test_tool_not_found_lists_registered(self):
        err = ToolNotFoundError("nope", ["echo", "alpha"])
        assert err.message == "Unknown tool 'nope' (registered: alpha, echo)"
        assert err.category == ErrorCategory.CONFIG

    def test_malformed_keeps_raw(self):
        err = MalformedEnvelopeError("bad", raw=b"{")
        assert err.raw == b"{"
        assert err.category == ErrorCategory.PARSE

    def test_runtime_error_hierarchy(self):
        err = ContainerNotFoundError("gone", returncode=1, stderr="No such container")
        assert isinstance(err, ContainerRuntimeError)
        assert err.returncode == 1
        assert err.stderr == "No such container"
