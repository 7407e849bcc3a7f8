"""Tests for agentbox.execution.supervisor — the task state machine end to end.

Runs against the stub runtime and in-memory store/bus, so every scenario
can assert on the exact progress sequence and container calls.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from agentbox.core.models import TaskState, TaskStatus
from agentbox.execution.runtimes import StubBehavior


def _mount(spec) -> Path:
    """Host side of the container's writable workspace volume."""
    return Path(next(v.host_path for v in spec.volumes if not v.read_only))


def _write_result(payload):
    def on_start(spec):
        (_mount(spec) / "result.json").write_text(json.dumps(payload))

    return on_start


def _calls_for(runtime, name):
    return [op for op, target in runtime.calls if target == name]


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_empty_tool_list_completes(self, supervisor, runtime, store, make_envelope):
        state = await supervisor.run(make_envelope("t1", tools=[]))

        assert state.status == TaskStatus.COMPLETED
        assert state.progress == 100
        assert state.step == "completed"
        assert state.result is None
        assert state.duration is not None and state.duration >= 0
        assert state.started_at and state.completed_at
        assert store.progress_history("t1") == [10, 30, 90, 100]

        ops = _calls_for(runtime, "agentbox-task-t1")
        assert ops.count("create") == 1
        assert ops.count("remove") == 1
        assert runtime.containers == {}

    @pytest.mark.asyncio
    async def test_result_artifact_read(self, supervisor, runtime, make_envelope):
        runtime.default = StubBehavior(on_start=_write_result({"tools": {"echo": "hi"}}))

        state = await supervisor.run(make_envelope("t1", tools=["echo"]))

        assert state.status == TaskStatus.COMPLETED
        assert state.result == {"tools": {"echo": "hi"}}

    @pytest.mark.asyncio
    async def test_unreadable_artifact_is_null(self, supervisor, runtime, make_envelope):
        def corrupt(spec):
            (_mount(spec) / "result.json").write_text("{half")

        runtime.default = StubBehavior(on_start=corrupt)
        state = await supervisor.run(make_envelope("t1"))

        assert state.status == TaskStatus.COMPLETED
        assert state.result is None

    @pytest.mark.asyncio
    async def test_envelope_written_before_start(self, supervisor, runtime, make_envelope):
        seen = {}

        def capture(spec):
            seen.update(json.loads((_mount(spec) / "task.json").read_text()))

        runtime.default = StubBehavior(on_start=capture)
        await supervisor.run(make_envelope("t1", task="summarize", tools=["echo"]))

        assert seen["id"] == "t1"
        assert seen["task"] == "summarize"
        assert seen["tools"] == ["echo"]

    @pytest.mark.asyncio
    async def test_progress_broadcast_on_channel(self, supervisor, bus, make_envelope):
        await supervisor.run(make_envelope("t1"))
        assert {e.event_type for e in bus.published} == {"progress:t1"}
        assert [e.payload["progress"] for e in bus.published] == [10, 30, 90, 100]

    @pytest.mark.asyncio
    async def test_usage_counters(self, supervisor, store, make_envelope):
        await supervisor.run(make_envelope("t1", callerToken="ask_0123456789abcdef"))
        assert await store.get_counter("usage:ask_012345:completed") == 1
        assert await store.get_counter("metrics:completed") == 1
        assert await store.get_counter("metrics:failed") == 0


class TestFailures:
    @pytest.mark.asyncio
    async def test_pool_exhausted(self, supervisor, pool, runtime, settings, store, make_envelope):
        pool._capacity = 1
        await pool.create("t1")

        state = await supervisor.run(make_envelope("t2"))

        assert state.status == TaskStatus.FAILED
        assert "pool exhausted" in state.message
        assert state.progress == 0
        assert state.error["type"] == "PoolExhaustedError"
        assert "agentbox-task-t2" not in [target for op, target in runtime.calls if op == "create"]
        assert store.progress_history("t2") == [10, 0]

    @pytest.mark.asyncio
    async def test_timeout_removes_container(self, supervisor, runtime, store, make_envelope):
        runtime.default = StubBehavior(hang=True)

        state = await supervisor.run(make_envelope("t1"))

        assert state.status == TaskStatus.FAILED
        assert "timed out" in state.message
        assert state.error["category"] == "TIMEOUT"
        assert _calls_for(runtime, "agentbox-task-t1").count("remove") == 1
        assert runtime.containers == {}
        assert store.progress_history("t1") == [10, 30, 0]

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, supervisor, runtime, make_envelope):
        runtime.default = StubBehavior(exit_code=3, logs=["loading", "tool crashed"])

        state = await supervisor.run(make_envelope("t1"))

        assert state.status == TaskStatus.FAILED
        assert state.message == "Task exited with code 3"
        assert state.error["type"] == "NonZeroExitError"
        assert "tool crashed" in state.error["context"]["logs"]
        assert runtime.containers == {}

    @pytest.mark.asyncio
    async def test_create_failure(self, supervisor, runtime, pool, make_envelope):
        runtime.default = StubBehavior(fail_create=True)

        state = await supervisor.run(make_envelope("t1"))

        assert state.status == TaskStatus.FAILED
        assert state.error["type"] == "ProvisioningError"
        assert pool.active_count == 0

    @pytest.mark.asyncio
    async def test_start_failure_still_removes(self, supervisor, runtime, pool, make_envelope):
        runtime.default = StubBehavior(fail_start=True)

        state = await supervisor.run(make_envelope("t1"))

        assert state.status == TaskStatus.FAILED
        ops = _calls_for(runtime, "agentbox-task-t1")
        assert ops.count("create") == 1 and ops.count("remove") == 1
        assert pool.active_count == 0

    @pytest.mark.asyncio
    async def test_unexpected_error_is_terminal(self, supervisor, runtime, make_envelope):
        def explode(spec):
            raise KeyError("surprise")

        runtime.default = StubBehavior(on_start=explode)

        state = await supervisor.run(make_envelope("t1"))

        assert state.status == TaskStatus.FAILED
        assert state.error["type"] == "AgentboxError"
        assert state.error["category"] == "INTERNAL"
        assert runtime.containers == {}

    @pytest.mark.asyncio
    async def test_failed_counters(self, supervisor, runtime, store, make_envelope):
        runtime.default = StubBehavior(exit_code=1)
        await supervisor.run(make_envelope("t1", callerToken="ask_0123456789abcdef"))
        assert await store.get_counter("usage:ask_012345:failed") == 1
        assert await store.get_counter("metrics:failed") == 1


class TestTerminalOrdering:
    @pytest.mark.asyncio
    async def test_remove_completes_before_terminal_publish(self, supervisor, runtime, bus, make_envelope):
        removed_at_publish = []

        async def on_event(event):
            if event.payload["status"] in ("completed", "failed"):
                removed_at_publish.append("agentbox-task-t1" not in runtime.containers)

        await bus.subscribe("progress:*", on_event)
        await supervisor.run(make_envelope("t1"))

        assert removed_at_publish == [True]

    @pytest.mark.asyncio
    async def test_duplicate_of_terminal_task_ignored(self, supervisor, runtime, store, make_envelope):
        await store.put(TaskState(task_id="t1", status=TaskStatus.COMPLETED, progress=100))

        state = await supervisor.run(make_envelope("t1"))

        assert state.status == TaskStatus.COMPLETED
        assert runtime.create_count == 0

    @pytest.mark.asyncio
    async def test_duplicate_of_live_task_ignored(self, supervisor, runtime, pool, bus, make_envelope):
        runtime.default = StubBehavior(run_seconds=0.1)
        first = asyncio.create_task(supervisor.run(make_envelope("t1")))
        while not pool.is_active("t1"):
            await asyncio.sleep(0)

        duplicate = await supervisor.run(make_envelope("t1"))
        final = await first

        assert duplicate.status == TaskStatus.RUNNING
        assert final.status == TaskStatus.COMPLETED
        assert runtime.create_count == 1
        assert "failed" not in [e.payload["status"] for e in bus.published]

    @pytest.mark.asyncio
    async def test_running_task_without_container_is_rerun(self, supervisor, runtime, store, make_envelope):
        await store.put(TaskState(task_id="t1", status=TaskStatus.RUNNING, progress=30))

        state = await supervisor.run(make_envelope("t1"))

        assert state.status == TaskStatus.COMPLETED
        assert runtime.create_count == 1


class TestWorkspaceIsolation:
    @pytest.mark.asyncio
    async def test_container_sees_only_its_own_workspace(self, supervisor, runtime, make_envelope):
        await supervisor.run(make_envelope("t1", callerToken="secret-token-of-t1"))

        seen = {}

        def inspect(spec):
            mount = _mount(spec)
            seen["files"] = sorted(p.name for p in mount.iterdir())
            seen["task"] = json.loads((mount / "task.json").read_text())

        runtime.default = StubBehavior(on_start=inspect)
        await supervisor.run(make_envelope("t2"))

        assert seen["files"] == ["task.json"]
        assert seen["task"]["id"] == "t2"
        assert "secret-token-of-t1" not in json.dumps(seen["task"])
