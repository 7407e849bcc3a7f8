"""Tests for agentbox.execution.worker — bounded concurrency and graceful shutdown."""

from __future__ import annotations

import asyncio
import json
import signal
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from agentbox.execution.progress import ProgressPublisher
from agentbox.execution.queue import QueueConsumer
from agentbox.execution.runtimes import StubBehavior
from agentbox.execution.sweeper import CleanupSweeper
from agentbox.execution.worker import ExecutorWorker, WorkerStats


class FakeConsumer:
    """Hands out queued envelopes, then blocks until stopped."""

    queue_name = "fake"

    def __init__(self, envelopes):
        self._queue: asyncio.Queue = asyncio.Queue()
        for envelope in envelopes:
            self._queue.put_nowait(envelope)
        self.dropped = 0

    async def next(self):
        return await self._queue.get()

    def stop(self):
        self._queue.put_nowait(None)


async def _until(predicate, timeout: float = 3.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


class TestRun:
    @pytest.mark.asyncio
    async def test_processes_tasks_within_capacity(self, supervisor, publisher, runtime, store, make_envelope):
        runtime.default = StubBehavior(run_seconds=0.05)
        envelopes = [make_envelope(f"t{i}") for i in range(5)]
        worker = ExecutorWorker(FakeConsumer(envelopes), supervisor, publisher, concurrency=2)

        run = asyncio.create_task(worker.run())
        await _until(lambda: worker.get_stats().processed == 5)
        worker.stop()
        stats = await run

        assert stats.completed == 5
        assert stats.failed == 0
        assert stats.active == 0
        assert runtime.live_high_water <= 2
        assert runtime.containers == {}
        for i in range(5):
            assert (await store.get(f"t{i}")).progress == 100

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight(self, supervisor, publisher, runtime, store, make_envelope):
        runtime.default = StubBehavior(run_seconds=0.2)
        worker = ExecutorWorker(FakeConsumer([make_envelope("t1")]), supervisor, publisher, concurrency=2)

        run = asyncio.create_task(worker.run())
        await _until(lambda: runtime.create_count == 1)
        worker.stop()
        stats = await run

        assert stats.processed == 1
        assert (await store.get("t1")).status.value == "completed"

    @pytest.mark.asyncio
    async def test_malformed_message_dropped_then_next_processed(self, supervisor, publisher, store):
        valid = json.dumps({"id": "t1", "task": "hello"}).encode()
        client = AsyncMock()
        items = [(b"q", b"this is not json"), (b"q", valid)]

        async def brpop(keys, timeout):
            if items:
                return items.pop(0)
            await asyncio.sleep(0.01)
            return None

        client.brpop.side_effect = brpop
        consumer = QueueConsumer(client, "q", poll_seconds=1)
        worker = ExecutorWorker(consumer, supervisor, publisher, concurrency=1)

        run = asyncio.create_task(worker.run())
        await _until(lambda: worker.get_stats().processed == 1)
        worker.stop()
        stats = await run

        assert stats.dropped == 1
        assert stats.completed == 1
        assert (await store.get("t1")).status.value == "completed"
        assert list(store.history) == ["t1"]

    @pytest.mark.asyncio
    async def test_queue_errors_are_retried(self, supervisor, publisher, make_envelope):
        consumer = FakeConsumer([make_envelope("t1")])
        real_next = consumer.next
        calls = 0

        async def flaky():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RedisConnectionError("down")
            return await real_next()

        consumer.next = flaky
        worker = ExecutorWorker(consumer, supervisor, publisher, concurrency=1, retry_delay=0.01)

        run = asyncio.create_task(worker.run())
        await _until(lambda: worker.get_stats().processed == 1)
        worker.stop()
        stats = await run

        assert stats.completed == 1
        assert calls >= 2

    @pytest.mark.asyncio
    async def test_supervisor_crash_counted_and_slot_released(self, publisher, make_envelope):
        supervisor = AsyncMock()
        supervisor.run.side_effect = RuntimeError("store unreachable")
        worker = ExecutorWorker(
            FakeConsumer([make_envelope("t1"), make_envelope("t2")]), supervisor, publisher, concurrency=1,
        )

        run = asyncio.create_task(worker.run())
        await _until(lambda: worker.get_stats().processed == 2)
        worker.stop()
        stats = await run

        assert stats.failed == 2

    @pytest.mark.asyncio
    async def test_sweeper_started_and_stopped(self, supervisor, publisher, runtime, settings):
        sweeper = CleanupSweeper(runtime, settings)
        worker = ExecutorWorker(FakeConsumer([]), supervisor, publisher, sweeper, concurrency=1)

        run = asyncio.create_task(worker.run())
        await _until(lambda: sweeper.running)
        worker.stop()
        await run

        assert not sweeper.running

    @pytest.mark.asyncio
    async def test_signal_triggers_stop(self, supervisor, publisher):
        worker = ExecutorWorker(FakeConsumer([]), supervisor, publisher)
        run = asyncio.create_task(worker.run())
        await asyncio.sleep(0)

        worker._handle_signal(signal.SIGTERM)
        stats = await asyncio.wait_for(run, 1)

        assert stats.processed == 0


class TestFromSettings:
    def test_wires_components(self, settings, runtime):
        client = AsyncMock()
        worker = ExecutorWorker.from_settings(settings, runtime=runtime, client=client)

        assert worker._concurrency == settings.max_containers
        assert isinstance(worker._consumer, QueueConsumer)
        assert worker._consumer.queue_name == settings.queue_name
        assert isinstance(worker._publisher, ProgressPublisher)
        assert isinstance(worker._sweeper, CleanupSweeper)


def test_stats_to_dict():
    data = WorkerStats(processed=3, completed=2, failed=1).to_dict()
    assert data["processed"] == 3
    assert data["started_at"] is None
