"""Tests for agentbox.execution.runtimes.docker — docker CLI adapter.

All docker invocations are mocked at ``asyncio.create_subprocess_exec``;
no Docker required.
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agentbox.core.errors import ContainerNotFoundError, ContainerRuntimeError
from agentbox.execution.runtimes import (
    ContainerSpec,
    DockerCLIRuntime,
    DockerNotFoundError,
    ResourceLimits,
    VolumeMount,
    parse_docker_timestamp,
)


def _process(returncode: int = 0, stdout: str = "", stderr: str = "") -> MagicMock:
    proc = MagicMock()
    proc.returncode = returncode
    proc.communicate = AsyncMock(return_value=(stdout.encode(), stderr.encode()))
    proc.wait = AsyncMock(return_value=returncode)
    return proc


@pytest.fixture
def docker():
    with patch("agentbox.execution.runtimes.docker.shutil.which", return_value="/usr/bin/docker"):
        yield DockerCLIRuntime(command_timeout=5)


def _spec() -> ContainerSpec:
    return ContainerSpec(
        name="agentbox-task-t1",
        image="agentbox-runner:latest",
        command=("agentbox", "run-task", "t1"),
        env={"TASK_ID": "t1"},
        labels={"agentbox.managed": "true", "agentbox.task_id": "t1"},
        volumes=(
            VolumeMount("/srv/workspace", "/app/workspace"),
            VolumeMount("/srv/config", "/app/config", read_only=True),
        ),
        resources=ResourceLimits(memory="256m", cpus=0.5),
        working_dir="/app",
    )


class TestDockerDiscovery:
    def test_missing_binary(self):
        with patch("agentbox.execution.runtimes.docker.shutil.which", return_value=None):
            with pytest.raises(DockerNotFoundError, match="not found"):
                DockerCLIRuntime()

    def test_runtime_name(self, docker):
        assert docker.runtime_name == "docker"


class TestBuildCreateArgs:
    def test_isolation_flags(self):
        args = DockerCLIRuntime.build_create_args(_spec())
        assert args[0] == "create"
        assert args[args.index("--name") + 1] == "agentbox-task-t1"
        assert args[args.index("--memory") + 1] == "256m"
        assert args[args.index("--cpus") + 1] == "0.5"
        assert args[args.index("--network") + 1] == "none"

    def test_mounts_labels_env(self):
        args = DockerCLIRuntime.build_create_args(_spec())
        assert "/srv/workspace:/app/workspace:rw" in args
        assert "/srv/config:/app/config:ro" in args
        assert "agentbox.managed=true" in args
        assert "TASK_ID=t1" in args
        assert args[-4:] == ["agentbox-runner:latest", "agentbox", "run-task", "t1"]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_create_returns_short_id(self, docker):
        with patch("asyncio.create_subprocess_exec", return_value=_process(stdout="abcdef1234567890\n")) as exec_:
            container_id = await docker.create(_spec())
        assert container_id == "abcdef123456"
        assert exec_.call_args.args[:2] == ("/usr/bin/docker", "create")

    @pytest.mark.asyncio
    async def test_create_failure_raises(self, docker):
        with patch("asyncio.create_subprocess_exec", return_value=_process(125, stderr="Conflict")):
            with pytest.raises(ContainerRuntimeError) as excinfo:
                await docker.create(_spec())
        assert excinfo.value.returncode == 125

    @pytest.mark.asyncio
    async def test_wait_parses_exit_code(self, docker):
        with patch("asyncio.create_subprocess_exec", return_value=_process(stdout="3\n")):
            assert await docker.wait("agentbox-task-t1") == 3

    @pytest.mark.asyncio
    async def test_wait_garbage_output(self, docker):
        with patch("asyncio.create_subprocess_exec", return_value=_process(stdout="")):
            with pytest.raises(ContainerRuntimeError, match="Unexpected output"):
                await docker.wait("agentbox-task-t1")

    @pytest.mark.asyncio
    async def test_start_not_found(self, docker):
        proc = _process(1, stderr="Error: No such container: agentbox-task-t1")
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            with pytest.raises(ContainerNotFoundError):
                await docker.start("agentbox-task-t1")

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, docker):
        with patch("asyncio.create_subprocess_exec", return_value=_process()):
            assert await docker.remove("agentbox-task-t1") is True
        gone = _process(1, stderr="Error: No such container: agentbox-task-t1")
        with patch("asyncio.create_subprocess_exec", return_value=gone):
            assert await docker.remove("agentbox-task-t1") is False

    @pytest.mark.asyncio
    async def test_remove_other_failure_raises(self, docker):
        with patch("asyncio.create_subprocess_exec", return_value=_process(1, stderr="daemon down")):
            with pytest.raises(ContainerRuntimeError, match="daemon down"):
                await docker.remove("agentbox-task-t1")

    @pytest.mark.asyncio
    async def test_logs_combines_streams(self, docker):
        with patch("asyncio.create_subprocess_exec", return_value=_process(stdout="out\n", stderr="err\n")):
            assert await docker.logs("agentbox-task-t1") == "out\nerr\n"

    @pytest.mark.asyncio
    async def test_command_timeout_kills_process(self, docker):
        proc = _process()

        async def slow():
            await asyncio.sleep(10)

        proc.communicate = slow
        docker._command_timeout = 0.01
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            with pytest.raises(ContainerRuntimeError, match="timed out"):
                await docker.start("agentbox-task-t1")
        proc.kill.assert_called_once()

    @pytest.mark.asyncio
    async def test_exec_oserror_wrapped(self, docker):
        with patch("asyncio.create_subprocess_exec", side_effect=OSError("exec format error")):
            with pytest.raises(ContainerRuntimeError, match="Could not execute docker"):
                await docker.start("agentbox-task-t1")


class TestListContainers:
    @pytest.mark.asyncio
    async def test_ps_then_inspect(self, docker):
        inspect = [
            {
                "Id": "0123456789abcdef",
                "Name": "/agentbox-task-old",
                "Created": "2026-01-15T10:30:00.123456789Z",
                "Config": {"Labels": {"agentbox.managed": "true"}},
                "State": {"Status": "exited"},
            }
        ]
        procs = [
            _process(stdout="0123456789abcdef\nfedcba9876543210\n"),
            _process(stdout=json.dumps(inspect)),
            _process(1, stderr="Error: No such object"),
        ]
        with patch("asyncio.create_subprocess_exec", side_effect=procs) as exec_:
            records = await docker.list_containers("agentbox.managed=true")

        assert "label=agentbox.managed=true" in exec_.call_args_list[0].args
        assert len(records) == 1
        record = records[0]
        assert record.name == "agentbox-task-old"
        assert record.container_id == "0123456789ab"
        assert record.state == "exited"
        assert record.created_at == datetime(2026, 1, 15, 10, 30, 0, 123456, tzinfo=UTC)


class TestParseTimestamp:
    def test_nanoseconds_truncated(self):
        ts = parse_docker_timestamp("2024-01-15T10:30:00.123456789Z")
        assert ts.microsecond == 123456
        assert ts.tzinfo is not None

    def test_offset_preserved(self):
        ts = parse_docker_timestamp("2024-01-15T10:30:00+02:00")
        assert ts.utcoffset().total_seconds() == 7200

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_docker_timestamp("yesterday")
