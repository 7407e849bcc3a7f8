"""Docker runtime driven through the ``docker`` CLI.

Manages execution environments via the ``docker`` CLI in asyncio
subprocesses. No ``docker-py`` dependency: any engine exposing a
``docker``-compatible CLI (Docker Desktop, Podman, Colima) works.

Architecture Decisions:
    - subprocess, not docker-py: avoids a heavy dependency and
      platform-specific wheels.
    - ``create`` + ``start`` instead of ``run``: the supervisor writes the
      workspace between the two steps.
    - No ``--rm``: logs are collected after exit, then ``rm --force``
      removes the container explicitly.
    - ``docker wait`` runs without its own timeout; the pool cancels it,
      and cancellation kills the CLI process.

Tags:
    container, docker, lifecycle, subprocess, asyncio
"""

from __future__ import annotations

import asyncio
import json
import shutil
from dataclasses import dataclass

from agentbox.core.errors import ContainerNotFoundError, ContainerRuntimeError
from agentbox.core.logging import get_logger
from agentbox.execution.runtimes._types import (
    ContainerRecord,
    ContainerSpec,
    parse_docker_timestamp,
)

logger = get_logger(__name__)

_NOT_FOUND_MARKERS = ("No such container", "no such container")


@dataclass
class CommandResult:
    """Outcome of one docker CLI invocation."""

    args: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def not_found(self) -> bool:
        return any(marker in self.stderr for marker in _NOT_FOUND_MARKERS)


class DockerNotFoundError(ContainerRuntimeError):
    """Raised when the docker CLI is not on PATH."""


class DockerCLIRuntime:
    """Container runtime backed by the ``docker`` CLI.

    Example::

        runtime = DockerCLIRuntime()
        container_id = await runtime.create(spec)
        await runtime.start(spec.name)
        exit_code = await runtime.wait(spec.name)
        await runtime.remove(spec.name)
    """

    def __init__(
        self,
        docker_binary: str = "docker",
        *,
        command_timeout: float = 60.0,
    ) -> None:
        self._docker_cmd = self._find_docker(docker_binary)
        self._command_timeout = command_timeout

    @property
    def runtime_name(self) -> str:
        return "docker"

    @staticmethod
    def _find_docker(binary: str) -> str:
        docker = shutil.which(binary)
        if docker is None:
            raise DockerNotFoundError(
                f"Docker CLI {binary!r} not found on PATH. Install Docker or set "
                "AGENTBOX_DOCKER_BINARY."
            )
        return docker

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create(self, spec: ContainerSpec) -> str:
        result = await self._run_docker(self.build_create_args(spec))
        container_id = result.stdout.strip()[:12]
        logger.debug("docker.created", container=spec.name, container_id=container_id)
        return container_id

    async def start(self, name: str) -> None:
        result = await self._run_docker(["start", name], check=False)
        self._raise_for(result, name)

    async def wait(self, name: str) -> int:
        result = await self._run_docker(["wait", name], check=False, bounded=False)
        self._raise_for(result, name)
        try:
            return int(result.stdout.strip().splitlines()[-1])
        except (ValueError, IndexError) as exc:
            raise ContainerRuntimeError(
                f"Unexpected output from docker wait {name}: {result.stdout!r}",
                returncode=result.returncode,
                cause=exc,
            ) from exc

    async def logs(self, name: str) -> str:
        result = await self._run_docker(["logs", "--timestamps", name], check=False)
        self._raise_for(result, name)
        return result.stdout + result.stderr

    async def remove(self, name: str) -> bool:
        result = await self._run_docker(["rm", "--force", name], check=False)
        if result.returncode == 0:
            return True
        if result.not_found:
            return False
        raise ContainerRuntimeError(
            f"docker rm failed for {name} (exit {result.returncode}): {result.stderr.strip()}",
            returncode=result.returncode,
            stderr=result.stderr,
        )

    async def list_containers(self, label: str) -> list[ContainerRecord]:
        """List containers by label via ``docker ps`` + ``docker inspect``.

        Containers that vanish between the two calls are skipped.
        """
        result = await self._run_docker(
            ["ps", "--all", "--quiet", "--no-trunc", "--filter", f"label={label}"],
        )
        records: list[ContainerRecord] = []
        for container_id in result.stdout.split():
            inspected = await self._run_docker(["inspect", container_id], check=False)
            if inspected.returncode != 0:
                continue
            try:
                records.append(self._record_from_inspect(json.loads(inspected.stdout)[0]))
            except (ValueError, KeyError, IndexError) as exc:
                logger.warning("docker.inspect_unparseable", container_id=container_id, error=str(exc))
        return records

    # ------------------------------------------------------------------
    # Command construction
    # ------------------------------------------------------------------

    @staticmethod
    def build_create_args(spec: ContainerSpec) -> list[str]:
        """Translate a :class:`ContainerSpec` into ``docker create`` arguments."""
        args = [
            "create",
            "--name", spec.name,
            "--memory", spec.resources.memory,
            "--cpus", f"{spec.resources.cpus:g}",
            "--network", spec.network_mode,
        ]
        for key, value in spec.labels.items():
            args.extend(["--label", f"{key}={value}"])
        for key, value in spec.env.items():
            args.extend(["--env", f"{key}={value}"])
        for volume in spec.volumes:
            args.extend(["--volume", volume.to_docker_arg()])
        if spec.working_dir:
            args.extend(["--workdir", spec.working_dir])
        args.append(spec.image)
        args.extend(spec.command)
        return args

    @staticmethod
    def _record_from_inspect(data: dict) -> ContainerRecord:
        return ContainerRecord(
            container_id=data["Id"][:12],
            name=data["Name"].lstrip("/"),
            created_at=parse_docker_timestamp(data["Created"]),
            labels=(data.get("Config") or {}).get("Labels") or {},
            state=(data.get("State") or {}).get("Status", "unknown"),
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _raise_for(result: CommandResult, name: str) -> None:
        if result.returncode == 0:
            return
        error_cls = ContainerNotFoundError if result.not_found else ContainerRuntimeError
        raise error_cls(
            f"docker {result.args[0]} failed for {name} (exit {result.returncode}): "
            f"{result.stderr.strip()}",
            returncode=result.returncode,
            stderr=result.stderr,
        )

    async def _run_docker(
        self,
        args: list[str],
        check: bool = True,
        *,
        bounded: bool = True,
    ) -> CommandResult:
        """Run a docker CLI command.

        ``bounded=False`` disables the command timeout (used by ``wait``).
        Timeout or cancellation kills the CLI process before propagating.
        """
        timeout = self._command_timeout if bounded else None
        cmd = [self._docker_cmd, *args]
        logger.debug("docker.exec", cmd=" ".join(cmd))

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ContainerRuntimeError(f"Could not execute docker: {exc}", cause=exc) from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except TimeoutError as exc:
            await self._kill(process)
            raise ContainerRuntimeError(
                f"Docker command timed out after {timeout}s: {' '.join(args)}"
            ) from exc
        except asyncio.CancelledError:
            await self._kill(process)
            raise

        result = CommandResult(
            args=args,
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )
        if check and result.returncode != 0:
            raise ContainerRuntimeError(
                f"Docker command failed (exit {result.returncode}): "
                f"{' '.join(args)}\n{result.stderr}",
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()
