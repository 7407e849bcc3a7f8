"""Container runtime adapters.

Architecture:

    .. code-block:: text

        agentbox.execution.runtimes
        ├── __init__.py  ← Public API (this file)
        ├── _types.py    ← ContainerRuntime protocol + spec/record types
        ├── docker.py    ← DockerCLIRuntime (docker CLI via asyncio subprocess)
        └── stub.py      ← StubContainerRuntime (in-memory, tests/dry runs)

    The pool talks to a ``ContainerRuntime``; it never shells out itself.
    The sweeper talks to the same runtime through ``list_containers``.

Modules:
    _types      - ContainerRuntime, ContainerSpec, ContainerRecord,
                  VolumeMount, ResourceLimits, parse_docker_timestamp
    docker      - DockerCLIRuntime, DockerNotFoundError
    stub        - StubContainerRuntime, StubBehavior
"""

from agentbox.execution.runtimes._types import (
    ContainerRecord,
    ContainerRuntime,
    ContainerSpec,
    ResourceLimits,
    VolumeMount,
    parse_docker_timestamp,
)
from agentbox.execution.runtimes.docker import DockerCLIRuntime, DockerNotFoundError
from agentbox.execution.runtimes.stub import StubBehavior, StubContainerRuntime

__all__ = [
    "ContainerRecord",
    "ContainerRuntime",
    "ContainerSpec",
    "DockerCLIRuntime",
    "DockerNotFoundError",
    "ResourceLimits",
    "StubBehavior",
    "StubContainerRuntime",
    "VolumeMount",
    "parse_docker_timestamp",
]
