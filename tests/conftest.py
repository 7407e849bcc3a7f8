"""
Shared pytest fixtures for agentbox tests.

This module provides:
- Isolated ``ExecutorSettings`` rooted in a temporary directory
- The stub container runtime and in-memory state store / event bus
- A fully wired pool → publisher → supervisor stack for scenario tests

Nothing here needs Docker or Redis; those boundaries are mocked in the
tests that exercise them directly.
"""

import sys
from pathlib import Path

import pytest

# Ensure agentbox package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from agentbox.core.config import ExecutorSettings, clear_settings_cache
from agentbox.core.events.memory import InMemoryEventBus
from agentbox.core.models import TaskEnvelope
from agentbox.core.store import InMemoryTaskStateStore
from agentbox.execution.pool import ContainerPool
from agentbox.execution.progress import ProgressPublisher
from agentbox.execution.runtimes import StubContainerRuntime
from agentbox.execution.supervisor import ExecutionSupervisor
from agentbox.execution.workspace import TaskWorkspace
from agentbox.runner.registry import reset_default_registry


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def clean_state(monkeypatch):
    """Reset caches and keep host AGENTBOX_* variables out of tests."""
    import os

    for key in list(os.environ):
        if key.startswith("AGENTBOX_"):
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    reset_default_registry()
    yield
    clear_settings_cache()
    reset_default_registry()


# =============================================================================
# Settings & components
# =============================================================================


@pytest.fixture
def settings(tmp_path: Path) -> ExecutorSettings:
    return ExecutorSettings(
        _env_file=None,
        max_containers=2,
        task_timeout_seconds=0.5,
        workspace_dir=tmp_path / "workspace",
        config_dir=tmp_path / "config",
        cleanup_after_ms=60_000,
        cleanup_interval_seconds=0.05,
        queue_poll_seconds=0.05,
    )


@pytest.fixture
def runtime() -> StubContainerRuntime:
    return StubContainerRuntime()


@pytest.fixture
def store() -> InMemoryTaskStateStore:
    return InMemoryTaskStateStore()


@pytest.fixture
def bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def workspace(settings: ExecutorSettings) -> TaskWorkspace:
    return TaskWorkspace(settings.workspace_dir)


@pytest.fixture
def pool(runtime, settings) -> ContainerPool:
    return ContainerPool(runtime, settings)


@pytest.fixture
def publisher(store, bus) -> ProgressPublisher:
    return ProgressPublisher(store, bus)


@pytest.fixture
def supervisor(pool, publisher, store, workspace, settings) -> ExecutionSupervisor:
    return ExecutionSupervisor(pool, publisher, store, workspace, settings)


@pytest.fixture
def make_envelope():
    def _make(task_id: str = "t1", **kwargs) -> TaskEnvelope:
        data = {"id": task_id, "task": "say hello", "tools": [], "callerToken": "ask_0123456789abcdef"}
        data.update(kwargs)
        return TaskEnvelope.model_validate(data)

    return _make
