"""
Centralized settings for the executor.

Manifesto:
    One validated, cached settings object replaces scattered ``os.environ``
    lookups. Every knob the executor consumes (pool size, resource limits,
    timeouts, Redis addresses, image reference) lives here and is read from
    ``AGENTBOX_*`` environment variables or a ``.env`` file.

Example::

    AGENTBOX_MAX_CONTAINERS=4
    AGENTBOX_TASK_TIMEOUT_SECONDS=120
    AGENTBOX_REDIS_URL=redis://redis:6379/0

Tags:
    agentbox, configuration, settings, pydantic, caching, validation
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ExecutorSettings(BaseSettings):
    """Executor configuration.

    All fields can be set via ``AGENTBOX_*`` environment variables (e.g.
    ``AGENTBOX_MAX_CONTAINERS=4``) or through a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Redis ────────────────────────────────────────────────────
    redis_url: str = Field(default="redis://localhost:6379/0")
    queue_name: str = Field(default="agentbox:queue:tasks")
    key_prefix: str = Field(default="agentbox:", description="Prefix for state keys and channels")
    queue_poll_seconds: float = Field(
        default=1.0, gt=0,
        description="BRPOP timeout; bounds how long shutdown waits on an idle queue",
    )

    # ── Container pool ───────────────────────────────────────────
    max_containers: int = Field(default=2, ge=1)
    memory_limit: str = Field(default="256m")
    cpu_limit: float = Field(default=0.5, gt=0)
    network_mode: str = Field(default="none")
    image: str = Field(default="agentbox-runner:latest")
    entrypoint: list[str] = Field(
        default=["agentbox", "run-task"],
        description="Container command; the task id is appended",
    )
    container_prefix: str = Field(default="agentbox-task-")
    label_prefix: str = Field(default="agentbox")
    docker_binary: str = Field(default="docker")
    docker_command_timeout_seconds: float = Field(default=60.0, gt=0)

    # ── Volumes ──────────────────────────────────────────────────
    workspace_dir: Path = Field(default=Path("workspace"))
    config_dir: Path = Field(default=Path("config"))
    container_workspace_path: str = Field(default="/app/workspace")
    container_config_path: str = Field(default="/app/config")

    # ── Timeouts / retention ─────────────────────────────────────
    task_timeout_seconds: float = Field(default=300.0, gt=0)
    cleanup_after_ms: int = Field(default=3_600_000, ge=0)
    cleanup_interval_seconds: float = Field(default=600.0, gt=0)
    webhook_timeout_seconds: float = Field(default=5.0, gt=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="auto", description="json, console or auto")
    service_name: str = Field(default="agentbox-executor")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value!r}")
        return level

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        if value not in {"json", "console", "auto"}:
            raise ValueError(f"log_format must be json, console or auto, got {value!r}")
        return value

    @field_validator("entrypoint")
    @classmethod
    def _non_empty_entrypoint(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("entrypoint must contain at least one argument")
        return value

    # ── Derived properties ───────────────────────────────────────

    @property
    def json_logs(self) -> bool | None:
        """Tri-state flag for :func:`configure_logging`."""
        return {"json": True, "console": False}.get(self.log_format)


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, ExecutorSettings] = {}


def get_settings(
    *,
    env_file: str | Path | None = None,
    _force_reload: bool = False,
) -> ExecutorSettings:
    """Load, validate, and cache an :class:`ExecutorSettings` instance.

    Parameters
    ----------
    env_file:
        Explicit ``.env`` file. Defaults to ``.env`` in the working directory.
    _force_reload:
        Bypass the cache.
    """
    cache_key = str(env_file or "")
    if not _force_reload and cache_key in _settings_cache:
        return _settings_cache[cache_key]

    if env_file is not None:
        settings = ExecutorSettings(_env_file=env_file)  # type: ignore[call-arg]
    else:
        settings = ExecutorSettings()

    _settings_cache[cache_key] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()
