"""Executor configuration.

Quick start::

    from agentbox.core.config import get_settings

    settings = get_settings()
    print(settings.max_containers)       # 2
    print(settings.key_prefix)           # agentbox:

Guardrails:
    ❌ Reading ``os.environ`` ad-hoc in components
    ✅ Passing ``ExecutorSettings`` into constructors
"""

from .settings import ExecutorSettings, clear_settings_cache, get_settings

__all__ = [
    "ExecutorSettings",
    "clear_settings_cache",
    "get_settings",
]
