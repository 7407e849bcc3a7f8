"""Tool Registry: injectable name → tool lookup.

Manifesto:
    A task names the tools it wants by string. Those strings come from
    outside and must never become import paths. The registry is filled
    at startup with explicitly registered tools, and resolution fails
    closed with :class:`~agentbox.core.errors.ToolNotFoundError`.

ARCHITECTURE
────────────
::

    ToolRegistry
      ├── .register(name, tool)  ─ store a Tool (or plain callable)
      ├── .resolve(name)         ─ lookup, ToolNotFoundError if absent
      ├── .has(name)             ─ existence check
      └── .names()               ─ sorted registered names

    @tool("name", registry=...)  ─ decorator for plain functions
    get_default_registry()       ─ module-level singleton with built-ins
    reset_default_registry()     ─ clear for testing

Tags:
    agentbox, runner, registry, tools, capability
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from agentbox.core.errors import ToolNotFoundError


@runtime_checkable
class Tool(Protocol):
    """A capability a task can invoke inside the execution environment."""

    def execute(self, input: dict[str, Any]) -> Any:
        """Run with ``{"task": str, "previous": Any}`` and return a JSON-able result."""
        ...


class FunctionTool:
    """Adapts a plain callable to the :class:`Tool` protocol."""

    def __init__(self, func: Callable[[dict[str, Any]], Any], description: str | None = None):
        self._func = func
        self.description = description or (func.__doc__ or "").strip().split("\n")[0]

    def execute(self, input: dict[str, Any]) -> Any:
        return self._func(input)

    def __repr__(self) -> str:
        return f"FunctionTool({getattr(self._func, '__name__', self._func)!r})"


class ToolRegistry:
    """Injectable tool registry.

    Example:
        >>> registry = ToolRegistry()
        >>>
        >>> @tool("shout", registry=registry)
        ... def shout(input):
        ...     return input["task"].upper()
        >>>
        >>> registry.resolve("shout").execute({"task": "hi", "previous": None})
        'HI'
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, name: str, tool: Tool | Callable[[dict[str, Any]], Any]) -> None:
        if not isinstance(tool, Tool):
            if not callable(tool):
                raise TypeError(f"Tool {name!r} must implement execute() or be callable")
            tool = FunctionTool(tool)
        self._tools[name] = tool

    def resolve(self, name: str) -> Tool:
        """Return the tool registered as ``name``.

        Raises:
            ToolNotFoundError: If no tool is registered under that name.
        """
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFoundError(name, list(self._tools)) from None

    def has(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return sorted(self._tools)

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def clear(self) -> None:
        self._tools.clear()


def tool(name: str, *, registry: ToolRegistry | None = None) -> Callable:
    """Register a plain function as a tool (default registry unless given)."""

    def decorator(func: Callable[[dict[str, Any]], Any]) -> Callable[[dict[str, Any]], Any]:
        (registry or get_default_registry()).register(name, func)
        return func

    return decorator


# === GLOBAL DEFAULT REGISTRY ===

_default_registry: ToolRegistry | None = None


def get_default_registry() -> ToolRegistry:
    """Get the global registry, populated with the built-in tools on first access."""
    global _default_registry
    if _default_registry is None:
        from agentbox.runner.tools import register_builtin_tools

        _default_registry = ToolRegistry()
        register_builtin_tools(_default_registry)
    return _default_registry


def reset_default_registry() -> None:
    """Drop the global registry (for testing)."""
    global _default_registry
    _default_registry = None
