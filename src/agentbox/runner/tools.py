"""Built-in tools available in every execution environment."""

from __future__ import annotations

from typing import Any

from agentbox.runner.registry import ToolRegistry


class EchoTool:
    """Returns the task text and whatever the previous tool produced."""

    description = "Echo the task text back"

    def execute(self, input: dict[str, Any]) -> dict[str, Any]:
        return {"echo": input.get("task", ""), "previous": input.get("previous")}


def register_builtin_tools(registry: ToolRegistry) -> None:
    registry.register("echo", EchoTool())
