"""In-environment runner: tool registry and the ``run-task`` entrypoint."""

from agentbox.runner.registry import (
    FunctionTool,
    Tool,
    ToolRegistry,
    get_default_registry,
    reset_default_registry,
    tool,
)
from agentbox.runner.task import EXIT_BAD_INPUT, EXIT_OK, EXIT_TOOL_FAILED, run_task

__all__ = [
    "EXIT_BAD_INPUT",
    "EXIT_OK",
    "EXIT_TOOL_FAILED",
    "FunctionTool",
    "Tool",
    "ToolRegistry",
    "get_default_registry",
    "reset_default_registry",
    "run_task",
    "tool",
]
