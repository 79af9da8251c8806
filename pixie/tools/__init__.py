"""Tool registry, executor and the built-in tool families."""

from pixie.tools.executor import ToolExecutionResult, ToolExecutor
from pixie.tools.registry import ToolDefinition, ToolRegistry

__all__ = ["ToolDefinition", "ToolExecutionResult", "ToolExecutor", "ToolRegistry"]
