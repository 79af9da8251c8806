"""
Tool Registry — the catalog of tools Pixie's sessions can call.

Every tool is registered with its JSON Schema, a description written for the
model, and an async handler. The registry serves two purposes:

1. DISCOVERY: building the ``tools`` array for a Messages API call, optionally
   restricted to a subset of names (delegated sessions get a narrower set than
   the primary session).

2. DISPATCH: mapping a ``tool_use`` block's name back to its handler.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class ToolDefinition:
    """
    A registered tool with its schema, description, and handler.

    The JSON schema is exactly what gets sent to the API in the ``tools``
    array. Handlers receive the validated tool input as keyword arguments and
    return a string (or anything with a useful ``str()``).
    """
    name: str
    description: str
    input_schema: dict[str, Any]          # JSON Schema for tool parameters
    handler: Optional[Callable] = None
    category: str = "general"             # delegation, notes, toolbox, skills, files
    enabled: bool = True
    timeout: Optional[float] = None       # Per-tool timeout in seconds (None = executor default)

    def to_api_format(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


class ToolRegistry:
    """Central registry for all tools available to runtime sessions."""

    def __init__(self):
        self._tools: dict[str, ToolDefinition] = {}

    def register(self, tool: ToolDefinition, *, allow_override: bool = False) -> None:
        """Register a tool, blocking accidental name collisions by default."""
        existing = self._tools.get(tool.name)
        if existing is not None and not allow_override:
            logger.warning(
                "tool_registry.name_collision",
                name=tool.name,
                existing_category=existing.category,
                new_category=tool.category,
            )
            raise ValueError(
                f"Tool '{tool.name}' is already registered. "
                "Use allow_override=True for an explicit replacement."
            )
        self._tools[tool.name] = tool
        logger.debug("tool_registry.registered", name=tool.name, category=tool.category)

    def unregister(self, name: str) -> bool:
        if name in self._tools:
            del self._tools[name]
            logger.info("tool_registry.unregistered", name=name)
            return True
        return False

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def names(self, *, exclude_categories: Iterable[str] = ()) -> list[str]:
        excluded = set(exclude_categories)
        return [t.name for t in self._tools.values() if t.category not in excluded]

    def get_api_tools(self, names: Optional[Iterable[str]] = None) -> list[dict[str, Any]]:
        """The ``tools`` array for an API call; restricted to *names* when given."""
        allowed = set(names) if names is not None else None
        return [
            tool.to_api_format()
            for tool in self._tools.values()
            if tool.enabled and (allowed is None or tool.name in allowed)
        ]

    def list_tools(self) -> list[dict[str, Any]]:
        return [
            {
                "name": t.name,
                "description": t.description[:100],
                "category": t.category,
                "enabled": t.enabled,
            }
            for t in self._tools.values()
        ]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
