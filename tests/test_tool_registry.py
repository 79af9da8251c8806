from __future__ import annotations

import pytest

from pixie.tools.registry import ToolDefinition, ToolRegistry


def _tool(name: str, category: str = "general") -> ToolDefinition:
    return ToolDefinition(
        name=name,
        description=f"{name} tool",
        input_schema={"type": "object", "properties": {}},
        handler=lambda: name,
        category=category,
    )


def test_register_and_lookup():
    registry = ToolRegistry()
    registry.register(_tool("a"))
    assert "a" in registry
    assert len(registry) == 1
    assert registry.get("a").name == "a"
    assert registry.get("missing") is None


def test_name_collision_is_rejected():
    registry = ToolRegistry()
    registry.register(_tool("a"))
    with pytest.raises(ValueError, match="already registered"):
        registry.register(_tool("a"))
    registry.register(_tool("a", category="other"), allow_override=True)
    assert registry.get("a").category == "other"


def test_names_excluding_categories():
    registry = ToolRegistry()
    registry.register(_tool("create_delegate", "delegation"))
    registry.register(_tool("save_note", "notes"))
    registry.register(_tool("read_file", "files"))
    assert registry.names(exclude_categories=("delegation",)) == ["save_note", "read_file"]


def test_api_tools_restricted_to_names():
    registry = ToolRegistry()
    registry.register(_tool("a"))
    registry.register(_tool("b"))
    disabled = _tool("c")
    disabled.enabled = False
    registry.register(disabled)

    assert [t["name"] for t in registry.get_api_tools()] == ["a", "b"]
    assert registry.get_api_tools(["b"]) == [
        {"name": "b", "description": "b tool", "input_schema": {"type": "object", "properties": {}}}
    ]


def test_unregister():
    registry = ToolRegistry()
    registry.register(_tool("a"))
    assert registry.unregister("a") is True
    assert registry.unregister("a") is False
