"""
Tool Executor — runs tool calls requested by a runtime session.

When the model returns a ``tool_use`` block, the session hands it to the
executor, which:

1. Looks the tool up (unknown or disabled tools become error results)
2. Validates the input against the tool's JSON Schema
3. Runs the handler under a timeout
4. Captures failures as error results instead of raising
5. Truncates oversized output

The result is turned into a ``tool_result`` block and fed back to the model,
so the model sees what went wrong and can decide what to do next.
"""

from __future__ import annotations

import asyncio
import inspect
import time
import traceback
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from pixie.tools.registry import ToolRegistry

logger = structlog.get_logger(__name__)


@dataclass
class ToolExecutionResult:
    """The outcome of one tool call."""

    tool_use_id: str
    tool_name: str
    success: bool
    result: Any = None
    error: Optional[str] = None
    execution_time: float = 0.0

    def to_api_block(self) -> dict[str, Any]:
        """The ``tool_result`` content block for the next API call."""
        if self.success:
            return {
                "type": "tool_result",
                "tool_use_id": self.tool_use_id,
                "content": str(self.result) if self.result is not None else "",
            }
        return {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.error or "Tool failed.",
            "is_error": True,
        }


# JSON Schema type → Python types (for lightweight validation)
_JSON_TYPE_MAP: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


def _validate_tool_input(
    schema: dict[str, Any],
    tool_input: dict[str, Any],
) -> Optional[str]:
    """
    Lightweight JSON Schema validation for tool inputs.

    Checks required fields, unknown fields (when the schema forbids them) and
    basic type constraints. Returns an error message or None.
    """
    required = schema.get("required", [])
    properties = schema.get("properties", {})

    missing = [name for name in required if name not in tool_input]
    if missing:
        return f"Missing required parameter(s): {', '.join(missing)}"

    if schema.get("additionalProperties") is False:
        unknown = [name for name in tool_input if name not in properties]
        if unknown:
            return f"Unknown parameter(s): {', '.join(unknown)}"

    for name, value in tool_input.items():
        prop_schema = properties.get(name)
        if not prop_schema or not isinstance(prop_schema, dict):
            continue
        expected_type = prop_schema.get("type")
        py_types = _JSON_TYPE_MAP.get(expected_type) if expected_type else None
        if py_types is None:
            continue
        # bool is a subclass of int, but JSON booleans are distinct
        if isinstance(value, bool) and expected_type in ("integer", "number"):
            return f"Parameter '{name}' expected {expected_type}, got boolean"
        if not isinstance(value, py_types):
            return f"Parameter '{name}' expected {expected_type}, got {type(value).__name__}"
        allowed = prop_schema.get("enum")
        if allowed and value not in allowed:
            return f"Parameter '{name}' must be one of: {', '.join(map(str, allowed))}"

    return None


class ToolExecutor:
    """Executes tool calls with validation, timeouts and error capture."""

    def __init__(
        self,
        registry: ToolRegistry,
        default_timeout: float = 60.0,
        max_output_length: int = 25000,
    ):
        self._registry = registry
        self._default_timeout = default_timeout
        self._max_output_length = max_output_length

        self._total_executions = 0
        self._total_failures = 0

    async def execute(
        self,
        tool_use_id: str,
        tool_name: str,
        tool_input: dict[str, Any],
        *,
        allowed_tools: Optional[set[str]] = None,
    ) -> ToolExecutionResult:
        """Run one ``tool_use`` block and return its result."""
        start_time = time.monotonic()
        self._total_executions += 1

        logger.info(
            "tool_executor.executing",
            tool_name=tool_name,
            tool_use_id=tool_use_id,
            input_keys=list(tool_input.keys()) if isinstance(tool_input, dict) else None,
        )

        def _fail(message: str) -> ToolExecutionResult:
            self._total_failures += 1
            return ToolExecutionResult(
                tool_use_id=tool_use_id,
                tool_name=tool_name,
                success=False,
                error=message,
                execution_time=time.monotonic() - start_time,
            )

        tool_def = self._registry.get(tool_name)
        if tool_def is None or (allowed_tools is not None and tool_name not in allowed_tools):
            return _fail(f"Unknown tool: {tool_name}")
        if not tool_def.enabled:
            return _fail(f"Tool '{tool_name}' is currently disabled.")
        if tool_def.handler is None:
            return _fail(f"No handler registered for tool: {tool_name}")
        if not isinstance(tool_input, dict):
            return _fail("Tool input must be a JSON object.")

        validation_error = _validate_tool_input(tool_def.input_schema, tool_input)
        if validation_error:
            return _fail(validation_error)

        timeout = tool_def.timeout if tool_def.timeout is not None else self._default_timeout
        try:
            if inspect.iscoroutinefunction(tool_def.handler):
                result = await asyncio.wait_for(tool_def.handler(**tool_input), timeout=timeout)
            else:
                result = await asyncio.wait_for(
                    asyncio.to_thread(tool_def.handler, **tool_input), timeout=timeout
                )
        except asyncio.TimeoutError:
            logger.warning("tool_executor.timeout", tool_name=tool_name, timeout=timeout)
            return _fail(f"Tool execution timed out after {timeout}s")
        except Exception as e:
            error_detail = f"{type(e).__name__}: {e}"
            logger.error(
                "tool_executor.error",
                tool_name=tool_name,
                error=error_detail,
                traceback=traceback.format_exc(),
            )
            return _fail(error_detail)

        result_str = str(result) if result is not None else ""
        if len(result_str) > self._max_output_length:
            result = (
                result_str[: self._max_output_length - 100]
                + f"\n\n[Output truncated — {len(result_str)} chars total, "
                f"showing first {self._max_output_length - 100}]"
            )

        elapsed = time.monotonic() - start_time
        logger.info(
            "tool_executor.success",
            tool_name=tool_name,
            elapsed=round(elapsed, 2),
            result_length=len(str(result)),
        )
        return ToolExecutionResult(
            tool_use_id=tool_use_id,
            tool_name=tool_name,
            success=True,
            result=result,
            execution_time=elapsed,
        )

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total_executions": self._total_executions,
            "failures": self._total_failures,
        }
