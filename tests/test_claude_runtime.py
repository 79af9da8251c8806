"""
Runtime behavior tests for pixie.runtime.claude.

A SimpleNamespace client stands in for ``anthropic.AsyncAnthropic`` so the tool
loop, timeouts and transcript handling run without network calls.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from pixie.config import AnthropicConfig
from pixie.errors import RuntimeStartError
from pixie.runtime.base import SessionOptions
from pixie.runtime.claude import AnthropicRuntime, extract_text, extract_tool_calls
from pixie.tools.executor import ToolExecutor
from pixie.tools.registry import ToolDefinition, ToolRegistry


def _text(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="text", text=text)


def _tool_use(block_id: str, name: str, tool_input: dict) -> SimpleNamespace:
    return SimpleNamespace(type="tool_use", id=block_id, name=name, input=tool_input)


def _response(*blocks, stop_reason: str = "end_turn") -> SimpleNamespace:
    return SimpleNamespace(
        content=list(blocks),
        stop_reason=stop_reason,
        usage=SimpleNamespace(input_tokens=10, output_tokens=5),
    )


async def _aiter(items):
    for item in items:
        yield item


def _client(responses=None, models=()) -> SimpleNamespace:
    return SimpleNamespace(
        messages=SimpleNamespace(create=AsyncMock(side_effect=responses or [])),
        models=SimpleNamespace(list=lambda: _aiter(models)),
        close=AsyncMock(),
        base_url="https://api.test",
    )


def _registry() -> ToolRegistry:
    registry = ToolRegistry()

    async def add(a: int, b: int) -> str:
        return str(a + b)

    registry.register(
        ToolDefinition(
            name="add",
            description="Add two integers.",
            input_schema={
                "type": "object",
                "properties": {"a": {"type": "integer"}, "b": {"type": "integer"}},
                "required": ["a", "b"],
            },
            handler=add,
        )
    )
    registry.register(
        ToolDefinition(
            name="other",
            description="Unused.",
            input_schema={"type": "object", "properties": {}},
            handler=lambda: "other",
        )
    )
    return registry


def _runtime(client, **config_overrides) -> AnthropicRuntime:
    config = AnthropicConfig(_env_file=None, api_key="sk-test", retry_max_retries=0, **config_overrides)
    registry = _registry()
    return AnthropicRuntime(config, registry, ToolExecutor(registry), client=client)


def _options(session_id: str = "s1", **overrides) -> SessionOptions:
    fields = {"session_id": session_id, "model": "claude-sonnet-4-5", "system_prompt": "Be brief."}
    fields.update(overrides)
    return SessionOptions(**fields)


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------

def test_extract_helpers():
    response = _response(_text("a"), _tool_use("t1", "add", {"a": 1}), _text("b"))
    assert extract_text(response) == "a\nb"
    assert extract_tool_calls(response) == [{"id": "t1", "name": "add", "input": {"a": 1}}]


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_plain_text_reply_and_events():
    client = _client([_response(_text("Hello!"))])
    runtime = _runtime(client)
    session = await runtime.create_session(_options())
    events = []
    session.subscribe(lambda event: events.append(event.event_type))

    reply = await session.send_and_wait("hi", timeout=5)

    assert reply == "Hello!"
    assert events == ["assistant.message", "session.idle"]
    kwargs = client.messages.create.await_args.kwargs
    assert kwargs["model"] == "claude-sonnet-4-5"
    assert kwargs["system"] == "Be brief."
    assert [t["name"] for t in kwargs["tools"]] == ["add", "other"]
    assert session.transcript[0] == {"role": "user", "content": "hi"}
    assert len(session.transcript) == 2


@pytest.mark.asyncio
async def test_tool_use_loop_runs_executor():
    client = _client(
        [
            _response(
                _text("Let me add."),
                _tool_use("toolu_1", "add", {"a": 2, "b": 3}),
                stop_reason="tool_use",
            ),
            _response(_text("The sum is 5.")),
        ]
    )
    runtime = _runtime(client)
    session = await runtime.create_session(_options())

    reply = await session.send_and_wait("what is 2+3?", timeout=5)

    assert reply == "The sum is 5."
    assert client.messages.create.await_count == 2
    roles = [m["role"] for m in session.transcript]
    assert roles == ["user", "assistant", "user", "assistant"]
    (tool_result,) = session.transcript[2]["content"]
    assert tool_result == {"type": "tool_result", "tool_use_id": "toolu_1", "content": "5"}


@pytest.mark.asyncio
async def test_tool_outside_allowed_set_is_an_error_result():
    client = _client(
        [
            _response(_tool_use("toolu_1", "other", {}), stop_reason="tool_use"),
            _response(_text("ok")),
        ]
    )
    runtime = _runtime(client)
    session = await runtime.create_session(_options(tools=["add"]))

    await session.send_and_wait("go", timeout=5)

    first_call = client.messages.create.await_args_list[0].kwargs
    assert [t["name"] for t in first_call["tools"]] == ["add"]
    (tool_result,) = session.transcript[2]["content"]
    assert tool_result["is_error"] is True


@pytest.mark.asyncio
async def test_deny_policy_sends_no_tools():
    client = _client([_response(_text("ok"))])
    runtime = _runtime(client)
    session = await runtime.create_session(_options(permission_policy="deny"))
    await session.send_and_wait("go", timeout=5)
    assert "tools" not in client.messages.create.await_args.kwargs


@pytest.mark.asyncio
async def test_tool_round_limit():
    looping = [
        _response(_tool_use(f"toolu_{i}", "add", {"a": 1, "b": 1}), stop_reason="tool_use")
        for i in range(3)
    ]
    client = _client(looping)
    runtime = _runtime(client, max_tool_rounds=2)
    session = await runtime.create_session(_options())
    reply = await session.send_and_wait("loop", timeout=5)
    assert client.messages.create.await_count == 2
    assert "tool-call limit" in reply


@pytest.mark.asyncio
async def test_timeout_rolls_back_and_returns_none():
    async def _slow(**kwargs):
        await asyncio.sleep(5)

    client = _client()
    client.messages.create = AsyncMock(side_effect=_slow)
    runtime = _runtime(client)
    session = await runtime.create_session(_options())
    events = []
    session.subscribe(lambda event: events.append(event.event_type))

    assert await session.send_and_wait("hi", timeout=0.05) is None
    assert session.transcript == []
    assert events == ["session.idle"]


@pytest.mark.asyncio
async def test_cancelled_during_tool_call_rolls_back_transcript():
    client = _client(
        [
            _response(_tool_use("t1", "add", {"a": 1, "b": 2}), stop_reason="tool_use"),
            _response(_text("fresh start")),
        ]
    )
    runtime = _runtime(client)
    tool_started = asyncio.Event()

    async def slow_add(a: int, b: int) -> str:
        tool_started.set()
        await asyncio.sleep(30)
        return str(a + b)

    runtime.tools.get("add").handler = slow_add
    session = await runtime.create_session(_options("delegate-1-abc"))

    task = asyncio.create_task(session.send_and_wait("sub-task", timeout=60))
    await asyncio.wait_for(tool_started.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert session.transcript == []

    rehydrated = await runtime.create_session(_options("delegate-1-abc"))
    assert rehydrated.transcript == []
    assert await rehydrated.send_and_wait("again", timeout=5) == "fresh start"
    assert client.messages.create.await_args.kwargs["messages"][0] == {
        "role": "user",
        "content": "again",
    }


@pytest.mark.asyncio
async def test_error_emits_event_rolls_back_and_raises():
    client = _client([ValueError("bad request")])
    runtime = _runtime(client)
    session = await runtime.create_session(_options())
    errors = []
    session.subscribe(lambda event: errors.append(event) if event.event_type == "session.error" else None)

    with pytest.raises(ValueError):
        await session.send_and_wait("hi", timeout=5)

    assert session.transcript == []
    assert errors[0].error_type == "ValueError"
    assert errors[0].message == "bad request"


@pytest.mark.asyncio
async def test_transcript_resumes_for_same_session_id():
    client = _client([_response(_text("one")), _response(_text("two"))])
    runtime = _runtime(client)
    first = await runtime.create_session(_options("delegate-1-abc"))
    await first.send_and_wait("hi", timeout=5)
    await first.destroy()

    with pytest.raises(RuntimeError):
        await first.send_and_wait("again", timeout=5)

    second = await runtime.create_session(_options("delegate-1-abc"))
    assert len(second.transcript) == 2
    await second.send_and_wait("again", timeout=5)
    assert len(second.transcript) == 4

    other = await runtime.create_session(_options("delegate-2-xyz"))
    assert other.transcript == []


# ---------------------------------------------------------------------------
# Runtime
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_models_applies_allowlist_and_multipliers():
    models = [
        SimpleNamespace(id="claude-opus-4-1", display_name="Claude Opus 4.1"),
        SimpleNamespace(id="claude-haiku-4-5", display_name="Claude Haiku 4.5"),
        SimpleNamespace(id="claude-3-7-sonnet", display_name="Claude Sonnet 3.7"),
    ]
    runtime = _runtime(_client(models=models), model_allowlist=["claude-opus", "claude-haiku-4-5"])
    listed = await runtime.list_models()
    assert [(m.id, m.billing_multiplier) for m in listed] == [
        ("claude-opus-4-1", 3.0),
        ("claude-haiku-4-5", 0.33),
    ]


@pytest.mark.asyncio
async def test_unknown_family_has_no_multiplier():
    models = [SimpleNamespace(id="experimental-x", display_name=None)]
    runtime = _runtime(_client(models=models))
    (listed,) = await runtime.list_models()
    assert listed.billing_multiplier is None
    assert listed.display_name == "experimental-x"


@pytest.mark.asyncio
async def test_not_started_runtime_refuses_sessions():
    config = AnthropicConfig(_env_file=None, api_key="sk-test")
    registry = _registry()
    runtime = AnthropicRuntime(config, registry, ToolExecutor(registry))
    with pytest.raises(RuntimeStartError):
        await runtime.create_session(_options())


@pytest.mark.asyncio
async def test_stop_destroys_sessions_and_closes_client():
    client = _client()
    runtime = _runtime(client)
    session = await runtime.create_session(_options())
    assert await runtime.stop() == []
    assert session.destroyed
    client.close.assert_awaited_once()
