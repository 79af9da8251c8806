"""Tests for the delegation tool handlers."""

from __future__ import annotations

import json

import pytest

from pixie.delegation.registry import DelegateRegistry
from pixie.delegation.store import ConfigStore
from pixie.delegation.tools import NO_REPLY_TEXT, DelegationTools, register_delegation_tools
from pixie.tools.registry import ToolRegistry
from pixie.usage.ledger import UsageLedger


@pytest.fixture()
def registry(fake_runtime, tmp_path) -> DelegateRegistry:
    return DelegateRegistry(fake_runtime, ConfigStore(tmp_path / "delegates"))


@pytest.fixture()
def ledger(catalog) -> UsageLedger:
    return UsageLedger(catalog)


@pytest.fixture()
def tools(registry, ledger) -> DelegationTools:
    return DelegationTools(registry, ledger, default_timeout=5.0)


async def _create(tools, description="poetry translator", model="claude-haiku-4-5") -> str:
    result = json.loads(
        await tools.create_delegate(
            description=description, model=model, system_prompt="You translate poems."
        )
    )
    return result["id"]


class TestCreateDelegate:
    @pytest.mark.asyncio
    async def test_returns_summary(self, tools):
        result = json.loads(
            await tools.create_delegate(
                description="poetry translator",
                model="claude-haiku-4-5",
                system_prompt="You translate poems.",
            )
        )
        assert result["id"].startswith("delegate-")
        assert result["model"] == "claude-haiku-4-5"
        assert result["is_active"] is True

    @pytest.mark.asyncio
    async def test_missing_field_is_reported(self, tools, registry):
        result = json.loads(await tools.create_delegate(description="x", model="m"))
        assert "system_prompt" in result["error"]
        assert registry.list_configs() == []

    @pytest.mark.asyncio
    async def test_construction_failure_is_reported(self, tools, fake_runtime):
        fake_runtime.fail_next = 1
        result = json.loads(
            await tools.create_delegate(description="x", model="m", system_prompt="p")
        )
        assert "runtime unavailable" in result["error"]


class TestSendToDelegate:
    @pytest.mark.asyncio
    async def test_reply_and_usage(self, tools, ledger):
        delegate_id = await _create(tools)
        result = json.loads(await tools.send_to_delegate(delegate_id=delegate_id, message="hola"))
        assert result["response"] == "echo: hola"
        assert result["timed_out"] is False
        assert result["usage"]["model"] == "claude-haiku-4-5"
        assert result["usage"]["premium_units"] == 0.33

        (usage,) = ledger.drain_delegate_usage()
        assert usage.delegate_id == delegate_id
        assert usage.requests == 1
        assert usage.premium_units == 0.33
        assert ledger.session_total == 0.0

    @pytest.mark.asyncio
    async def test_unknown_delegate(self, tools, ledger):
        result = json.loads(
            await tools.send_to_delegate(delegate_id="delegate-1-nothere", message="hi")
        )
        assert result == {"error": "Delegate delegate-1-nothere not found"}
        assert ledger.drain_delegate_usage() == []

    @pytest.mark.asyncio
    async def test_timeout_is_billed_with_no_reply(self, tools, fake_runtime, ledger):
        delegate_id = await _create(tools)
        fake_runtime.sessions_for(delegate_id)[0].timeout_next = True
        result = json.loads(await tools.send_to_delegate(delegate_id=delegate_id, message="hi"))
        assert result["response"] == NO_REPLY_TEXT
        assert result["timed_out"] is True
        assert ledger.delegate_total == 0.33

    @pytest.mark.asyncio
    async def test_send_failure_is_not_billed(self, tools, fake_runtime, ledger):
        delegate_id = await _create(tools)
        fake_runtime.sessions_for(delegate_id)[0].error = RuntimeError("overloaded")
        result = json.loads(await tools.send_to_delegate(delegate_id=delegate_id, message="hi"))
        assert "overloaded" in result["error"]
        assert ledger.delegate_total == 0.0

    @pytest.mark.asyncio
    async def test_rehydrates_destroyed_delegate(self, tools, registry, fake_runtime):
        delegate_id = await _create(tools)
        await tools.destroy_delegate(delegate_id=delegate_id)
        result = json.loads(await tools.send_to_delegate(delegate_id=delegate_id, message="again"))
        assert result["response"] == "echo: again"
        assert len(fake_runtime.sessions_for(delegate_id)) == 2
        assert registry.is_active(delegate_id)

    @pytest.mark.asyncio
    async def test_invalid_timeout(self, tools):
        delegate_id = await _create(tools)
        result = json.loads(
            await tools.send_to_delegate(delegate_id=delegate_id, message="hi", timeout_seconds=-1)
        )
        assert "timeout_seconds" in result["error"]


class TestQueries:
    @pytest.mark.asyncio
    async def test_list_reports_active_flag(self, tools):
        first = await _create(tools, "poetry translator")
        second = await _create(tools, "code reviewer", "claude-sonnet-4-5")
        await tools.destroy_delegate(delegate_id=first)
        result = json.loads(await tools.list_delegates())
        assert result["count"] == 2
        flags = {d["id"]: d["is_active"] for d in result["delegates"]}
        assert flags == {first: False, second: True}

    @pytest.mark.asyncio
    async def test_find(self, tools):
        translator = await _create(tools, "poetry translator")
        await _create(tools, "code reviewer")
        result = json.loads(await tools.find_delegates(description="translator"))
        assert [d["id"] for d in result["delegates"]] == [translator]

    @pytest.mark.asyncio
    async def test_destroy(self, tools):
        delegate_id = await _create(tools)
        result = json.loads(await tools.destroy_delegate(delegate_id=delegate_id))
        assert result == {"destroyed": delegate_id, "config_kept": True}
        again = json.loads(await tools.destroy_delegate(delegate_id=delegate_id))
        assert "not active" in again["error"]


def test_register_delegation_tools(tools):
    registry = ToolRegistry()
    register_delegation_tools(registry, tools)
    assert set(registry.names()) == {
        "create_delegate",
        "send_to_delegate",
        "list_delegates",
        "find_delegates",
        "destroy_delegate",
    }
