"""
Shared fixtures for the Pixie test suite.

Provides in-memory fakes for the AI runtime and the operator channel plus
settings pointing every data path into ``tmp_path``, so individual test modules
can focus on behavior rather than setup. No test touches the network.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

import pytest

from pixie.channels.base import OperatorChannel
from pixie.config import AssistantConfig
from pixie.runtime.base import (
    AgentRuntime,
    ModelInfo,
    RuntimeSession,
    SessionErrorEvent,
    SessionIdleEvent,
    SessionOptions,
)
from pixie.types import ChoiceSpec, ModelCatalogEntry


# ---------------------------------------------------------------------------
# Runtime fakes
# ---------------------------------------------------------------------------

class FakeSession(RuntimeSession):
    """Echoes prompts back unless told to time out, fail or run a script."""

    def __init__(self, session_id: str, model: str) -> None:
        super().__init__(session_id, model)
        self.prompts: list[str] = []
        self.replies: list[str] = []
        self.timeout_next = False
        self.error: Optional[Exception] = None
        self.destroy_error: Optional[Exception] = None
        self.destroy_calls = 0
        self.on_send: Optional[Callable[[str], Awaitable[Optional[str]]]] = None

    async def send_and_wait(self, prompt: str, timeout: float) -> Optional[str]:
        self.prompts.append(prompt)
        if self.error is not None:
            await self._emit(
                SessionErrorEvent(
                    session_id=self.session_id,
                    error_type=type(self.error).__name__,
                    message=str(self.error),
                )
            )
            raise self.error
        if self.timeout_next:
            self.timeout_next = False
            await self._emit(SessionIdleEvent(session_id=self.session_id))
            return None
        if self.on_send is not None:
            reply = await self.on_send(prompt)
        elif self.replies:
            reply = self.replies.pop(0)
        else:
            reply = f"echo: {prompt}"
        await self._emit(SessionIdleEvent(session_id=self.session_id))
        return reply

    async def destroy(self) -> None:
        self.destroy_calls += 1
        if self.destroy_error is not None:
            raise self.destroy_error
        await super().destroy()


DEFAULT_MODELS = [
    ModelInfo(id="claude-sonnet-4-5", display_name="Claude Sonnet 4.5", billing_multiplier=1.0),
    ModelInfo(id="claude-opus-4-1", display_name="Claude Opus 4.1", billing_multiplier=3.0),
    ModelInfo(id="claude-haiku-4-5", display_name="Claude Haiku 4.5", billing_multiplier=0.33),
]


class FakeRuntime(AgentRuntime):
    """Hands out FakeSessions and records every construction request."""

    def __init__(self, models: Optional[list[ModelInfo]] = None) -> None:
        self.models = list(DEFAULT_MODELS) if models is None else models
        self.started = False
        self.stopped = False
        self.start_error: Optional[Exception] = None
        self.stop_error: Optional[Exception] = None
        self.stop_returns: list[Exception] = []
        self.fail_next = 0
        self.create_gate: Optional[asyncio.Event] = None
        self.session_setup: Optional[Callable[[FakeSession], None]] = None
        self.options: list[SessionOptions] = []
        self.sessions: list[FakeSession] = []

    async def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    async def list_models(self) -> list[ModelInfo]:
        return list(self.models)

    async def create_session(self, options: SessionOptions) -> FakeSession:
        self.options.append(options)
        if self.create_gate is not None:
            await self.create_gate.wait()
        if self.fail_next > 0:
            self.fail_next -= 1
            raise RuntimeError("runtime unavailable")
        session = FakeSession(options.session_id, options.model)
        if self.session_setup is not None:
            self.session_setup(session)
        self.sessions.append(session)
        return session

    async def stop(self) -> list[Exception]:
        self.stopped = True
        if self.stop_error is not None:
            raise self.stop_error
        return list(self.stop_returns)

    def sessions_for(self, session_id: str) -> list[FakeSession]:
        return [s for s in self.sessions if s.session_id == session_id]


# ---------------------------------------------------------------------------
# Channel fake
# ---------------------------------------------------------------------------

class FakeChannel(OperatorChannel):
    """Collects everything sent to the operator."""

    def __init__(self) -> None:
        super().__init__()
        self.sent: list[str] = []
        self.choices: list[tuple[str, list[ChoiceSpec]]] = []
        self._started = False
        self.stop_calls = 0
        self.stop_error: Optional[Exception] = None

    @property
    def channel_name(self) -> str:
        return "fake"

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        self._started = True

    async def stop(self) -> None:
        self.stop_calls += 1
        self._started = False
        if self.stop_error is not None:
            raise self.stop_error

    async def send_text(self, text: str) -> None:
        self.sent.append(text)

    async def present_choices(self, prompt: str, choices: Sequence[ChoiceSpec]) -> None:
        self.choices.append((prompt, list(choices)))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def catalog() -> list[ModelCatalogEntry]:
    return [
        ModelCatalogEntry(m.id, m.display_name, m.billing_multiplier)
        for m in DEFAULT_MODELS
    ]


@pytest.fixture()
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture()
def fake_channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture()
def work_dir(tmp_path: Path) -> Path:
    work = tmp_path / "work"
    (work / "src").mkdir(parents=True)
    (work / "src" / "app.py").write_text("print('hi')\n", encoding="utf-8")
    return work


@pytest.fixture()
def settings(tmp_path: Path, work_dir: Path) -> AssistantConfig:
    return AssistantConfig(
        data_dir=tmp_path / "data",
        skills_dir=tmp_path / "skills",
        working_dir=work_dir,
        watch_paths=["src"],
        reply_timeout_seconds=5.0,
        delegate_timeout_seconds=5.0,
        shutdown_grace_seconds=0.1,
        tool_timeout_seconds=5.0,
    )
