"""
Primary Session Controller — lazy construction of the one main session.

The controller is an explicit tagged state machine:

    Uninitialized ──select_model──▶ Pending(model)
    Pending ──ensure_session──▶ Constructing(model) ──ok──▶ Ready(model, session)
                                      │
                                      └──failure──▶ Pending(model)
    any state ──destroy──▶ Destroyed

The model is chosen exactly once per process; later choices are ignored.
Construction starts on the first operator request. A second request arriving
while construction is in flight waits on the same construction instead of
starting another one, and sees the same outcome (session or error).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Union

import structlog

from pixie.errors import (
    ModelNotSelectedError,
    PrimarySessionConstructionError,
    PrimarySessionDestroyedError,
)
from pixie.runtime.base import RuntimeSession

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[str], Awaitable[RuntimeSession]]


@dataclass(frozen=True)
class Uninitialized:
    name = "uninitialized"


@dataclass(frozen=True)
class Pending:
    model: str
    name = "pending"


@dataclass(frozen=True)
class Constructing:
    model: str
    done: asyncio.Event = field(compare=False)
    name = "constructing"


@dataclass(frozen=True)
class Ready:
    model: str
    session: RuntimeSession = field(compare=False)
    name = "ready"


@dataclass(frozen=True)
class Destroyed:
    name = "destroyed"


ControllerState = Union[Uninitialized, Pending, Constructing, Ready, Destroyed]


class PrimarySessionController:
    """Owns the primary session from model choice to teardown."""

    def __init__(self, factory: SessionFactory) -> None:
        self._factory = factory
        self._state: ControllerState = Uninitialized()
        # Outcome of the most recent construction, read by waiters.
        self._last_error: Optional[BaseException] = None

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def model(self) -> Optional[str]:
        return getattr(self._state, "model", None)

    @property
    def is_ready(self) -> bool:
        return isinstance(self._state, Ready)

    @property
    def has_model(self) -> bool:
        return isinstance(self._state, (Pending, Constructing, Ready))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def select_model(self, model: str) -> bool:
        """Choose the model. Only the first choice counts; returns whether it was taken."""
        if not isinstance(self._state, Uninitialized):
            logger.info(
                "primary_session.model_selection_ignored",
                requested=model,
                current=self.model,
                state=self._state.name,
            )
            return False
        self._state = Pending(model=model)
        logger.info("primary_session.model_selected", model=model)
        return True

    async def ensure_session(self) -> RuntimeSession:
        """Return the live session, constructing it on first use."""
        while True:
            state = self._state
            if isinstance(state, Ready):
                return state.session
            if isinstance(state, Uninitialized):
                raise ModelNotSelectedError("No model has been selected yet.")
            if isinstance(state, Destroyed):
                raise PrimarySessionDestroyedError("The primary session has been shut down.")
            if isinstance(state, Constructing):
                await state.done.wait()
                if isinstance(self._state, Pending) and self._last_error is not None:
                    raise PrimarySessionConstructionError(
                        f"Primary session construction failed: {self._last_error}"
                    ) from self._last_error
                continue
            return await self._construct(state.model)

    async def _construct(self, model: str) -> RuntimeSession:
        constructing = Constructing(model=model, done=asyncio.Event())
        self._state = constructing
        self._last_error = None
        logger.info("primary_session.constructing", model=model)
        try:
            session = await self._factory(model)
        except BaseException as exc:
            if self._state is constructing:
                self._state = Pending(model=model)
            self._last_error = exc
            constructing.done.set()
            if not isinstance(exc, Exception):
                raise
            logger.error("primary_session.construction_failed", model=model, error=str(exc))
            raise PrimarySessionConstructionError(
                f"Primary session construction failed: {exc}"
            ) from exc

        if self._state is not constructing:
            # destroy() ran while we were constructing; the new session is unwanted.
            constructing.done.set()
            logger.info("primary_session.discarding_late_session", model=model)
            await self._destroy_session(session)
            raise PrimarySessionDestroyedError("The primary session was shut down during construction.")

        self._state = Ready(model=model, session=session)
        constructing.done.set()
        logger.info("primary_session.ready", model=model, session_id=session.session_id)
        return session

    async def destroy(self) -> None:
        """Tear down; safe in every state, always ends in Destroyed."""
        state = self._state
        self._state = Destroyed()
        if isinstance(state, Ready):
            await self._destroy_session(state.session, raise_errors=True)
            logger.info("primary_session.destroyed", model=state.model)
        elif isinstance(state, Constructing):
            logger.info("primary_session.destroyed_during_construction", model=state.model)
        else:
            logger.debug("primary_session.destroy_noop", state=state.name)

    @staticmethod
    async def _destroy_session(session: RuntimeSession, *, raise_errors: bool = False) -> None:
        try:
            await session.destroy()
        except Exception as exc:
            logger.warning(
                "primary_session.session_destroy_failed",
                session_id=session.session_id,
                error=str(exc),
            )
            if raise_errors:
                raise
