"""
Delegated Session Registry — create, reuse, search and destroy delegated sessions.

Each delegate id is in one of three states:

    absent      no config on disk, no live handle
    configured  config on disk, no live handle
    active      config on disk, live handle cached

``create`` moves absent → active, ``destroy`` moves active → configured and
``get_or_create`` moves configured → active ("rehydration"). The config on
disk survives ``destroy`` so a delegate can be torn down to free runtime
resources and brought back later from its description, model and prompt
alone. The delegate id doubles as the runtime session id, so rehydration
reconnects to whatever the runtime keeps under that key.

The registry is the only writer of the config store and the only owner of
live delegate sessions.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

from pixie.delegation.models import SessionConfig
from pixie.delegation.store import ConfigStore
from pixie.errors import DelegateCreationError
from pixie.runtime.base import (
    AgentRuntime,
    RuntimeSession,
    SessionErrorEvent,
    SessionEvent,
    SessionOptions,
)

logger = structlog.get_logger(__name__)

ErrorNotifier = Callable[[str, SessionErrorEvent], Any]


@dataclass
class SessionHandle:
    """A config bound to a live runtime session. In memory only."""

    config: SessionConfig
    session: RuntimeSession

    @property
    def id(self) -> str:
        return self.config.id


class DelegateRegistry:
    """In-memory cache of live delegate handles backed by a ConfigStore."""

    def __init__(
        self,
        runtime: AgentRuntime,
        store: ConfigStore,
        *,
        working_directory: Optional[str] = None,
        tools: Optional[list[str]] = None,
        on_error: Optional[ErrorNotifier] = None,
    ) -> None:
        self._runtime = runtime
        self._store = store
        self._working_directory = working_directory
        # Tool names granted to delegated sessions; None grants every tool.
        self.session_tools = tools
        self._on_error = on_error
        self._active: dict[str, SessionHandle] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create(self, description: str, model: str, system_prompt: str) -> SessionHandle:
        """Build a new delegate. Nothing is persisted if construction fails."""
        config = SessionConfig(description=description, model=model, system_prompt=system_prompt)
        session = await self._build_session(config)
        try:
            self._store.save(config)
        except OSError as exc:
            await self._release(config.id, session)
            raise DelegateCreationError(
                f"Could not persist delegate config: {exc}", delegate_id=config.id
            ) from exc
        handle = SessionHandle(config=config, session=session)
        self._active[config.id] = handle
        logger.info(
            "delegate_registry.created",
            delegate_id=config.id,
            model=model,
            description=description[:80],
        )
        return handle

    async def get_or_create(self, delegate_id: str) -> Optional[SessionHandle]:
        """Return the live handle, rehydrating from disk if needed.

        Returns None when no config exists for *delegate_id*.
        """
        handle = self._active.get(delegate_id)
        if handle is not None:
            return handle

        config = self._store.load(delegate_id)
        if config is None:
            return None

        session = await self._build_session(config)
        handle = SessionHandle(config=config, session=session)
        # Concurrent rehydration of the same id: last handle wins. The earlier
        # handle may still be in use by its caller, so it is not released here.
        if delegate_id in self._active:
            logger.warning("delegate_registry.rehydration_race", delegate_id=delegate_id)
        self._active[delegate_id] = handle
        logger.info("delegate_registry.rehydrated", delegate_id=delegate_id, model=config.model)
        return handle

    async def destroy(self, delegate_id: str) -> bool:
        """Release the live session; the config stays on disk."""
        handle = self._active.pop(delegate_id, None)
        if handle is None:
            return False
        await self._release(delegate_id, handle.session, raise_errors=True)
        logger.info("delegate_registry.destroyed", delegate_id=delegate_id)
        return True

    async def destroy_all(self) -> list[Exception]:
        """Destroy every live delegate, collecting errors instead of stopping."""
        errors: list[Exception] = []
        for delegate_id in list(self._active):
            try:
                await self.destroy(delegate_id)
            except Exception as exc:
                errors.append(exc)
        if errors:
            logger.warning("delegate_registry.destroy_all_errors", count=len(errors))
        return errors

    async def reset_all(self) -> None:
        """Drop every live handle and every stored config (process startup)."""
        for exc in await self.destroy_all():
            logger.warning("delegate_registry.reset_destroy_failed", error=str(exc))
        self._active.clear()
        self._store.clear_all()
        logger.info("delegate_registry.reset")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_similar(self, query: str) -> list[SessionConfig]:
        """Configs whose description literally contains any whitespace token of *query*.

        Case-insensitive, unranked, in store order.
        """
        tokens = [token for token in query.lower().split() if token]
        if not tokens:
            return []
        return [
            config
            for config in self._store.load_all()
            if any(token in config.description.lower() for token in tokens)
        ]

    def list_active(self) -> list[str]:
        return list(self._active)

    def is_active(self, delegate_id: str) -> bool:
        return delegate_id in self._active

    def list_configs(self) -> list[SessionConfig]:
        return self._store.load_all()

    def get_config(self, delegate_id: str) -> Optional[SessionConfig]:
        handle = self._active.get(delegate_id)
        if handle is not None:
            return handle.config
        return self._store.load(delegate_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _build_session(self, config: SessionConfig) -> RuntimeSession:
        options = SessionOptions(
            session_id=config.id,
            model=config.model,
            system_prompt=config.system_prompt,
            working_directory=self._working_directory,
            permission_policy="always_approve",
            tools=self.session_tools,
        )
        try:
            session = await self._runtime.create_session(options)
        except Exception as exc:
            logger.error(
                "delegate_registry.construction_failed",
                delegate_id=config.id,
                model=config.model,
                error=str(exc),
            )
            raise DelegateCreationError(
                f"Failed to create delegated session: {exc}", delegate_id=config.id
            ) from exc
        session.subscribe(self._error_observer(config.id))
        return session

    def _error_observer(self, delegate_id: str) -> Callable[[SessionEvent], Any]:
        async def _observe(event: SessionEvent) -> None:
            if not isinstance(event, SessionErrorEvent):
                return
            logger.error(
                "delegate_registry.session_error",
                delegate_id=delegate_id,
                error_type=event.error_type,
                error=event.message,
            )
            if self._on_error is not None:
                result = self._on_error(delegate_id, event)
                if inspect.isawaitable(result):
                    await result

        return _observe

    async def _release(
        self,
        delegate_id: str,
        session: RuntimeSession,
        *,
        raise_errors: bool = False,
    ) -> None:
        try:
            await session.destroy()
        except Exception as exc:
            logger.warning(
                "delegate_registry.release_failed",
                delegate_id=delegate_id,
                error=str(exc),
            )
            if raise_errors:
                raise
