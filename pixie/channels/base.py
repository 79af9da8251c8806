"""
Operator channel abstract class.

Pixie serves exactly one operator. A channel adapter (Telegram today) owns the
transport and forwards everything the operator does to an ``OperatorHandler``
(the orchestrator):

  on_message(text)   — a plain text message
  on_choice(value)   — a button from ``present_choices`` was pressed
  on_command(name)   — a slash command, without the leading "/"

Outbound traffic is limited to ``send_text`` and ``present_choices``; both are
addressed to the operator implicitly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol, Sequence

import structlog

from pixie.types import ChoiceSpec

logger = structlog.get_logger(__name__)


class OperatorHandler(Protocol):
    """Inbound callbacks a channel delivers to."""

    async def on_message(self, text: str) -> None: ...

    async def on_choice(self, value: str) -> None: ...

    async def on_command(self, name: str) -> None: ...


class OperatorChannel(ABC):
    """Abstract base for single-operator channel adapters."""

    def __init__(self) -> None:
        self._handler: OperatorHandler | None = None

    def bind(self, handler: OperatorHandler) -> None:
        """Attach the inbound handler; must be called before ``start``."""
        self._handler = handler

    @property
    def handler(self) -> OperatorHandler:
        if self._handler is None:
            raise RuntimeError(f"{self.channel_name} channel has no handler bound.")
        return self._handler

    # ------------------------------------------------------------------
    # Abstract interface: subclasses must implement these
    # ------------------------------------------------------------------

    @abstractmethod
    async def start(self) -> None:
        """Connect to the platform and begin receiving updates."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop receiving updates and release the connection."""

    @abstractmethod
    async def send_text(self, text: str) -> None:
        """Send *text* to the operator, split into platform-sized chunks in order."""

    @abstractmethod
    async def present_choices(self, prompt: str, choices: Sequence[ChoiceSpec]) -> None:
        """Show *prompt* with one button per choice; presses arrive at ``on_choice``."""

    @property
    @abstractmethod
    def channel_name(self) -> str:
        """Short platform identifier: 'telegram', …"""

    @property
    def started(self) -> bool:
        return False
