"""
Runtime interface — what Pixie needs from an AI agent runtime.

The orchestrator, the primary session controller and the delegate registry only
ever talk to these abstractions. ``pixie.runtime.claude`` provides the concrete
Anthropic-backed implementation; tests substitute in-memory fakes.

Session events are Pydantic models with a dotted ``event_type`` derived from
the class name (``SessionIdleEvent`` → ``session.idle``). Handlers subscribed
to a session may be sync or async; handler exceptions are logged and never
propagate into the session.
"""

from __future__ import annotations

import inspect
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Optional

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

_CAMEL_SPLIT_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z]|\d|\b)|[A-Z][a-z]*")

PermissionPolicy = Literal["always_approve", "deny"]


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class SessionEvent(BaseModel):
    """Base class for events emitted by a runtime session."""

    session_id: str
    event_type: str = ""

    def model_post_init(self, __context: Any) -> None:
        if not self.event_type:
            name = type(self).__name__.removesuffix("Event")
            parts = _CAMEL_SPLIT_RE.findall(name)
            self.event_type = ".".join(p.lower() for p in parts) if parts else name.lower()


class AssistantMessageEvent(SessionEvent):
    """The model produced assistant text (one per model turn that has text)."""

    content: str


class SessionErrorEvent(SessionEvent):
    """The session hit an error while processing a prompt."""

    error_type: str
    message: str


class SessionIdleEvent(SessionEvent):
    """The session finished processing and is waiting for input."""


EventHandler = Callable[[SessionEvent], Any]


# ---------------------------------------------------------------------------
# Session construction
# ---------------------------------------------------------------------------


@dataclass
class ModelInfo:
    """A model as listed by the runtime; multiplier is None when unknown."""

    id: str
    display_name: str
    billing_multiplier: Optional[float] = None


@dataclass
class SessionOptions:
    """Everything needed to construct a runtime session."""

    session_id: str
    model: str
    system_prompt: str
    working_directory: Optional[str] = None
    permission_policy: PermissionPolicy = "always_approve"
    # Tool names the session may call; None means every registered tool.
    tools: Optional[list[str]] = None
    metadata: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Abstract runtime and session
# ---------------------------------------------------------------------------


class RuntimeSession(ABC):
    """A conversational session bound to one model and one system prompt."""

    def __init__(self, session_id: str, model: str) -> None:
        self.session_id = session_id
        self.model = model
        self._handlers: list[EventHandler] = []
        self._destroyed = False

    @abstractmethod
    async def send_and_wait(self, prompt: str, timeout: float) -> Optional[str]:
        """Send *prompt* and wait for the final reply.

        Returns None when no reply arrived within *timeout* seconds.
        """

    async def destroy(self) -> None:
        """Release the session; subscribers are dropped."""
        self._destroyed = True
        self._handlers.clear()

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register *handler* for every event; returns an unsubscribe callable."""
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

        return _unsubscribe

    async def _emit(self, event: SessionEvent) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "runtime_session.handler_error",
                    session_id=self.session_id,
                    event_type=event.event_type,
                )


class AgentRuntime(ABC):
    """Factory and owner of runtime sessions."""

    @abstractmethod
    async def start(self) -> None:
        """Connect to the backing service. Raises RuntimeStartError on failure."""

    @abstractmethod
    async def list_models(self) -> list[ModelInfo]:
        """Models available to sessions."""

    @abstractmethod
    async def create_session(self, options: SessionOptions) -> RuntimeSession:
        """Construct a live session. Raises on failure."""

    @abstractmethod
    async def stop(self) -> list[Exception]:
        """Release the client; returns errors encountered (possibly empty)."""
