"""AI runtime collaborators: the abstract session interface and the Claude implementation."""

from pixie.runtime.base import (
    AgentRuntime,
    AssistantMessageEvent,
    ModelInfo,
    RuntimeSession,
    SessionErrorEvent,
    SessionEvent,
    SessionIdleEvent,
    SessionOptions,
)

__all__ = [
    "AgentRuntime",
    "AssistantMessageEvent",
    "ModelInfo",
    "RuntimeSession",
    "SessionErrorEvent",
    "SessionEvent",
    "SessionIdleEvent",
    "SessionOptions",
]
