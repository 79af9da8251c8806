"""Delegated sessions: durable configs, the live-handle registry and the tools that drive them."""

from pixie.delegation.models import SessionConfig, generate_delegate_id
from pixie.delegation.registry import DelegateRegistry, SessionHandle
from pixie.delegation.store import ConfigStore

__all__ = [
    "ConfigStore",
    "DelegateRegistry",
    "SessionConfig",
    "SessionHandle",
    "generate_delegate_id",
]
