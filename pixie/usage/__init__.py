"""Usage accounting: billing multipliers, conversation tallies and the request log."""

from pixie.usage.ledger import (
    ConversationUsage,
    DelegateUsage,
    SessionLifetimeUsage,
    UsageLedger,
    format_duration,
)
from pixie.usage.request_log import RequestLog, RequestLogEntry

__all__ = [
    "ConversationUsage",
    "DelegateUsage",
    "RequestLog",
    "RequestLogEntry",
    "SessionLifetimeUsage",
    "UsageLedger",
    "format_duration",
]
