"""
Usage Ledger — premium-unit accounting for the primary and delegated sessions.

Every request sent to a model costs ``multiplier`` premium units, where the
multiplier comes from the model catalog reported by the runtime at startup.
The ledger keeps three views of that consumption:

* the open ConversationUsage (from the first request until the runtime reports
  the primary session idle),
* the SessionLifetimeUsage (running totals plus closed conversations),
* a separate per-delegate ledger for requests made by delegated sessions.

Delegated consumption never changes the primary totals; reporting code sums the
two views explicitly when it needs a grand total.

The ledger never raises: an unknown model is billed at 1.0 with a warning.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Iterable, Optional

import structlog

from pixie.types import ModelCatalogEntry

logger = structlog.get_logger(__name__)

DEFAULT_MULTIPLIER = 1.0


@dataclass
class ConversationUsage:
    """Consumption of one logical conversation with the primary session."""

    model: str
    start_time: float
    end_time: Optional[float] = None
    request_count: int = 0
    premium_units: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def duration_seconds(self, now: Optional[float] = None) -> float:
        if self.end_time is not None:
            end = self.end_time
        else:
            end = now if now is not None else time.time()
        return max(0.0, end - self.start_time)


@dataclass
class SessionLifetimeUsage:
    """Running totals for the lifetime of one primary session."""

    total_premium_units: float = 0.0
    total_requests: int = 0
    history: list[ConversationUsage] = field(default_factory=list)


@dataclass
class DelegateUsage:
    """Requests billed to a single delegated session."""

    delegate_id: str
    model: str
    multiplier: float
    requests: int = 0
    premium_units: float = 0.0


def format_duration(seconds: float) -> str:
    """Render a duration as ``Ns``, ``Nm Ns`` or ``Nh Nm``."""
    total = int(round(max(0.0, seconds)))
    if total < 60:
        return f"{total}s"
    minutes, secs = divmod(total, 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"


class UsageLedger:
    """Converts request counts into premium units and keeps running totals."""

    def __init__(
        self,
        catalog: Iterable[ModelCatalogEntry],
        *,
        clock=time.time,
    ) -> None:
        self._catalog: dict[str, ModelCatalogEntry] = {entry.id: entry for entry in catalog}
        self._clock = clock
        self._current: Optional[ConversationUsage] = None
        self._lifetime = SessionLifetimeUsage()
        self._delegates: dict[str, DelegateUsage] = {}
        self._pending_delegates: dict[str, DelegateUsage] = {}
        self._warned_models: set[str] = set()

    # ------------------------------------------------------------------
    # Multiplier lookup
    # ------------------------------------------------------------------

    def resolve_multiplier(self, model_id: str) -> float:
        """Return the billing multiplier for *model_id*.

        Exact catalog match first, then a case-insensitive substring match in
        either direction (so a dated variant resolves to its family entry).
        Anything else is billed at 1.0.
        """
        entry = self._catalog.get(model_id)
        if entry is not None:
            return entry.billing_multiplier

        needle = (model_id or "").lower()
        if needle:
            for candidate in self._catalog.values():
                known = candidate.id.lower()
                if needle in known or known in needle:
                    return candidate.billing_multiplier

        if model_id not in self._warned_models:
            self._warned_models.add(model_id)
            logger.warning(
                "usage_ledger.unknown_model",
                model=model_id,
                fallback_multiplier=DEFAULT_MULTIPLIER,
            )
        return DEFAULT_MULTIPLIER

    # ------------------------------------------------------------------
    # Primary session accounting
    # ------------------------------------------------------------------

    def record_request(self, active_model: str) -> float:
        """Bill one primary-session request; returns the units charged."""
        multiplier = self.resolve_multiplier(active_model)
        if self._current is None:
            self._current = ConversationUsage(model=active_model, start_time=self._clock())
            logger.debug("usage_ledger.conversation_opened", model=active_model)

        self._current.request_count += 1
        self._current.premium_units += multiplier
        self._lifetime.total_requests += 1
        self._lifetime.total_premium_units += multiplier

        logger.info(
            "usage_ledger.request_recorded",
            model=active_model,
            multiplier=multiplier,
            conversation_requests=self._current.request_count,
            session_total=self._lifetime.total_premium_units,
        )
        return multiplier

    def end_conversation(self) -> Optional[ConversationUsage]:
        """Close the open conversation and return a copy; None if none is open."""
        if self._current is None:
            return None
        closed = self._current
        closed.end_time = self._clock()
        self._lifetime.history.append(closed)
        self._current = None
        logger.info(
            "usage_ledger.conversation_closed",
            model=closed.model,
            requests=closed.request_count,
            premium_units=closed.premium_units,
        )
        return replace(closed)

    def format_summary(self, conversation: Optional[ConversationUsage] = None) -> str:
        """Human-readable usage report for *conversation* (default: the open one)."""
        usage = conversation if conversation is not None else self._current
        if usage is None:
            return "No usage recorded yet."

        multiplier = self.resolve_multiplier(usage.model)
        lines = [
            "Usage summary:",
            f"• Model: {usage.model} ({multiplier:g}x)",
            f"• Requests: {usage.request_count}",
            f"• Premium units: {usage.premium_units:g}",
            f"• Duration: {format_duration(usage.duration_seconds(self._clock()))}",
        ]
        if self._lifetime.total_requests > usage.request_count:
            lines.append(f"• Session total: {self._lifetime.total_premium_units:g} premium units")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Delegated session accounting
    # ------------------------------------------------------------------

    def record_delegate_request(self, delegate_id: str, model: str) -> DelegateUsage:
        """Bill one request made to a delegated session.

        Returns a snapshot of the cumulative usage for that delegate.
        """
        multiplier = self.resolve_multiplier(model)
        for ledger in (self._delegates, self._pending_delegates):
            usage = ledger.get(delegate_id)
            if usage is None:
                usage = DelegateUsage(delegate_id=delegate_id, model=model, multiplier=multiplier)
                ledger[delegate_id] = usage
            usage.requests += 1
            usage.premium_units += multiplier

        logger.info(
            "usage_ledger.delegate_request_recorded",
            delegate_id=delegate_id,
            model=model,
            multiplier=multiplier,
        )
        return replace(self._delegates[delegate_id])

    def drain_delegate_usage(self) -> list[DelegateUsage]:
        """Return delegate usage accumulated since the last drain, then reset it."""
        drained = list(self._pending_delegates.values())
        self._pending_delegates = {}
        return drained

    def delegate_usage(self) -> list[DelegateUsage]:
        """Cumulative per-delegate usage for this process."""
        return [replace(usage) for usage in self._delegates.values()]

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def catalog(self) -> list[ModelCatalogEntry]:
        return list(self._catalog.values())

    @property
    def current(self) -> Optional[ConversationUsage]:
        return replace(self._current) if self._current is not None else None

    @property
    def session_total(self) -> float:
        return self._lifetime.total_premium_units

    @property
    def session_requests(self) -> int:
        return self._lifetime.total_requests

    @property
    def history(self) -> list[ConversationUsage]:
        return [replace(item) for item in self._lifetime.history]

    @property
    def delegate_total(self) -> float:
        return sum(usage.premium_units for usage in self._delegates.values())
