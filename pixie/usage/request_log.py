"""
Request Log — append-only audit trail of billed operator requests.

One JSON line per operator message, separate from the diagnostic log. Each
line records what was asked, which model answered, what it cost (including any
delegated sessions the primary session used along the way) and how long it
took.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

import structlog
from pydantic import BaseModel, Field, ValidationError

from pixie.usage.ledger import DelegateUsage

logger = structlog.get_logger(__name__)

EXCERPT_LENGTH = 120


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def make_excerpt(text: str, limit: int = EXCERPT_LENGTH) -> str:
    """Collapse whitespace and truncate *text* for the log."""
    flat = " ".join((text or "").split())
    if len(flat) <= limit:
        return flat
    return flat[: limit - 1] + "…"


class RequestLogEntry(BaseModel):
    """One billed operator request."""

    timestamp: datetime = Field(default_factory=_now_utc)
    message_excerpt: str
    model: str
    multiplier: float
    delegate_usage: list[DelegateUsage] = Field(default_factory=list)
    total_premium_units: float
    duration_ms: int = 0
    outcome: Literal["reply", "no_reply", "error"] = "reply"


class RequestLog:
    """Appends RequestLogEntry records to a JSONL file."""

    def __init__(self, path: Path) -> None:
        self.path = path
        path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, entry: RequestLogEntry) -> None:
        line = entry.model_dump_json()
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
        logger.debug(
            "request_log.appended",
            model=entry.model,
            total_premium_units=entry.total_premium_units,
            outcome=entry.outcome,
        )

    def read(self, limit: int | None = None) -> list[RequestLogEntry]:
        """Return entries in file order; the last *limit* when given.

        Lines that fail to parse are skipped with a warning.
        """
        if not self.path.exists():
            return []
        entries: list[RequestLogEntry] = []
        with self.path.open("r", encoding="utf-8") as fh:
            for lineno, raw in enumerate(fh, start=1):
                raw = raw.strip()
                if not raw:
                    continue
                try:
                    entries.append(RequestLogEntry.model_validate(json.loads(raw)))
                except (json.JSONDecodeError, ValidationError) as exc:
                    logger.warning(
                        "request_log.malformed_line",
                        path=str(self.path),
                        line=lineno,
                        error=str(exc)[:200],
                    )
        if limit is not None:
            return entries[-limit:] if limit > 0 else []
        return entries
