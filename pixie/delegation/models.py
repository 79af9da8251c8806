"""
Delegation Data Models — the contract between the primary session and its delegates.

SessionConfig is the durable record of a delegated session. The request and
response models type the tool calls the primary session makes; every payload
coming from the model is validated into one of these before it reaches the
registry or the usage ledger.
"""

from __future__ import annotations

import secrets
import string
import time
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_delegate_id() -> str:
    """``delegate-<epoch ms>-<6 base36 chars>``; always filesystem safe."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"delegate-{int(time.time() * 1000)}-{suffix}"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class SessionConfig(BaseModel):
    """Durable description of a delegated session. Never updated after creation."""

    id: str = Field(default_factory=generate_delegate_id)
    description: str
    model: str
    system_prompt: str
    created_at: datetime = Field(default_factory=_now_utc)


# ---------------------------------------------------------------------------
# Tool requests
# ---------------------------------------------------------------------------


class CreateDelegateRequest(BaseModel):
    description: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    system_prompt: str = Field(..., min_length=1)


class SendToDelegateRequest(BaseModel):
    delegate_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    timeout_seconds: Optional[float] = Field(None, gt=0)


class FindDelegatesRequest(BaseModel):
    description: str = Field(..., min_length=1)


class DestroyDelegateRequest(BaseModel):
    delegate_id: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Tool responses
# ---------------------------------------------------------------------------


class DelegateSummary(BaseModel):
    id: str
    description: str
    model: str
    created_at: datetime
    is_active: bool = False


class DelegateCallUsage(BaseModel):
    model: str
    multiplier: float
    premium_units: float
    duration_ms: int


class SendToDelegateResponse(BaseModel):
    delegate_id: str
    response: str
    timed_out: bool = False
    usage: DelegateCallUsage


class ToolError(BaseModel):
    error: str
