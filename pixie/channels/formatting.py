"""
Message length handling for chat transports.

Replies are split on fixed character boundaries so that concatenating the
chunks reproduces the original text exactly, in order.
"""

from __future__ import annotations

TELEGRAM_MAX_LEN: int = 4096


def split_message(text: str, max_len: int = TELEGRAM_MAX_LEN) -> list[str]:
    """
    Split *text* into consecutive chunks of at most *max_len* characters.

    Empty input returns an empty list.
    """
    if max_len <= 0:
        raise ValueError("max_len must be positive")
    return [text[i : i + max_len] for i in range(0, len(text), max_len)]


def excerpt(text: str, limit: int = 200) -> str:
    """Single-line preview of *text* for log lines."""
    flat = " ".join(text.split())
    return flat if len(flat) <= limit else flat[: limit - 1] + "…"
