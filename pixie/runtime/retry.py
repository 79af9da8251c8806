"""
Retry logic for single Messages API calls.

API calls fail: networks drop, rate limits hit, servers return 5xx. Transient
failures of a *single HTTP call* are retried here with exponential backoff and
jitter. Timeouts are not: a reply that does not arrive in time is reported as
"no reply" and any retry is the operator's decision, since every call is
billed.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Callable, Optional

import anthropic
import structlog

logger = structlog.get_logger(__name__)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        exponential_base: float = 2.0,
        jitter_range: float = 0.25,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter_range = jitter_range


def is_retryable_error(error: Exception) -> bool:
    """
    Determine if an error is transient and worth retrying.

    Retryable: 429, 500, 502, 503, 529 and connection failures.
    Not retryable: timeouts, 4xx client errors, anything else.
    """
    if isinstance(error, (TimeoutError, asyncio.TimeoutError, anthropic.APITimeoutError)):
        return False
    if isinstance(error, anthropic.RateLimitError):
        return True
    if isinstance(error, anthropic.InternalServerError):
        return True
    if isinstance(error, anthropic.APIStatusError):
        return error.status_code in (429, 500, 502, 503, 529)
    if isinstance(error, anthropic.APIConnectionError):
        return True
    if isinstance(error, (ConnectionError, OSError)):
        return True
    return False


def compute_delay(
    attempt: int,
    config: RetryConfig,
    retry_after: Optional[float] = None,
) -> float:
    """
    Delay before the next attempt.

        delay = min(max_delay, base_delay * exponential_base ** attempt) ± jitter

    A server-provided Retry-After wins (but never less than 1 second).
    """
    if retry_after is not None:
        return max(1.0, retry_after)

    delay = min(config.base_delay * (config.exponential_base ** attempt), config.max_delay)
    jitter = delay * config.jitter_range * (2 * random.random() - 1)
    return max(0.1, delay + jitter)


def _retry_after_seconds(error: Exception) -> Optional[float]:
    response = getattr(error, "response", None)
    if response is None:
        return None
    try:
        value = response.headers.get("retry-after")
        return float(value) if value is not None else None
    except (ValueError, AttributeError, TypeError):
        return None


async def with_retries(
    func: Callable,
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable] = None,
) -> Any:
    """
    Execute an async zero-argument callable with retry logic.

    Non-retryable errors and the last error after exhausting retries are
    re-raised unchanged. ``on_retry`` receives (attempt, error, delay).
    """
    if config is None:
        config = RetryConfig()

    for attempt in range(config.max_retries + 1):
        try:
            return await func()
        except Exception as e:
            if not is_retryable_error(e):
                logger.error(
                    "retry.non_retryable_error",
                    error_type=type(e).__name__,
                    error=str(e)[:200],
                    attempt=attempt,
                )
                raise

            if attempt >= config.max_retries:
                logger.error(
                    "retry.exhausted",
                    error_type=type(e).__name__,
                    error=str(e)[:200],
                    total_attempts=attempt + 1,
                )
                raise

            retry_after = (
                _retry_after_seconds(e) if isinstance(e, anthropic.APIStatusError) else None
            )
            delay = compute_delay(attempt, config, retry_after)

            logger.warning(
                "retry.attempt",
                error_type=type(e).__name__,
                error=str(e)[:200],
                attempt=attempt + 1,
                max_retries=config.max_retries,
                delay_seconds=round(delay, 1),
            )

            if on_retry:
                on_retry(attempt + 1, e, delay)

            await asyncio.sleep(delay)

    raise RuntimeError("with_retries: retry loop exited without a result")
