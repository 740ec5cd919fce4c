"""Retry delay computation and rate-limit error classification."""

from __future__ import annotations

import random

from commitcaster.services import RateLimitedError

RATE_LIMIT_FLOOR_MS = 30_000
JITTER_RATIO = 0.25

_RATE_LIMIT_MARKERS = (
    "rate limit",
    "too many requests",
    "429",
    "quota exceeded",
    "resource exhausted",
)


def is_rate_limit_error(exc: BaseException) -> bool:
    """True for :class:`RateLimitedError` or any error whose message reads like a throttle."""
    if isinstance(exc, RateLimitedError):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def compute_retry_delay(
    retry_count: int,
    base_ms: int,
    max_ms: int,
    *,
    rate_limited: bool = False,
    rng: random.Random | None = None,
) -> float:
    """Delay in milliseconds before retry number *retry_count* (1-based).

    ``base * 2^(n-1)`` with +/-25% jitter, raised to 30 s for rate limits,
    capped at *max_ms*.
    """
    rng = rng or random
    delay = base_ms * (2 ** max(retry_count - 1, 0))
    delay += delay * JITTER_RATIO * rng.uniform(-1.0, 1.0)
    if rate_limited:
        delay = max(delay, RATE_LIMIT_FLOOR_MS)
    return min(delay, max_ms)
