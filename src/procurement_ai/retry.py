from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    wait_seconds: float = 0.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_retry_after(value: str | None, *, now: Callable[[], datetime] = _utcnow) -> float | None:
    """Seconds to wait from a `Retry-After` header (delta-seconds or HTTP-date)."""
    if value is None:
        return None
    raw = value.strip()
    if not raw:
        return None
    try:
        seconds = float(raw)
    except ValueError:
        seconds = None
    if seconds is not None:
        if math.isnan(seconds) or math.isinf(seconds) or seconds < 0:
            return None
        return seconds

    try:
        when = parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - now()).total_seconds())


def backoff_seconds(attempt_index: int) -> float:
    # attempt_index: 0-based attempt that was rate limited
    return float(2**attempt_index)


def next_rate_limit_step(attempt_index: int, max_attempts: int, retry_after: float | None) -> RetryDecision:
    """Transition out of ATTEMPT(attempt_index) after a 429."""
    if attempt_index >= max_attempts - 1:
        return RetryDecision(retry=False)
    wait = retry_after if retry_after is not None else backoff_seconds(attempt_index)
    return RetryDecision(retry=True, wait_seconds=wait)
