"""Fixed-window request admission control.

Single-process and in-memory: each server process keeps its own counters, so
running several instances multiplies the effective limit. Acceptable at the
scale this backend targets; a shared store would be needed beyond that.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

log = structlog.get_logger()


@dataclass
class RateLimitRecord:
    count: int
    window_reset_at: float  # Clock seconds at which the window expires


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: float

    def retry_after(self, now: float) -> int:
        """Whole seconds until the window resets, rounded up, never negative."""
        return max(0, math.ceil(self.reset_at - now))


class RateLimiter:
    """Fixed-window counter keyed by request origin."""

    def __init__(
        self,
        *,
        window_seconds: float = 60.0,
        max_requests: int = 10,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._records: dict[str, RateLimitRecord] = {}

    def now(self) -> float:
        return self._clock()

    def check(self, identifier: str) -> RateLimitDecision:
        """Admit or reject one request for *identifier*, updating its counter."""
        now = self._clock()
        record = self._records.get(identifier)

        # First request, or the previous window has run out: start a new window
        if record is None or now >= record.window_reset_at:
            record = RateLimitRecord(count=1, window_reset_at=now + self.window_seconds)
            self._records[identifier] = record
            return RateLimitDecision(
                allowed=True,
                remaining=self.max_requests - 1,
                reset_at=record.window_reset_at,
            )

        if record.count >= self.max_requests:
            return RateLimitDecision(allowed=False, remaining=0, reset_at=record.window_reset_at)

        record.count += 1
        return RateLimitDecision(
            allowed=True,
            remaining=self.max_requests - record.count,
            reset_at=record.window_reset_at,
        )

    def sweep(self) -> int:
        """Drop records whose window has expired. Returns the number removed."""
        now = self._clock()
        expired = [key for key, record in self._records.items() if now >= record.window_reset_at]
        for key in expired:
            del self._records[key]
        if expired:
            log.debug("rate_limit_sweep", removed=len(expired), active=len(self._records))
        return len(expired)

    def reset(self) -> None:
        """Forget every record."""
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)
