"""Background scheduler coroutines."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from deepdive.ratelimit import RateLimiter

log = structlog.get_logger()


async def run_rate_limit_sweeper(limiter: RateLimiter, interval_seconds: float) -> None:
    """Drop expired rate-limit windows every *interval_seconds* until cancelled.

    Keeps the limiter's memory proportional to the identifiers seen in the
    last window rather than to every identifier ever seen.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = limiter.sweep()
        except Exception:
            log.warning("rate_limit_sweep_error", exc_info=True)
            continue
        if removed:
            log.info("rate_limit_records_swept", removed=removed, active=len(limiter))
