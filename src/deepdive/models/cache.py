from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel


class CacheEntry(BaseModel):
    """One persisted fingerprint-cache value.

    Valid iff ``now - timestamp < ttl``. Expiry is only ever checked on read.
    """

    key: str
    value: Any  # JSON-compatible payload
    timestamp: datetime
    ttl: timedelta

    def is_valid(self, now: datetime) -> bool:
        return now - self.timestamp < self.ttl
