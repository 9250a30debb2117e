"""SQLite fingerprint cache.

Maps a content fingerprint (page URL + digest of its leading text) to a
previously computed result. Expiry is evaluated lazily on read; nothing is
ever evicted except by ``clear()``, which tears the whole store down.

All cache operations catch ``aiosqlite.Error`` internally and degrade
gracefully: read failures return ``None`` (treated as a miss by callers),
write failures are logged and ignored (the freshly computed result is still
returned to the caller). Infrastructure errors never cross the class boundary.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import aiosqlite
import structlog

from deepdive.models.cache import CacheEntry

log = structlog.get_logger()

FINGERPRINT_SAMPLE_CHARS = 1000
FINGERPRINT_DIGEST_CHARS = 16
DEFAULT_TTL = timedelta(hours=24)

_CREATE_ENTRY_TABLE = """
CREATE TABLE IF NOT EXISTS fingerprint_cache (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    timestamp   TEXT NOT NULL,
    ttl_seconds REAL NOT NULL
)
"""


def cache_key(url: str, text: str, kind: str | None = None) -> str:
    """Derive the fingerprint key for an article.

    Only the first 1,000 characters of *text* are hashed, so trailing edits do
    not change the key while changes to the lead do. *kind* namespaces result
    types sharing one fingerprint (``"deep-dive"`` → ``"<url>:<digest>:deep-dive"``).
    """
    sample = text[:FINGERPRINT_SAMPLE_CHARS]
    digest = hashlib.sha256(sample.encode("utf-8")).hexdigest()[:FINGERPRINT_DIGEST_CHARS]
    key = f"{url}:{digest}"
    return f"{key}:{kind}" if kind else key


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FingerprintCache:
    """SQLite-backed result cache implementing CacheProtocol."""

    def __init__(
        self,
        db: aiosqlite.Connection,
        *,
        default_ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db = db
        self._default_ttl = default_ttl
        self._clock = clock

    async def init_db(self) -> None:
        """Create the table and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_ENTRY_TABLE)
        await self._db.commit()

    async def get(self, key: str) -> CacheEntry | None:
        """Read an entry regardless of age. Returns ``None`` on miss or read failure."""
        try:
            cursor = await self._db.execute(
                "SELECT key, value, timestamp, ttl_seconds FROM fingerprint_cache WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return CacheEntry(
                key=row[0],
                value=json.loads(row[1]),
                timestamp=datetime.fromisoformat(row[2]),
                ttl=timedelta(seconds=row[3]),
            )
        except aiosqlite.Error:
            log.warning("cache_read_error", key=key, exc_info=True)
            return None
        except ValueError:
            # Corrupt row (bad JSON or timestamp) is indistinguishable from a miss
            log.warning("cache_decode_error", key=key, exc_info=True)
            return None

    async def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        """Write or overwrite an entry. Non-fatal on failure."""
        ttl = ttl if ttl is not None else self._default_ttl
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO fingerprint_cache (key, value, timestamp, ttl_seconds) "
                "VALUES (?, ?, ?, ?)",
                (
                    key,
                    json.dumps(value),
                    self._clock().isoformat(),
                    ttl.total_seconds(),
                ),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_write_error", key=key, exc_info=True)

    async def is_valid(self, key: str) -> bool:
        """True iff an entry exists and is younger than its ttl."""
        entry = await self.get(key)
        if entry is None:
            return False
        return entry.is_valid(self._clock())

    async def get_valid(self, key: str) -> Any | None:
        """Return the cached value when the entry is valid, else ``None``."""
        entry = await self.get(key)
        if entry is None or not entry.is_valid(self._clock()):
            return None
        return entry.value

    async def clear(self) -> None:
        """Delete every entry. Only used for whole-store teardown."""
        try:
            await self._db.execute("DELETE FROM fingerprint_cache")
            await self._db.commit()
            log.info("cache_cleared")
        except aiosqlite.Error:
            log.warning("cache_clear_error", exc_info=True)
