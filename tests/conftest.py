"""Shared test fixtures for the deepdive test suite."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import aiosqlite
import pytest

from deepdive.cache import FingerprintCache

ARTICLE_PARAGRAPHS = [
    "Central banks around the world have spent the past two years raising interest "
    "rates at the fastest pace in four decades.",
    "Economists disagree about whether the tightening cycle has done its job, and "
    "several argue that inflation expectations were never truly unanchored.",
    "Critics point out that higher borrowing costs fall hardest on households with "
    "variable-rate mortgages and on small businesses that rely on credit lines.",
]


def _article_page() -> str:
    paragraphs = "\n".join(f"<p>{text}</p>" for text in ARTICLE_PARAGRAPHS)
    return f"""<!DOCTYPE html>
<html>
<head><title>Rates and Inflation | Example News</title></head>
<body>
  <header><nav><a href="/">Home</a> <a href="/world">World</a></nav></header>
  <main>
    <article>
      <h1>Have rate hikes worked?</h1>
      {paragraphs}
      <p>Short caption</p>
      <aside class="related">Most read: ten things about mortgages you should know today</aside>
    </article>
  </main>
  <footer>Copyright Example News. All rights reserved.</footer>
</body>
</html>"""


@pytest.fixture()
def article_paragraphs() -> list[str]:
    """The paragraphs of article_html that count as article prose."""
    return list(ARTICLE_PARAGRAPHS)


@pytest.fixture()
def article_html() -> str:
    """A news page with one <article>, navigation chrome and a sidebar."""
    return _article_page()


class FakeClock:
    """Settable UTC clock for cache expiry tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
async def fingerprint_cache(clock: FakeClock) -> FingerprintCache:
    """FingerprintCache over in-memory SQLite with a controllable clock."""
    async with aiosqlite.connect(":memory:") as db:
        cache = FingerprintCache(db, clock=clock)
        await cache.init_db()
        yield cache
