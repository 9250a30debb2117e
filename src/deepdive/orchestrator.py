"""Deep-Dive orchestration.

One ``run`` per page: extract the article, check the fingerprint cache, and on
a miss fire the analysis and search calls concurrently. Each result is handed
to the renderer as soon as it settles; the cache write waits for both.
"""

from __future__ import annotations

import asyncio
import time
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from deepdive.cache import cache_key
from deepdive.config import ExtractionSettings
from deepdive.errors import DeepDiveError
from deepdive.extractor import extract_article
from deepdive.models.analysis import AnalysisResult, DeepDiveResult, RelatedArticle

if TYPE_CHECKING:
    from deepdive.protocols import AnalysisBackend, CacheProtocol, DeepDiveRenderer

log = structlog.get_logger()

DEEP_DIVE_KEY_KIND = "deep-dive"


class DeepDiveState(StrEnum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    CACHE_CHECK = "cache_check"
    FETCHING = "fetching"
    RECONCILING = "reconciling"
    DONE = "done"
    FAILED = "failed"


class DeepDiveOrchestrator:
    """Runs Deep-Dives for one caller, one at a time."""

    def __init__(
        self,
        cache: CacheProtocol,
        backend: AnalysisBackend,
        renderer: DeepDiveRenderer,
        *,
        extraction: ExtractionSettings | None = None,
    ) -> None:
        self._cache = cache
        self._backend = backend
        self._renderer = renderer
        self._extraction = extraction or ExtractionSettings()
        self.state = DeepDiveState.IDLE
        self._processing = False

    @property
    def processing(self) -> bool:
        return self._processing

    async def run(
        self,
        html: str,
        url: str,
        *,
        search_query: str | None = None,
    ) -> DeepDiveResult | None:
        """Run a Deep-Dive over *html*.

        Returns the reconciled result, or ``None`` when another run is still
        outstanding. Raises DeepDiveError when extraction finds no content or
        the analysis call fails; nothing is cached in either case.
        """
        if self._processing:
            log.warning("deep_dive_already_processing", url=url)
            return None

        self._processing = True
        try:
            result = await self._run(html, url, search_query)
        except BaseException:
            self._transition(DeepDiveState.FAILED, url)
            raise
        finally:
            self._processing = False
        self._transition(DeepDiveState.DONE, url)
        return result

    def _transition(self, state: DeepDiveState, url: str) -> None:
        self.state = state
        log.debug("deep_dive_state", state=str(state), url=url)

    async def _run(self, html: str, url: str, search_query: str | None) -> DeepDiveResult:
        started = time.perf_counter()

        self._transition(DeepDiveState.EXTRACTING, url)
        snapshot = extract_article(
            html,
            url,
            min_text_length=self._extraction.min_text_length,
            max_text_length=self._extraction.max_text_length,
            min_paragraph_length=self._extraction.min_paragraph_length,
        )

        self._transition(DeepDiveState.CACHE_CHECK, url)
        key = cache_key(snapshot.url, snapshot.text, DEEP_DIVE_KEY_KIND)
        cached = await self._cache.get_valid(key)
        if cached is not None:
            try:
                result = DeepDiveResult.model_validate(cached)
            except ValidationError:
                log.warning("deep_dive_cache_entry_invalid", key=key)
            else:
                log.info("deep_dive_cache_hit", url=url)
                self._renderer.show_cached(result)
                return result

        log.info("deep_dive_cache_miss", url=url, has_query=bool(search_query))
        self._transition(DeepDiveState.FETCHING, url)
        self._renderer.show_placeholders()

        analysis_task = asyncio.create_task(self._analyze(snapshot.text))
        search_task = asyncio.create_task(self._search(search_query))

        try:
            analysis = await analysis_task
        except BaseException:
            # Let the search settle so its placeholder is resolved, then fail
            await search_task
            raise
        related = await search_task

        self._transition(DeepDiveState.RECONCILING, url)
        result = DeepDiveResult(
            related_articles=related,
            definitions=analysis.definitions,
            arguments=analysis.arguments,
        )
        await self._cache.set(key, result.model_dump(mode="json", by_alias=True))

        log.info(
            "deep_dive_complete",
            url=url,
            related_articles=len(related),
            definitions=len(analysis.definitions),
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        return result

    async def _analyze(self, text: str) -> AnalysisResult:
        try:
            analysis = await self._backend.analyze(text)
        except DeepDiveError as exc:
            log.warning("deep_dive_analysis_failed", code=exc.code, message=exc.message)
            self._renderer.show_analysis_failed(exc)
            raise
        self._renderer.show_analysis(analysis)
        return analysis

    async def _search(self, query: str | None) -> list[RelatedArticle]:
        if not query:
            articles: list[RelatedArticle] = []
        else:
            try:
                articles = await self._backend.search(query)
            except DeepDiveError as exc:
                # Definitions and arguments are still worth showing without sources
                log.warning("deep_dive_search_failed", code=exc.code, message=exc.message)
                articles = []
        self._renderer.show_related_articles(articles)
        return articles
