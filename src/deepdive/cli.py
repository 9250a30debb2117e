"""Command-line entry point.

    deepdive serve                          run the HTTP backend
    deepdive extract FILE [--url URL]       print the extracted article
    deepdive dive FILE --url URL [--query Q]
                                            run a Deep-Dive against the backend
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import httpx
import structlog

from deepdive.cache import FingerprintCache
from deepdive.client import DeepDiveClient
from deepdive.config import Settings
from deepdive.errors import DeepDiveError
from deepdive.extractor import extract_article
from deepdive.models.analysis import AnalysisResult
from deepdive.orchestrator import DeepDiveOrchestrator
from deepdive.server import run_http_server, setup_logging

if TYPE_CHECKING:
    from typing import TextIO

    from deepdive.models.analysis import DeepDiveResult, RelatedArticle

log = structlog.get_logger()


class ConsoleRenderer:
    """Prints each Deep-Dive section as soon as it is available."""

    def __init__(self, out: TextIO = sys.stdout) -> None:
        self._out = out

    def _print(self, text: str = "") -> None:
        print(text, file=self._out, flush=True)

    def show_placeholders(self) -> None:
        self._print("Analyzing article and searching for related sources...")

    def show_analysis(self, analysis: AnalysisResult) -> None:
        self._print("\nDefinitions")
        for item in analysis.definitions:
            self._print(f"  {item.term}: {item.definition}")
        if not analysis.definitions:
            self._print("  (none)")
        self._print("\nMain arguments")
        for argument in analysis.arguments.main:
            self._print(f"  - {argument}")
        if analysis.arguments.counter:
            self._print("\nCounter-arguments")
            for argument in analysis.arguments.counter:
                self._print(f"  - {argument}")

    def show_analysis_failed(self, error: DeepDiveError) -> None:
        self._print(f"\nAnalysis failed: {error.message}")
        self._print(f"  {error.suggestion}")

    def show_related_articles(self, articles: list[RelatedArticle]) -> None:
        self._print("\nRelated articles")
        for article in articles:
            self._print(f"  {article.title}\n    {article.url}")
        if not articles:
            self._print("  (none)")

    def show_cached(self, result: DeepDiveResult) -> None:
        self._print("(cached)")
        self.show_related_articles(result.related_articles)
        self.show_analysis(
            AnalysisResult(definitions=result.definitions, arguments=result.arguments)
        )


def _read_html(path: str) -> str:
    return Path(path).read_text(encoding="utf-8", errors="replace")


def _cmd_extract(args: argparse.Namespace, settings: Settings) -> int:
    url = args.url or Path(args.file).resolve().as_uri()
    snapshot = extract_article(
        _read_html(args.file),
        url,
        min_text_length=settings.extraction.min_text_length,
        max_text_length=settings.extraction.max_text_length,
        min_paragraph_length=settings.extraction.min_paragraph_length,
    )
    print(f"Title:   {snapshot.title}")
    print(f"Heading: {snapshot.heading}")
    print(f"Length:  {len(snapshot.text)}\n")
    print(snapshot.text)
    return 0


async def _dive(args: argparse.Namespace, settings: Settings) -> int:
    db_path = Path(settings.cache.db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    async with (
        aiosqlite.connect(db_path) as db,
        httpx.AsyncClient(timeout=httpx.Timeout(settings.client.timeout_seconds)) as http_client,
    ):
        cache = FingerprintCache(db, default_ttl=timedelta(hours=settings.cache.ttl_hours))
        await cache.init_db()
        if args.clear_cache:
            await cache.clear()

        backend = DeepDiveClient(
            http_client,
            backend_url=settings.client.backend_url,
            max_retries=settings.client.max_retries,
            retry_base_delay=settings.client.retry_base_delay_seconds,
        )
        orchestrator = DeepDiveOrchestrator(
            cache,
            backend,
            ConsoleRenderer(),
            extraction=settings.extraction,
        )
        await orchestrator.run(_read_html(args.file), args.url, search_query=args.query)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="deepdive", description="DeepDive article analysis")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("serve", help="Run the HTTP backend")

    extract = commands.add_parser("extract", help="Print the article extracted from an HTML file")
    extract.add_argument("file", help="Path to a saved HTML page")
    extract.add_argument("--url", help="Page URL (defaults to the file URI)")

    dive = commands.add_parser("dive", help="Run a Deep-Dive against the configured backend")
    dive.add_argument("file", help="Path to a saved HTML page")
    dive.add_argument("--url", required=True, help="Original page URL, used in the cache key")
    dive.add_argument("--query", "-q", help="Search query for related sources")
    dive.add_argument(
        "--clear-cache", action="store_true", help="Delete every cached result first"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()

    if args.command == "serve":
        run_http_server(settings)
        return 0

    setup_logging(settings)
    try:
        if args.command == "extract":
            return _cmd_extract(args, settings)
        return asyncio.run(_dive(args, settings))
    except DeepDiveError as exc:
        print(f"Error: {exc.message}\n  {exc.suggestion}", file=sys.stderr)
        return 1
    except OSError as exc:
        log.error("file_read_failed", error=str(exc))
        return 1


if __name__ == "__main__":
    sys.exit(main())
