"""Model response normalizer.

Turns free-form model text into a validated, size-bounded ParsedAnalysis.
``parse_model_response`` never raises: each extraction tier either yields a
result or ``None``, the first result wins, and a last-resort fallback wraps
the raw text as a single main argument. An unparseable reply is therefore a
content-poor result, never an error.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

import structlog

from deepdive.config import DEFAULT_REDIRECT_MARKERS, DEFAULT_SUSPICIOUS_DOMAINS
from deepdive.models.analysis import Arguments, Definition, ParsedAnalysis, RelatedArticle

if TYPE_CHECKING:
    from deepdive.config import SourceSettings

log = structlog.get_logger()

MAX_RELATED_ARTICLES = 10
MAX_DEFINITIONS = 20
MAX_ARGUMENTS = 20
FALLBACK_CHARS = 500

_LABELED_FENCE_RE = re.compile(r"```json\s*\n([\s\S]*?)\n```")
_FENCE_RE = re.compile(r"```\s*\n([\s\S]*?)\n```")
JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_CITATION_RE = re.compile(r"\s*\[\d+\]\s*")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class SourcePolicy:
    """Heuristics for judging whether a source URL is trustworthy.

    ``suspicious_domains``: hosts (and their subdomains) that models emit as
    placeholders when they invent a link.
    ``redirect_markers``: substrings identifying the search-redirect URLs the
    grounding feature hands out, the most trustworthy source tier.
    """

    suspicious_domains: frozenset[str] = frozenset(DEFAULT_SUSPICIOUS_DOMAINS)
    redirect_markers: tuple[str, ...] = DEFAULT_REDIRECT_MARKERS

    @classmethod
    def from_settings(cls, settings: SourceSettings) -> SourcePolicy:
        return cls(
            suspicious_domains=frozenset(d.lower() for d in settings.suspicious_domains),
            redirect_markers=tuple(settings.redirect_markers),
        )

    def is_suspicious(self, url: str) -> bool:
        host = (urlsplit(url).hostname or "").lower()
        return any(host == d or host.endswith(f".{d}") for d in self.suspicious_domains)

    def is_redirect(self, url: str) -> bool:
        return any(marker in url for marker in self.redirect_markers)


DEFAULT_POLICY = SourcePolicy()


# ---------------------------------------------------------------------------
# Cleaning helpers
# ---------------------------------------------------------------------------


def strip_citations(value: Any) -> Any:
    """Recursively remove ``[n]`` citation markers from every string in *value*."""
    if isinstance(value, str):
        return _WHITESPACE_RE.sub(" ", _CITATION_RE.sub(" ", value)).strip()
    if isinstance(value, list):
        return [strip_citations(item) for item in value]
    if isinstance(value, dict):
        return {key: strip_citations(item) for key, item in value.items()}
    return value


def is_valid_url(url: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    try:
        parsed = urlsplit(url)
        # Accessing .port validates it and raises on garbage like "host:abc"
        _ = parsed.port
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


def _non_empty_strings(items: Any, limit: int) -> list[str]:
    if not isinstance(items, list):
        return []
    cleaned = [item.strip() for item in items if isinstance(item, str)]
    return [item for item in cleaned if item][:limit]


def normalize_articles(
    items: Any,
    policy: SourcePolicy = DEFAULT_POLICY,
    *,
    limit: int = MAX_RELATED_ARTICLES,
) -> list[RelatedArticle]:
    """Keep well-formed ``{title, url}`` entries with real-looking URLs."""
    if not isinstance(items, list):
        return []
    articles: list[RelatedArticle] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        title, url = item.get("title"), item.get("url")
        if not isinstance(title, str) or not isinstance(url, str):
            continue
        title, url = title.strip(), url.strip()
        if not title or not url:
            continue
        if not is_valid_url(url):
            log.debug("source_url_invalid", url=url)
            continue
        if policy.is_suspicious(url):
            log.warning("source_url_suspicious", url=url)
            continue
        articles.append(RelatedArticle(title=title, url=url))
    return articles[:limit]


def _normalize_definitions(items: Any) -> list[Definition]:
    if not isinstance(items, list):
        return []
    definitions: list[Definition] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        term, definition = item.get("term"), item.get("definition")
        if not isinstance(term, str) or not isinstance(definition, str):
            continue
        if term.strip() and definition.strip():
            definitions.append(Definition(term=term.strip(), definition=definition.strip()))
    return definitions[:MAX_DEFINITIONS]


def normalize_payload(data: Any, policy: SourcePolicy = DEFAULT_POLICY) -> ParsedAnalysis | None:
    """Validate a decoded JSON payload. Returns ``None`` for non-object payloads."""
    if not isinstance(data, dict):
        return None
    data = strip_citations(data)

    raw_arguments = data.get("arguments")
    if not isinstance(raw_arguments, dict):
        raw_arguments = {}

    result = ParsedAnalysis(
        related_articles=normalize_articles(data.get("relatedArticles"), policy),
        definitions=_normalize_definitions(data.get("definitions")),
        arguments=Arguments(
            main=_non_empty_strings(raw_arguments.get("main"), MAX_ARGUMENTS),
            counter=_non_empty_strings(raw_arguments.get("counter"), MAX_ARGUMENTS),
        ),
    )
    log.debug(
        "response_normalized",
        related_articles=len(result.related_articles),
        definitions=len(result.definitions),
        main_arguments=len(result.arguments.main),
        counter_arguments=len(result.arguments.counter),
    )
    return result


# ---------------------------------------------------------------------------
# Extraction tiers
# ---------------------------------------------------------------------------


def load_json_object(candidate: str) -> dict | None:
    try:
        data = json.loads(candidate)
    except (ValueError, RecursionError):
        return None
    return data if isinstance(data, dict) else None


def _from_match(pattern: re.Pattern[str], group: int) -> Callable[[str], str | None]:
    def extract(text: str) -> str | None:
        match = pattern.search(text)
        return match.group(group) if match else None

    return extract


# (name, candidate extractor) in priority order
_TIERS: tuple[tuple[str, Callable[[str], str | None]], ...] = (
    ("labeled_fence", _from_match(_LABELED_FENCE_RE, 1)),
    ("unlabeled_fence", _from_match(_FENCE_RE, 1)),
    ("object_span", _from_match(JSON_OBJECT_RE, 0)),
    ("whole_text", lambda text: text),
)


def _run_tiers(
    text: str,
    tiers: Iterable[tuple[str, Callable[[str], str | None]]],
    policy: SourcePolicy,
) -> ParsedAnalysis | None:
    for name, extract in tiers:
        candidate = extract(text)
        if candidate is None:
            continue
        data = load_json_object(candidate)
        if data is None:
            log.debug("response_tier_failed", tier=name)
            continue
        try:
            result = normalize_payload(data, policy)
        except RecursionError:
            log.debug("response_tier_failed", tier=name, reason="too_deep")
            continue
        if result is not None:
            log.debug("response_tier_succeeded", tier=name)
            return result
    return None


def fallback_result(text: str) -> ParsedAnalysis:
    """Wrap the head of an unparseable reply as a single main argument."""
    snippet = text[:FALLBACK_CHARS] + ("..." if len(text) > FALLBACK_CHARS else "")
    snippet = strip_citations(snippet)
    return ParsedAnalysis(arguments=Arguments(main=[snippet] if snippet else []))


def parse_model_response(text: str, policy: SourcePolicy = DEFAULT_POLICY) -> ParsedAnalysis:
    """Parse a model reply into a ParsedAnalysis. Never raises."""
    if not isinstance(text, str):
        text = "" if text is None else str(text)
    result = _run_tiers(text, _TIERS, policy)
    if result is not None:
        return result
    log.warning("response_parse_fallback", length=len(text))
    return fallback_result(text)
