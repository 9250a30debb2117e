"""Related-source extraction from grounded model responses.

Two independent sources of links come back from a search-enabled model call:
the structured grounding metadata (reflecting an actual retrieval step) and
whatever URLs the model wrote into its free-text JSON. Sources are ranked:

  1. Search-redirect URLs handed out by the grounding feature
  2. Any URL from grounding metadata
  3. URLs from the free-text JSON (last resort, most likely to be invented)

The first tier that yields a usable link wins outright; tiers are never mixed.
"""

from __future__ import annotations

from typing import Any

import structlog

from deepdive.models.analysis import RelatedArticle
from deepdive.normalizer import (
    DEFAULT_POLICY,
    JSON_OBJECT_RE,
    MAX_RELATED_ARTICLES,
    SourcePolicy,
    is_valid_url,
    load_json_object,
    normalize_articles,
    strip_citations,
)

log = structlog.get_logger()

DEFAULT_GROUNDED_TITLE = "Related Article"


def extract_grounded_articles(
    response: Any, *, limit: int = MAX_RELATED_ARTICLES
) -> list[RelatedArticle]:
    """Pull ``{title, url}`` pairs out of ``candidates[].groundingMetadata``.

    Stops at the first candidate that yields any links. Deduplicated by URL.
    """
    if not isinstance(response, dict):
        return []
    candidates = response.get("candidates")
    if not isinstance(candidates, list):
        return []

    articles: list[RelatedArticle] = []
    seen: set[str] = set()
    for candidate in candidates:
        metadata = candidate.get("groundingMetadata") if isinstance(candidate, dict) else None
        chunks = metadata.get("groundingChunks") if isinstance(metadata, dict) else None
        if not isinstance(chunks, list):
            continue
        for chunk in chunks:
            web = chunk.get("web") if isinstance(chunk, dict) else None
            if not isinstance(web, dict):
                continue
            url = web.get("uri")
            if not isinstance(url, str):
                continue
            url = url.strip()
            if not url or url in seen:
                continue
            title = web.get("title")
            if not isinstance(title, str) or not title.strip():
                title = DEFAULT_GROUNDED_TITLE
            seen.add(url)
            articles.append(RelatedArticle(title=title.strip(), url=url))
        if articles:
            break

    log.debug("grounded_articles_extracted", count=len(articles))
    return articles[:limit]


def parse_json_articles(text: str, policy: SourcePolicy = DEFAULT_POLICY) -> list[RelatedArticle]:
    """Articles the model listed under ``articles`` in the first ``{...}`` span of *text*."""
    match = JSON_OBJECT_RE.search(text or "")
    if match is None:
        return []
    data = load_json_object(match.group(0))
    if data is None:
        log.debug("search_json_unparseable")
        return []
    return normalize_articles(strip_citations(data.get("articles")), policy)


def _usable(articles: list[RelatedArticle], policy: SourcePolicy) -> list[RelatedArticle]:
    usable: list[RelatedArticle] = []
    seen: set[str] = set()
    for article in articles:
        if article.url in seen or not is_valid_url(article.url):
            continue
        if policy.is_suspicious(article.url):
            continue
        seen.add(article.url)
        usable.append(article)
    return usable


def select_related_articles(
    grounded: list[RelatedArticle],
    from_json: list[RelatedArticle],
    policy: SourcePolicy = DEFAULT_POLICY,
    *,
    limit: int = MAX_RELATED_ARTICLES,
) -> tuple[list[RelatedArticle], str]:
    """Pick the most trustworthy non-empty tier. Returns ``(articles, tier_name)``."""
    redirects = [a for a in [*grounded, *from_json] if policy.is_redirect(a.url)]
    tiers = (
        ("grounded_redirects", redirects),
        ("grounding_metadata", grounded),
        ("model_json", from_json),
    )
    for name, articles in tiers:
        usable = _usable(articles, policy)
        if usable:
            return usable[:limit], name
    return [], "none"


def related_articles_from_response(
    response: Any,
    text: str,
    policy: SourcePolicy = DEFAULT_POLICY,
) -> list[RelatedArticle]:
    """Reconcile grounding metadata and free-text JSON for one search response."""
    grounded = extract_grounded_articles(response)
    from_json = parse_json_articles(text, policy)
    articles, tier = select_related_articles(grounded, from_json, policy)
    log.info(
        "source_tier_selected",
        tier=tier,
        count=len(articles),
        grounded=len(grounded),
        from_json=len(from_json),
    )
    return articles
