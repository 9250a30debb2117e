"""Article text extraction.

Scores candidate DOM regions and returns the readable text of the one most
likely to be the article body. Pure and synchronous: receives an HTML
document, returns an ArticleSnapshot. No knowledge of caching or the network.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass

import structlog
from bs4 import BeautifulSoup, Tag

from deepdive.errors import DeepDiveError, ErrorCode
from deepdive.models.analysis import ArticleSnapshot

log = structlog.get_logger()

# Priority order: semantic containers first, generic fallbacks last.
CANDIDATE_SELECTORS: tuple[str, ...] = (
    "article",
    '[role="article"]',
    ".article-content",
    ".post-content",
    ".story-body",
    "main",
    "body",
)

NOISE_SELECTOR = ",".join(
    [
        "header",
        "nav",
        "footer",
        "aside",
        '[role="complementary"]',
        '[aria-label="sidebar"]',
        ".sidebar",
        ".related",
        ".most-read",
        ".trending",
        ".promo",
        ".newsletter",
        ".ad",
        '[class*="ad-"]',
        '[id*="ad-"]',
        ".banner",
        ".outbrain",
        ".share",
        ".comments",
    ]
)

# Never rendered, so never part of the visible text.
_INVISIBLE_SELECTOR = "script,style,noscript,template,svg"

_BLOCK_TAGS = frozenset(
    {
        "address", "article", "aside", "blockquote", "dd", "div", "dl", "dt",
        "figcaption", "figure", "footer", "form", "h1", "h2", "h3", "h4", "h5",
        "h6", "header", "hr", "li", "main", "nav", "ol", "p", "pre", "section",
        "table", "tr", "ul",
    }
)

ARTICLE_TAG_BONUS = 50_000
ARTICLE_ROLE_BONUS = 40_000
HEADING_BONUS = 5_000
BODY_PENALTY = 20_000
MAIN_PENALTY = 5_000

# Truncation looks for a sentence end no earlier than this fraction of the cap.
SENTENCE_WATERMARK = 0.8
_SENTENCE_END_RE = re.compile(r"[.!?]")


@dataclass(frozen=True)
class CandidateScore:
    score: int
    length: int  # Visible text length with noise regions removed


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    lines = [re.sub(r"[ \t\r\f\v]+", " ", line).strip() for line in text.split("\n")]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


def _strip_noise(element: Tag) -> Tag:
    """Return a detached copy of *element* without noise or invisible regions."""
    clone = copy.copy(element)
    for node in clone.select(f"{NOISE_SELECTOR},{_INVISIBLE_SELECTOR}"):
        node.decompose()
    return clone


def _inner_text(element: Tag) -> str:
    """Approximate the browser's rendered text, with line breaks at block edges.

    Mutates *element*; only call it on a copy.
    """
    for br in element.find_all("br"):
        br.replace_with("\n")
    for block in element.find_all(list(_BLOCK_TAGS)):
        block.insert_before("\n")
        block.insert_after("\n")
    return _normalize_text(element.get_text())


def visible_text(element: Tag) -> str:
    """Rendered text of *element* with noise regions removed."""
    return _inner_text(_strip_noise(element))


def score_candidate(element: Tag) -> CandidateScore:
    length = len(visible_text(element))
    score = length
    if element.name == "article":
        score += ARTICLE_TAG_BONUS
    if element.get("role") == "article":
        score += ARTICLE_ROLE_BONUS
    if element.find("h1") is not None:
        score += HEADING_BONUS
    if element.name == "body":
        score -= BODY_PENALTY
    if element.name == "main":
        score -= MAIN_PENALTY
    return CandidateScore(score=score, length=length)


def collect_candidates(soup: BeautifulSoup) -> list[Tag]:
    """All elements matched by CANDIDATE_SELECTORS, first match wins on duplicates."""
    seen: set[int] = set()
    candidates: list[Tag] = []
    for selector in CANDIDATE_SELECTORS:
        for element in soup.select(selector):
            # Tag.__eq__ compares markup, so identity has to be tracked by id()
            if id(element) in seen:
                continue
            seen.add(id(element))
            candidates.append(element)
    return candidates


def _paragraph_text(element: Tag, min_paragraph_length: int) -> str:
    paragraphs = (" ".join(p.get_text().split()) for p in element.find_all("p"))
    return "\n\n".join(p for p in paragraphs if len(p) >= min_paragraph_length)


def cap_text_length(text: str, max_length: int) -> str:
    """Truncate *text* to *max_length*, ending on a sentence boundary when one
    exists past the watermark."""
    if len(text) <= max_length:
        return text
    truncated = text[:max_length]
    boundary = -1
    for match in _SENTENCE_END_RE.finditer(truncated):
        boundary = match.end()
    if boundary >= int(max_length * SENTENCE_WATERMARK):
        return truncated[:boundary]
    return truncated


def select_article_text(
    soup: BeautifulSoup,
    *,
    min_text_length: int = 100,
    max_text_length: int = 60_000,
    min_paragraph_length: int = 40,
) -> str:
    """Return the best candidate's text, or an empty string if nothing qualifies."""
    best: Tag | None = None
    best_metrics = CandidateScore(score=0, length=0)
    for element in collect_candidates(soup):
        metrics = score_candidate(element)
        # Strict comparison: on equal scores the earlier candidate is kept
        if metrics.score > best_metrics.score:
            best = element
            best_metrics = metrics

    if best is not None and best_metrics.length >= min_text_length:
        cleaned = _strip_noise(best)
        text = _paragraph_text(cleaned, min_paragraph_length)
        if len(text) < min_text_length:
            text = _inner_text(cleaned)
        log.debug(
            "extraction_candidate_selected",
            tag=best.name,
            score=best_metrics.score,
            length=best_metrics.length,
        )
        return cap_text_length(text, max_text_length)

    root = soup.body or soup
    text = visible_text(root)
    if len(text) >= min_text_length:
        log.debug("extraction_body_fallback", length=len(text))
        return cap_text_length(text, max_text_length)
    return ""


def extract_article(
    html: str,
    url: str,
    *,
    min_text_length: int = 100,
    max_text_length: int = 60_000,
    min_paragraph_length: int = 40,
) -> ArticleSnapshot:
    """Extract an ArticleSnapshot from an HTML document.

    Raises DeepDiveError(NO_CONTENT) when no region clears the minimum length.
    That condition is final for the page and is not worth retrying.
    """
    soup = BeautifulSoup(html, "html.parser")
    text = select_article_text(
        soup,
        min_text_length=min_text_length,
        max_text_length=max_text_length,
        min_paragraph_length=min_paragraph_length,
    )
    if len(text) < min_text_length:
        log.info("extraction_no_content", url=url)
        raise DeepDiveError(
            code=ErrorCode.NO_CONTENT,
            message="No article content found on this page.",
            suggestion=(
                "Try a regular article, blog post, or documentation page "
                "instead of an app or index page."
            ),
            recoverable=False,
        )

    title = soup.title.get_text(strip=True) if soup.title else ""
    h1 = soup.find("h1")
    heading = " ".join(h1.get_text().split()) if h1 is not None else ""

    log.info("extraction_complete", url=url, length=len(text))
    return ArticleSnapshot(url=url, text=text, title=title, heading=heading)
