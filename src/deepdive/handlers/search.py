"""Handler for POST /search.

Runs a search-grounded model call and reconciles grounding metadata with the
links the model wrote into its reply.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from deepdive.gemini import response_text
from deepdive.grounding import related_articles_from_response
from deepdive.handlers import invalid_input
from deepdive.models.api import SearchRequest, SearchResponse
from deepdive.prompts import build_search_prompt

if TYPE_CHECKING:
    from deepdive.state import AppState


async def handle(payload: Any, state: AppState) -> dict:
    """Handle a /search request body."""
    log = structlog.get_logger().bind(handler="search")
    started = time.perf_counter()

    try:
        validated = SearchRequest.model_validate(payload)
    except ValidationError as exc:
        error = invalid_input(exc, suggestion="Send {searchQuery: string}.")
        log.warning("validation_failed", message=error.message)
        raise error from exc

    if state.model is None:
        raise RuntimeError("Language model client not initialized")

    log.info("handler_called", search_query=validated.search_query)

    reply = await state.model.generate(build_search_prompt(validated.search_query), search=True)
    articles = related_articles_from_response(reply, response_text(reply), state.policy)

    log.info(
        "search_complete",
        articles=len(articles),
        duration_ms=int((time.perf_counter() - started) * 1000),
    )
    return SearchResponse(articles=articles).model_dump(mode="json")
