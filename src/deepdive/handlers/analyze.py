"""Handler for POST /analyze.

Validates the article, asks the model for definitions and arguments, and
normalizes whatever comes back. Related sources are not part of this
response; they come from /search.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from deepdive.gemini import response_text
from deepdive.handlers import invalid_input
from deepdive.models.api import AnalyzeRequest, AnalyzeResponse
from deepdive.normalizer import parse_model_response
from deepdive.prompts import build_analysis_prompt

if TYPE_CHECKING:
    from deepdive.state import AppState


async def handle(payload: Any, state: AppState) -> dict:
    """Handle an /analyze request body."""
    log = structlog.get_logger().bind(handler="analyze")
    started = time.perf_counter()

    try:
        validated = AnalyzeRequest.model_validate(payload)
    except ValidationError as exc:
        error = invalid_input(
            exc,
            suggestion="Send {article: string, concepts?: string[]} with a non-empty article.",
        )
        log.warning("validation_failed", message=error.message)
        raise error from exc

    if state.model is None:
        raise RuntimeError("Language model client not initialized")

    log.info(
        "handler_called",
        article_length=len(validated.article),
        concepts=validated.concepts or "auto-detect",
    )

    reply = await state.model.generate(build_analysis_prompt(validated.article, validated.concepts))
    parsed = parse_model_response(response_text(reply), state.policy)

    log.info(
        "analysis_complete",
        definitions=len(parsed.definitions),
        main_arguments=len(parsed.arguments.main),
        counter_arguments=len(parsed.arguments.counter),
        duration_ms=int((time.perf_counter() - started) * 1000),
    )
    return AnalyzeResponse(
        definitions=parsed.definitions,
        arguments=parsed.arguments,
    ).model_dump(mode="json")
