"""Integration test fixtures.

Provides the starlette app wired with a scripted in-memory model instead of
the Gemini client, plus an httpx client speaking to it over ASGI. Shared
fixtures (article_html, clock, fingerprint_cache) come from tests/conftest.py.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from deepdive.config import Settings
from deepdive.ratelimit import RateLimiter
from deepdive.server import create_app

if TYPE_CHECKING:
    from starlette.applications import Starlette

EXTENSION_ORIGIN = "chrome-extension://abcdefghijklmnop"

ANALYSIS_PAYLOAD = {
    "definitions": [{"term": "Tightening [1]", "definition": "Raising policy rates."}],
    "arguments": {"main": ["Inflation fell."], "counter": ["Growth slowed."]},
}


def text_reply(text: str, grounding: list[dict] | None = None) -> dict:
    """Gemini-shaped generateContent response."""
    candidate: dict[str, Any] = {"content": {"parts": [{"text": text}]}}
    if grounding is not None:
        candidate["groundingMetadata"] = {"groundingChunks": [{"web": w} for w in grounding]}
    return {"candidates": [candidate]}


class ScriptedModel:
    """ModelProtocol double returning canned replies and recording prompts."""

    def __init__(
        self,
        analysis: dict | None = None,
        search: dict | None = None,
        error: Exception | None = None,
    ) -> None:
        self.analysis = analysis or text_reply("```json\n" + json.dumps(ANALYSIS_PAYLOAD) + "\n```")
        self.search = search or text_reply('{"articles": []}')
        self.error = error
        self.calls: list[tuple[str, bool]] = []

    async def generate(self, prompt: str, *, search: bool = False) -> dict[str, Any]:
        self.calls.append((prompt, search))
        if self.error is not None:
            raise self.error
        return self.search if search else self.analysis


@pytest.fixture()
def model() -> ScriptedModel:
    return ScriptedModel()


@pytest.fixture()
def settings() -> Settings:
    return Settings(server={"environment": "production"}, gemini={"api_key": "test-key"})


@pytest.fixture()
def app(settings: Settings, model: ScriptedModel) -> Starlette:
    return create_app(
        settings,
        model=model,
        rate_limiter=RateLimiter(window_seconds=60, max_requests=3),
    )


@pytest.fixture()
async def client(app: Starlette) -> httpx.AsyncClient:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
        headers={"Origin": EXTENSION_ORIGIN},
    ) as http_client:
        yield http_client
