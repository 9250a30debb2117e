"""Gemini REST client.

All calls to the remote language model go through a single GeminiClient
shared across requests. The client receives an httpx.AsyncClient via
constructor injection; the server lifespan owns the client lifecycle.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from deepdive import __version__
from deepdive.errors import DeepDiveError, ErrorCode
from deepdive.prompts import SYSTEM_INSTRUCTION

log = structlog.get_logger()


def build_http_client(timeout_seconds: float = 60.0) -> httpx.AsyncClient:
    """Create the shared outbound httpx client. Called once at startup."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_seconds),
        headers={"User-Agent": f"deepdive/{__version__}"},
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


def _parse_retry_after(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return max(0, int(float(value)))
    except ValueError:
        return None


def response_text(payload: Any) -> str:
    """Concatenate the text parts of the first candidate, or return ``""``."""
    if not isinstance(payload, dict):
        return ""
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return ""
    content = candidates[0].get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    return "".join(
        part["text"]
        for part in parts
        if isinstance(part, dict) and isinstance(part.get("text"), str)
    )


class GeminiClient:
    """Thin wrapper over ``models/{model}:generateContent``."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        model: str = "gemini-2.0-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        system_instruction: str = SYSTEM_INSTRUCTION,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self.model = model
        self._endpoint = f"{base_url.rstrip('/')}/models/{model}:generateContent"
        self._system_instruction = system_instruction

    async def generate(self, prompt: str, *, search: bool = False) -> dict[str, Any]:
        """Run one generation and return the raw JSON response.

        ``search=True`` enables the Google Search tool so the response carries
        grounding metadata. Raises DeepDiveError on network errors, non-2xx
        responses and non-JSON bodies.
        """
        body: dict[str, Any] = {
            "systemInstruction": {"parts": [{"text": self._system_instruction}]},
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        }
        if search:
            body["tools"] = [{"google_search": {}}]

        try:
            response = await self._client.post(
                self._endpoint,
                json=body,
                headers={"x-goog-api-key": self._api_key},
            )
        except httpx.HTTPError as exc:
            raise DeepDiveError(
                code=ErrorCode.NETWORK_ERROR,
                message=f"Network error calling the language model: {exc}",
                suggestion="The model service may be temporarily unreachable.",
                recoverable=True,
            ) from exc

        if not response.is_success:
            log.warning("model_call_failed", model=self.model, status_code=response.status_code)
            if response.status_code == 429:
                raise DeepDiveError(
                    code=ErrorCode.RATE_LIMITED,
                    message="The language model quota is exhausted.",
                    suggestion="Wait a moment and try again.",
                    recoverable=True,
                    retry_after=_parse_retry_after(response.headers.get("retry-after")),
                )
            if response.status_code >= 500:
                raise DeepDiveError(
                    code=ErrorCode.SERVER_ERROR,
                    message=f"Language model returned HTTP {response.status_code}",
                    suggestion="The model service may be temporarily unavailable.",
                    recoverable=True,
                )
            raise DeepDiveError(
                code=ErrorCode.UPSTREAM_ERROR,
                message=f"Language model rejected the request (HTTP {response.status_code})",
                suggestion="Check the configured API key and model name.",
                recoverable=False,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise DeepDiveError(
                code=ErrorCode.UPSTREAM_ERROR,
                message="Language model returned a non-JSON body",
                suggestion="The model service may be temporarily unavailable.",
                recoverable=True,
            ) from exc

        log.info(
            "model_call_complete",
            model=self.model,
            search=search,
            status_code=response.status_code,
        )
        return payload if isinstance(payload, dict) else {}
