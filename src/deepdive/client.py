"""HTTP client for the DeepDive backend.

Implements AnalysisBackend over ``POST /analyze`` and ``POST /search``. The
httpx.AsyncClient is injected; whoever builds it owns its lifecycle.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

import httpx
import structlog
from pydantic import ValidationError

from deepdive.errors import DeepDiveError, ErrorCode
from deepdive.gemini import _parse_retry_after
from deepdive.models.analysis import AnalysisResult, RelatedArticle
from deepdive.models.api import SearchResponse

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

log = structlog.get_logger()

_LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1"})


def check_backend_url(url: str) -> str:
    """Reject non-HTTPS backends unless they run on this machine."""
    parsed = urlsplit(url)
    if parsed.scheme == "https":
        return url.rstrip("/")
    if parsed.scheme == "http" and parsed.hostname in _LOCAL_HOSTS:
        return url.rstrip("/")
    raise DeepDiveError(
        code=ErrorCode.INSECURE_BACKEND,
        message=f"Backend URL must use HTTPS: {url}",
        suggestion="Use an https:// backend URL, or http://localhost for local development.",
        recoverable=False,
    )


def _malformed_body(path: str, exc: ValidationError) -> DeepDiveError:
    return DeepDiveError(
        code=ErrorCode.SERVER_ERROR,
        message=(
            f"Backend returned an unexpected body for {path}: "
            f"{exc.error_count()} invalid field(s)"
        ),
        suggestion="The backend may be running an incompatible version.",
        recoverable=True,
    )


def _error_for_response(response: httpx.Response) -> DeepDiveError:
    try:
        body = response.json()
    except ValueError:
        body = None
    detail = body.get("error") if isinstance(body, dict) else None
    status = response.status_code

    if status == 429:
        return DeepDiveError(
            code=ErrorCode.RATE_LIMITED,
            message=detail or "Too many requests",
            suggestion="Rate limit exceeded. Please try again later.",
            recoverable=True,
            retry_after=_parse_retry_after(response.headers.get("retry-after")),
        )
    if status >= 500:
        return DeepDiveError(
            code=ErrorCode.SERVER_ERROR,
            message=detail or f"Backend returned HTTP {status}",
            suggestion="The backend may be temporarily unavailable.",
            recoverable=True,
        )
    return DeepDiveError(
        code=ErrorCode.INVALID_INPUT,
        message=detail or f"Backend rejected the request (HTTP {status})",
        suggestion=(body.get("suggestion") if isinstance(body, dict) else None)
        or "Check the request and try again.",
        recoverable=False,
    )


class DeepDiveClient:
    """Calls the backend and maps transport failures onto DeepDiveError.

    Recoverable failures (network errors, 5xx, 429) are retried up to
    *max_retries* times with exponential backoff starting at
    *retry_base_delay* seconds. A 429 waits at least its Retry-After.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        backend_url: str = "http://localhost:3001",
        max_retries: int = 0,
        retry_base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self.backend_url = check_backend_url(backend_url)
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._sleep = sleep

    async def _post_once(self, path: str, body: dict[str, Any]) -> Any:
        try:
            response = await self._client.post(f"{self.backend_url}{path}", json=body)
        except httpx.HTTPError as exc:
            raise DeepDiveError(
                code=ErrorCode.NETWORK_ERROR,
                message=f"Network error: {exc}",
                suggestion="Check that the backend is running and reachable.",
                recoverable=True,
            ) from exc

        if not response.is_success:
            raise _error_for_response(response)

        try:
            return response.json()
        except ValueError as exc:
            raise DeepDiveError(
                code=ErrorCode.SERVER_ERROR,
                message="Backend returned a non-JSON body",
                suggestion="The backend may be misconfigured.",
                recoverable=True,
            ) from exc

    async def _post(self, path: str, body: dict[str, Any]) -> Any:
        attempt = 0
        while True:
            try:
                return await self._post_once(path, body)
            except DeepDiveError as exc:
                if not exc.recoverable or attempt >= self._max_retries:
                    raise
                delay = self._retry_base_delay * (2**attempt)
                if exc.retry_after is not None:
                    delay = max(delay, float(exc.retry_after))
                attempt += 1
                log.info(
                    "backend_call_retry",
                    path=path,
                    attempt=attempt,
                    code=exc.code,
                    delay_seconds=delay,
                )
                await self._sleep(delay)

    async def analyze(self, article: str, concepts: list[str] | None = None) -> AnalysisResult:
        body: dict[str, Any] = {"article": article}
        if concepts:
            body["concepts"] = concepts
        data = await self._post("/analyze", body)
        try:
            return AnalysisResult.model_validate(data)
        except ValidationError as exc:
            raise _malformed_body("/analyze", exc) from exc

    async def search(self, query: str) -> list[RelatedArticle]:
        data = await self._post("/search", {"searchQuery": query})
        try:
            return SearchResponse.model_validate(data).articles
        except ValidationError as exc:
            raise _malformed_body("/search", exc) from exc
