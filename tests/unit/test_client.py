"""Unit tests for deepdive.client."""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from deepdive.client import DeepDiveClient, check_backend_url
from deepdive.errors import DeepDiveError, ErrorCode
from deepdive.models.analysis import RelatedArticle

BACKEND = "https://deepdive.test"

ANALYSIS = {
    "definitions": [{"term": "Yield", "definition": "Return on a bond."}],
    "arguments": {"main": ["Yields rose."], "counter": []},
}


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _client(http_client: httpx.AsyncClient, **kwargs) -> DeepDiveClient:
    return DeepDiveClient(http_client, backend_url=BACKEND, **kwargs)


# ---------------------------------------------------------------------------
# check_backend_url
# ---------------------------------------------------------------------------


class TestCheckBackendUrl:
    @pytest.mark.parametrize(
        "url",
        ["https://api.deepdive.app", "http://localhost:3001", "http://127.0.0.1:8080/"],
    )
    def test_allowed(self, url: str) -> None:
        assert check_backend_url(url) == url.rstrip("/")

    @pytest.mark.parametrize("url", ["http://api.deepdive.app", "ftp://localhost", "localhost"])
    def test_rejected(self, url: str) -> None:
        with pytest.raises(DeepDiveError) as exc_info:
            check_backend_url(url)
        assert exc_info.value.code == ErrorCode.INSECURE_BACKEND


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class TestDeepDiveClient:
    async def test_analyze(self) -> None:
        with respx.mock:
            route = respx.post(f"{BACKEND}/analyze").mock(
                return_value=httpx.Response(200, json=ANALYSIS)
            )
            async with httpx.AsyncClient() as http_client:
                result = await _client(http_client).analyze("Article text", ["yield"])

            assert result.definitions[0].term == "Yield"
            assert result.arguments.main == ["Yields rose."]
            assert json.loads(route.calls.last.request.content) == {
                "article": "Article text",
                "concepts": ["yield"],
            }

    async def test_analyze_omits_empty_concepts(self) -> None:
        with respx.mock:
            route = respx.post(f"{BACKEND}/analyze").mock(
                return_value=httpx.Response(200, json=ANALYSIS)
            )
            async with httpx.AsyncClient() as http_client:
                await _client(http_client).analyze("Article text")

            assert json.loads(route.calls.last.request.content) == {"article": "Article text"}

    async def test_search(self) -> None:
        articles = [{"title": "Story", "url": "https://news.org/1"}]
        with respx.mock:
            route = respx.post(f"{BACKEND}/search").mock(
                return_value=httpx.Response(200, json={"articles": articles})
            )
            async with httpx.AsyncClient() as http_client:
                result = await _client(http_client).search("bond yields")

            assert result == [RelatedArticle(title="Story", url="https://news.org/1")]
            assert json.loads(route.calls.last.request.content) == {"searchQuery": "bond yields"}


class TestErrorMapping:
    async def test_429_rate_limited(self) -> None:
        with respx.mock:
            respx.post(f"{BACKEND}/analyze").mock(
                return_value=httpx.Response(
                    429,
                    headers={"Retry-After": "42"},
                    json={"error": "Too many requests", "retryAfter": 42},
                )
            )
            async with httpx.AsyncClient() as http_client:
                with pytest.raises(DeepDiveError) as exc_info:
                    await _client(http_client).analyze("x")
        assert exc_info.value.code == ErrorCode.RATE_LIMITED
        assert exc_info.value.retry_after == 42
        assert exc_info.value.recoverable is True

    async def test_5xx_server_error(self) -> None:
        with respx.mock:
            respx.post(f"{BACKEND}/analyze").mock(return_value=httpx.Response(502))
            async with httpx.AsyncClient() as http_client:
                with pytest.raises(DeepDiveError) as exc_info:
                    await _client(http_client).analyze("x")
        assert exc_info.value.code == ErrorCode.SERVER_ERROR
        assert exc_info.value.recoverable is True

    async def test_4xx_validation_error_keeps_backend_message(self) -> None:
        with respx.mock:
            respx.post(f"{BACKEND}/analyze").mock(
                return_value=httpx.Response(
                    400,
                    json={"error": "Article text cannot be empty", "suggestion": "Send text."},
                )
            )
            async with httpx.AsyncClient() as http_client:
                with pytest.raises(DeepDiveError) as exc_info:
                    await _client(http_client).analyze(" ")
        assert exc_info.value.code == ErrorCode.INVALID_INPUT
        assert exc_info.value.message == "Article text cannot be empty"
        assert exc_info.value.suggestion == "Send text."
        assert exc_info.value.recoverable is False

    async def test_network_error(self) -> None:
        with respx.mock:
            respx.post(f"{BACKEND}/search").mock(side_effect=httpx.ConnectError("refused"))
            async with httpx.AsyncClient() as http_client:
                with pytest.raises(DeepDiveError) as exc_info:
                    await _client(http_client).search("q")
        assert exc_info.value.code == ErrorCode.NETWORK_ERROR
        assert exc_info.value.recoverable is True

    async def test_malformed_analysis_body_is_server_error(self) -> None:
        with respx.mock:
            respx.post(f"{BACKEND}/analyze").mock(
                return_value=httpx.Response(200, json={"definitions": "oops"})
            )
            async with httpx.AsyncClient() as http_client:
                with pytest.raises(DeepDiveError) as exc_info:
                    await _client(http_client).analyze("x")
        assert exc_info.value.code == ErrorCode.SERVER_ERROR
        assert exc_info.value.recoverable is True
        assert "/analyze" in exc_info.value.message

    async def test_malformed_search_body_is_server_error(self) -> None:
        with respx.mock:
            respx.post(f"{BACKEND}/search").mock(
                return_value=httpx.Response(200, json={"articles": [{"title": "no url"}]})
            )
            async with httpx.AsyncClient() as http_client:
                with pytest.raises(DeepDiveError) as exc_info:
                    await _client(http_client).search("q")
        assert exc_info.value.code == ErrorCode.SERVER_ERROR
        assert exc_info.value.recoverable is True
        assert "/search" in exc_info.value.message


class TestRetry:
    async def test_no_retry_by_default(self) -> None:
        with respx.mock:
            route = respx.post(f"{BACKEND}/analyze").mock(return_value=httpx.Response(500))
            async with httpx.AsyncClient() as http_client:
                with pytest.raises(DeepDiveError):
                    await _client(http_client).analyze("x")
            assert route.call_count == 1

    async def test_retries_recoverable_with_backoff(self) -> None:
        sleep = RecordingSleep()
        with respx.mock:
            route = respx.post(f"{BACKEND}/analyze").mock(
                side_effect=[
                    httpx.Response(503),
                    httpx.ConnectError("refused"),
                    httpx.Response(200, json=ANALYSIS),
                ]
            )
            async with httpx.AsyncClient() as http_client:
                client = _client(http_client, max_retries=3, retry_base_delay=0.5, sleep=sleep)
                result = await client.analyze("x")

            assert route.call_count == 3
        assert result.arguments.main == ["Yields rose."]
        assert sleep.delays == [0.5, 1.0]

    async def test_gives_up_after_max_retries(self) -> None:
        sleep = RecordingSleep()
        with respx.mock:
            route = respx.post(f"{BACKEND}/analyze").mock(return_value=httpx.Response(500))
            async with httpx.AsyncClient() as http_client:
                client = _client(http_client, max_retries=2, sleep=sleep)
                with pytest.raises(DeepDiveError):
                    await client.analyze("x")
            assert route.call_count == 3
        assert sleep.delays == [1.0, 2.0]

    async def test_validation_errors_not_retried(self) -> None:
        sleep = RecordingSleep()
        with respx.mock:
            route = respx.post(f"{BACKEND}/analyze").mock(return_value=httpx.Response(400))
            async with httpx.AsyncClient() as http_client:
                client = _client(http_client, max_retries=3, sleep=sleep)
                with pytest.raises(DeepDiveError):
                    await client.analyze("x")
            assert route.call_count == 1
        assert sleep.delays == []

    async def test_rate_limit_waits_for_retry_after(self) -> None:
        sleep = RecordingSleep()
        with respx.mock:
            respx.post(f"{BACKEND}/analyze").mock(
                side_effect=[
                    httpx.Response(429, headers={"Retry-After": "30"}),
                    httpx.Response(200, json=ANALYSIS),
                ]
            )
            async with httpx.AsyncClient() as http_client:
                client = _client(http_client, max_retries=1, sleep=sleep)
                await client.analyze("x")
        assert sleep.delays == [30.0]
