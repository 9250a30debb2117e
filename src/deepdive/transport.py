"""Origin policy and rate-limit middleware for the HTTP backend."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog
from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import JSONResponse

from deepdive.errors import DeepDiveError, ErrorCode

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

    from deepdive.ratelimit import RateLimiter

log = structlog.get_logger()

_EXTENSION_SCHEME = "chrome-extension://"


def is_origin_allowed(
    origin: str,
    *,
    environment: str,
    allowed_extension_id: str | None = None,
) -> bool:
    """Decide whether a browser origin may call the backend.

    Requests without an Origin (curl, server-to-server) are always allowed.
    Extension origins are allowed, narrowed to one extension ID when one is
    configured in production. Anything else is allowed only in development.
    """
    if not origin:
        return True
    if origin.startswith(_EXTENSION_SCHEME):
        if environment == "production" and allowed_extension_id:
            return origin == f"{_EXTENSION_SCHEME}{allowed_extension_id}"
        return True
    return environment == "development"


class OriginPolicyMiddleware:
    """Pure ASGI middleware rejecting disallowed origins with 403."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        environment: str,
        allowed_extension_id: str | None = None,
    ) -> None:
        self.app = app
        self.environment = environment
        self.allowed_extension_id = allowed_extension_id

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            origin = Headers(scope=scope).get("origin", "")
            if not is_origin_allowed(
                origin,
                environment=self.environment,
                allowed_extension_id=self.allowed_extension_id,
            ):
                log.warning("origin_rejected", origin=origin)
                error = DeepDiveError(
                    code=ErrorCode.ORIGIN_NOT_ALLOWED,
                    message="Not allowed by CORS",
                    suggestion="Call the backend from the DeepDive extension.",
                    recoverable=False,
                )
                await JSONResponse(error.to_dict(), status_code=error.http_status)(
                    scope, receive, send
                )
                return

        await self.app(scope, receive, send)


def _client_identifier(scope: Scope) -> str:
    origin = Headers(scope=scope).get("origin")
    if origin:
        return origin
    client = scope.get("client")
    if client:
        return str(client[0])
    return "unknown"


class RateLimitMiddleware:
    """Pure ASGI middleware applying a RateLimiter to selected paths.

    Every limited response carries ``X-RateLimit-Limit``, ``X-RateLimit-Remaining``
    and ``X-RateLimit-Reset``; rejected requests get 429 plus ``Retry-After``.
    CORS preflight requests are never counted.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        limiter: RateLimiter,
        paths: frozenset[str] = frozenset({"/analyze"}),
    ) -> None:
        self.app = app
        self.limiter = limiter
        self.paths = paths

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if (
            scope["type"] != "http"
            or scope["path"] not in self.paths
            or scope["method"] == "OPTIONS"
        ):
            await self.app(scope, receive, send)
            return

        identifier = _client_identifier(scope)
        decision = self.limiter.check(identifier)
        rate_headers = {
            "X-RateLimit-Limit": str(self.limiter.max_requests),
            "X-RateLimit-Remaining": str(decision.remaining),
            "X-RateLimit-Reset": datetime.fromtimestamp(decision.reset_at, UTC).isoformat(),
        }

        if not decision.allowed:
            retry_after = decision.retry_after(self.limiter.now())
            log.warning("rate_limited", identifier=identifier, retry_after=retry_after)
            error = DeepDiveError(
                code=ErrorCode.RATE_LIMITED,
                message="Too many requests",
                suggestion="Rate limit exceeded. Please try again later.",
                recoverable=True,
                retry_after=retry_after,
            )
            response = JSONResponse(
                error.to_dict(),
                status_code=error.http_status,
                headers={**rate_headers, "Retry-After": str(retry_after)},
            )
            await response(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in rate_headers.items():
                    headers[name] = value
            await send(message)

        await self.app(scope, receive, send_with_headers)
