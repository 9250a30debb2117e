"""HTTP backend entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Build AppState and the starlette application
- Own the outbound HTTP client and the rate-limit sweeper via the lifespan
- Serialise DeepDiveError into the JSON error envelope
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager, suppress
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog
import uvicorn
from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route

import deepdive.handlers.analyze as h_analyze
import deepdive.handlers.search as h_search
from deepdive import __version__
from deepdive.config import Settings
from deepdive.errors import DeepDiveError, ErrorCode
from deepdive.gemini import GeminiClient, build_http_client
from deepdive.models.api import HealthResponse
from deepdive.normalizer import SourcePolicy
from deepdive.ratelimit import RateLimiter
from deepdive.schedulers import run_rate_limit_sweeper
from deepdive.state import AppState
from deepdive.transport import OriginPolicyMiddleware, RateLimitMiddleware

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

    from starlette.requests import Request

    from deepdive.protocols import ModelProtocol

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # Logs go to stderr; stdout is left to the CLI's rendered output
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: Starlette) -> AsyncGenerator[None, None]:
    """Create and tear down the shared resources for the server's lifetime."""
    state: AppState = app.state.deepdive
    settings = state.settings

    owns_client = state.model is None
    if owns_client:
        if not settings.gemini.api_key:
            raise RuntimeError("DEEPDIVE__GEMINI__API_KEY is not set")
        state.http_client = build_http_client(settings.gemini.timeout_seconds)
        state.model = GeminiClient(
            state.http_client,
            api_key=settings.gemini.api_key,
            model=settings.gemini.model,
            base_url=settings.gemini.base_url,
        )

    sweeper_task = asyncio.create_task(
        run_rate_limit_sweeper(state.rate_limiter, settings.rate_limit.sweep_interval_seconds)
    )

    log.info(
        "server_started",
        version=__version__,
        environment=settings.server.environment,
        model=settings.gemini.model,
        rate_limit=state.rate_limiter.max_requests,
    )
    if settings.server.environment == "production":
        log.warning("https_required", message="Serve this backend behind HTTPS in production")

    try:
        yield
    finally:
        sweeper_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper_task
        if owns_client and state.http_client is not None:
            await state.http_client.aclose()
        log.info("server_stopping")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


def _error_response(error: DeepDiveError) -> JSONResponse:
    headers = {"Retry-After": str(error.retry_after)} if error.retry_after is not None else None
    return JSONResponse(error.to_dict(), status_code=error.http_status, headers=headers)


async def _read_json(request: Request, max_body_bytes: int) -> Any:
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > max_body_bytes:
        raise _too_large(max_body_bytes)
    # Content-Length may be absent (chunked) or wrong; count what actually arrives
    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > max_body_bytes:
            raise _too_large(max_body_bytes)
        chunks.append(chunk)
    body = b"".join(chunks)
    try:
        return json.loads(body)
    except ValueError as exc:
        raise DeepDiveError(
            code=ErrorCode.INVALID_INPUT,
            message="Invalid JSON",
            suggestion="Request body must be valid JSON.",
            recoverable=False,
        ) from exc


def _too_large(max_body_bytes: int) -> DeepDiveError:
    return DeepDiveError(
        code=ErrorCode.PAYLOAD_TOO_LARGE,
        message="Request body too large",
        suggestion=f"Maximum request size is {max_body_bytes} bytes.",
        recoverable=False,
    )


async def _run_handler(
    request: Request,
    name: str,
    handler: Callable[[Any, AppState], Awaitable[dict]],
) -> JSONResponse:
    state: AppState = request.app.state.deepdive
    try:
        payload = await _read_json(request, state.settings.server.max_body_bytes)
        return JSONResponse(await handler(payload, state))
    except DeepDiveError as exc:
        log.warning(
            "handler_error",
            handler=name,
            code=exc.code,
            message=exc.message,
            recoverable=exc.recoverable,
        )
        return _error_response(exc)
    except Exception:
        log.error("handler_unexpected_error", handler=name, exc_info=True)
        return JSONResponse({"error": "Internal server error"}, status_code=500)


async def analyze(request: Request) -> JSONResponse:
    """Definitions and arguments for an article."""
    return await _run_handler(request, "analyze", h_analyze.handle)


async def search(request: Request) -> JSONResponse:
    """Related sources for a search query."""
    return await _run_handler(request, "search", h_search.handle)


async def health(request: Request) -> JSONResponse:
    return JSONResponse(HealthResponse(timestamp=datetime.now(UTC)).model_dump(mode="json"))


async def _http_error(request: Request, exc: HTTPException) -> JSONResponse:
    if exc.status_code == 404:
        log.warning("route_not_found", method=request.method, path=request.url.path)
        return JSONResponse(
            {
                "error": "Not found",
                "message": f"Route {request.method} {request.url.path} does not exist",
            },
            status_code=404,
        )
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    *,
    model: ModelProtocol | None = None,
    rate_limiter: RateLimiter | None = None,
) -> Starlette:
    """Build the backend application.

    *model* and *rate_limiter* are injectable for tests; when *model* is
    omitted the lifespan builds a GeminiClient from settings.
    """
    settings = settings or Settings()
    if rate_limiter is None:
        rate_limiter = RateLimiter(
            window_seconds=settings.rate_limit.window_seconds,
            max_requests=settings.rate_limit_max_requests,
        )
    state = AppState(
        settings=settings,
        rate_limiter=rate_limiter,
        model=model,
        policy=SourcePolicy.from_settings(settings.sources),
    )

    app = Starlette(
        routes=[
            Route("/analyze", analyze, methods=["POST"]),
            Route("/search", search, methods=["POST"]),
            Route("/health", health, methods=["GET"]),
        ],
        middleware=[
            Middleware(
                OriginPolicyMiddleware,
                environment=settings.server.environment,
                allowed_extension_id=settings.server.allowed_extension_id,
            ),
            Middleware(
                CORSMiddleware,
                allow_origins=["*"],
                allow_methods=["GET", "POST", "OPTIONS"],
                allow_headers=["Content-Type"],
            ),
            Middleware(RateLimitMiddleware, limiter=rate_limiter),
        ],
        exception_handlers={HTTPException: _http_error},
        lifespan=lifespan,
    )
    app.state.deepdive = state
    return app


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def run_http_server(settings: Settings) -> None:
    """Serve the backend with uvicorn."""
    setup_logging(settings)
    if not settings.gemini.api_key:
        log.error("gemini_api_key_missing", env_var="DEEPDIVE__GEMINI__API_KEY")
        sys.exit(1)

    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,  # Disable uvicorn's default logging; structlog handles it
    )


def main() -> None:
    run_http_server(Settings())


if __name__ == "__main__":
    main()
