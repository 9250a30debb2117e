"""Application state container.

AppState is created once at server startup (inside the starlette lifespan)
and handed to every request handler through ``request.app.state``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from deepdive.normalizer import DEFAULT_POLICY, SourcePolicy

if TYPE_CHECKING:
    import httpx

    from deepdive.config import Settings
    from deepdive.protocols import ModelProtocol
    from deepdive.ratelimit import RateLimiter


@dataclass
class AppState:
    """Holds all shared runtime state of the backend."""

    settings: Settings
    rate_limiter: RateLimiter
    model: ModelProtocol | None = None
    http_client: httpx.AsyncClient | None = None
    policy: SourcePolicy = field(default=DEFAULT_POLICY)
