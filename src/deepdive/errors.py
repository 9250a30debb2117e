from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    NO_CONTENT = "NO_CONTENT"
    INVALID_INPUT = "INVALID_INPUT"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    RATE_LIMITED = "RATE_LIMITED"
    NETWORK_ERROR = "NETWORK_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    NOT_FOUND = "NOT_FOUND"
    ORIGIN_NOT_ALLOWED = "ORIGIN_NOT_ALLOWED"
    INSECURE_BACKEND = "INSECURE_BACKEND"


_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.NO_CONTENT: 422,
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.PAYLOAD_TOO_LARGE: 413,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.NETWORK_ERROR: 502,
    ErrorCode.SERVER_ERROR: 502,
    ErrorCode.UPSTREAM_ERROR: 502,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.ORIGIN_NOT_ALLOWED: 403,
    ErrorCode.INSECURE_BACKEND: 400,
}


class DeepDiveError(Exception):
    """Raised for all expected failure conditions.

    Handlers raise it; server.py serialises it into the HTTP error envelope and
    the orchestrator's caller decides whether to offer a retry based on
    ``recoverable``. Parsing of model output never raises it; the normalizer
    degrades to a minimal result instead.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        recoverable: bool = False,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable
        self.retry_after = retry_after

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS.get(self.code, 500)

    def to_dict(self) -> dict:
        payload: dict = {
            "error": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "recoverable": self.recoverable,
        }
        if self.retry_after is not None:
            payload["retryAfter"] = self.retry_after
        return payload
