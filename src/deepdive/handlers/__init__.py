"""Request handlers for the HTTP backend.

Each handler receives the decoded JSON body and AppState, validates its
input, and returns a JSON-ready dict. No starlette imports; server.py
handles the HTTP wiring.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from deepdive.errors import DeepDiveError, ErrorCode

if TYPE_CHECKING:
    from pydantic import ValidationError


def invalid_input(exc: ValidationError, suggestion: str) -> DeepDiveError:
    """Turn the first pydantic validation error into an INVALID_INPUT error."""
    first = exc.errors()[0] if exc.errors() else {}
    field_name = ".".join(str(part) for part in first.get("loc", ())) or "request body"
    kind = first.get("type", "")
    msg = str(first.get("msg", "Invalid request"))

    if kind == "missing":
        message = f"Missing required field: {field_name}"
    elif kind == "value_error":
        message = msg.removeprefix("Value error, ")
    else:
        message = f"Invalid field {field_name}: {msg}"

    return DeepDiveError(
        code=ErrorCode.INVALID_INPUT,
        message=message,
        suggestion=suggestion,
        recoverable=False,
    )
