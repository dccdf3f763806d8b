from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from starlette.responses import Response


@dataclass
class ResponseEnvelope:
    """Transport-agnostic container for a final HTTP response.

    Every pipeline exit produces one of these. The transport adapter is
    responsible for mapping it to a Starlette response.
    """

    content: Any  # dict, list, str, bytes or None
    headers: dict[str, str] = field(default_factory=dict)
    status_code: int = 200
    media_type: str = "application/json"
    # Multiple Set-Cookie values cannot live in a plain header dict
    cookies: list[str] = field(default_factory=list)
    # Streaming and file responses are sent as built, never re-rendered
    raw: Response | None = None


def build_error_envelope(
    status_code: int,
    message: str,
    code: str,
    details: Any = None,
    headers: dict[str, str] | None = None,
) -> ResponseEnvelope:
    """Render the fixed ``{"error": {...}, "data": null}`` error body."""
    final_headers = {"Content-Type": "application/json"}
    if headers:
        final_headers.update(headers)
    return ResponseEnvelope(
        content={
            "error": {"message": message, "code": code, "details": details},
            "data": None,
        },
        headers=final_headers,
        status_code=status_code,
    )
