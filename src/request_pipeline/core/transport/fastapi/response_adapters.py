"""
FastAPI response adapters.

This module contains adapters for converting pipeline response envelopes
to Starlette response objects and back.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi.responses import JSONResponse, Response

from request_pipeline.core.domain.response_envelope import ResponseEnvelope

logger = logging.getLogger(__name__)

# Recomputed by Starlette for the rendered body
_HOP_HEADERS = frozenset({"content-length", "set-cookie"})


def to_starlette_response(envelope: ResponseEnvelope) -> Response:
    """Convert a response envelope to a Starlette response.

    Args:
        envelope: The pipeline's response envelope

    Returns:
        A Starlette response with every cookie attached as its own
        ``Set-Cookie`` header
    """
    if envelope.raw is not None:
        return envelope.raw

    headers = {
        k: v for k, v in (envelope.headers or {}).items() if k.lower() not in _HOP_HEADERS
    }
    media_type = envelope.media_type or "application/json"
    content = envelope.content

    if content is None:
        response: Response = Response(
            content=b"", status_code=envelope.status_code, headers=headers
        )
    elif isinstance(content, bytes | bytearray | str):
        response = Response(
            content=content,
            status_code=envelope.status_code,
            headers=headers,
            media_type=media_type,
        )
    elif media_type == "application/json":
        response = JSONResponse(
            content=content, status_code=envelope.status_code, headers=headers
        )
    else:
        response = _create_other_response(
            content, envelope.status_code, headers, media_type
        )

    for cookie in envelope.cookies:
        response.raw_headers.append((b"set-cookie", cookie.encode("latin-1")))
    return response


def _create_other_response(
    content: Any, status_code: int, headers: dict[str, str], media_type: str
) -> Response:
    content_str = content
    if isinstance(content, dict | list | tuple):
        try:
            content_str = json.dumps(content)
        except (TypeError, ValueError):
            content_str = str(content)
    else:
        content_str = str(content)

    return Response(
        content=content_str,
        status_code=status_code,
        headers=headers,
        media_type=media_type,
    )


def envelope_from_response(response: Response) -> ResponseEnvelope:
    """Wrap an already-built Starlette response in an envelope.

    The rendered body is kept as bytes; ``Set-Cookie`` headers move to
    ``cookies``. Responses without a rendered body (``StreamingResponse``,
    ``FileResponse``) are carried through untouched in ``raw``.
    """
    headers: dict[str, str] = {}
    cookies: list[str] = []
    for raw_key, raw_value in response.raw_headers:
        key = raw_key.decode("latin-1")
        value = raw_value.decode("latin-1")
        if key.lower() == "set-cookie":
            cookies.append(value)
        elif key.lower() != "content-length":
            headers[key] = value

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("Wrapped Starlette response with status %s", response.status_code)

    media_type = response.media_type or headers.get(
        "content-type", "application/octet-stream"
    )
    if not hasattr(response, "body"):
        return ResponseEnvelope(
            content=None,
            headers=headers,
            status_code=response.status_code,
            media_type=media_type,
            cookies=cookies,
            raw=response,
        )

    return ResponseEnvelope(
        content=response.body,
        headers=headers,
        status_code=response.status_code,
        media_type=media_type,
        cookies=cookies,
    )
