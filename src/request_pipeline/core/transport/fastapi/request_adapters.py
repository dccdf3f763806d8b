"""
FastAPI request adapters.

This module builds Starlette requests for in-process calls that do not come
through an ASGI server.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

from starlette.requests import Request
from starlette.types import Message

logger = logging.getLogger(__name__)


def _encode_body(
    body: Any, headers: dict[str, str]
) -> bytes:
    if body is None:
        return b""
    if isinstance(body, bytes | bytearray):
        headers.setdefault("content-type", "application/octet-stream")
        return bytes(body)
    if isinstance(body, str):
        headers.setdefault("content-type", "text/plain")
        return body.encode("utf-8")
    headers.setdefault("content-type", "application/json")
    return json.dumps(body).encode("utf-8")


def build_request(
    method: str,
    path: str,
    *,
    body: Any = None,
    query: Mapping[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
    client: tuple[str, int] | None = ("127.0.0.1", 0),
) -> Request:
    """Create a Starlette request from plain values.

    Args:
        method: HTTP method
        path: Absolute request path
        body: Dict/list (sent as JSON), str (text), bytes, or None
        query: Query parameters
        headers: Request headers; ``content-type`` is inferred from ``body``
            when absent
        client: Peer address reported as ``request.client``

    Returns:
        A request whose body can be read once, like one from a server
    """
    final_headers = {k.lower(): v for k, v in (headers or {}).items()}
    payload = _encode_body(body, final_headers)
    if body is not None:
        final_headers["content-length"] = str(len(payload))

    scope: dict[str, Any] = {
        "type": "http",
        "http_version": "1.1",
        "method": method.upper(),
        "scheme": "http",
        "server": ("internal", 80),
        "client": client,
        "root_path": "",
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": urlencode(dict(query or {}), doseq=True).encode("latin-1"),
        "headers": [
            (k.encode("latin-1"), str(v).encode("latin-1"))
            for k, v in final_headers.items()
        ],
    }

    sent = False

    async def receive() -> Message:
        nonlocal sent
        if sent:
            return {"type": "http.disconnect"}
        sent = True
        return {"type": "http.request", "body": payload, "more_body": False}

    logger.debug("Built in-process request %s %s", method.upper(), path)
    return Request(scope, receive)
