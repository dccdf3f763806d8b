"""
Request body parsing.

Dispatches on the declared ``Content-Type`` (case-insensitive substring
match, first match wins) and returns the parsed body, or None when the route
declares no body schema or the request carries no body.
"""

from __future__ import annotations

import json
import tempfile
import time
from typing import Any

from starlette.datastructures import Headers, UploadFile
from starlette.requests import Request

from request_pipeline.core.common.exceptions import BodyParseError, PipelineError
from request_pipeline.core.common.logging_utils import child_logger
from request_pipeline.core.interfaces.telemetry_interface import ITelemetrySpan
from request_pipeline.core.services.telemetry_manager import (
    TelemetryManager,
    elapsed_ms,
)

# Blobs larger than this spill from memory to a temporary file
_SPOOL_MAX_SIZE = 1024 * 1024

_BODYLESS_METHODS = frozenset({"GET", "HEAD"})


def has_body_stream(request: Request) -> bool:
    """Whether the request carries a body at all (possibly empty).

    Clients omit ``Content-Length`` for an empty payload, so a declared
    content type also counts as a (zero-length) body.
    """
    if request.method.upper() in _BODYLESS_METHODS:
        return False
    headers = request.headers
    return any(
        name in headers for name in ("content-length", "transfer-encoding", "content-type")
    )


def _content_length(headers: Headers) -> int:
    try:
        return max(0, int(headers.get("content-length", "0") or "0"))
    except ValueError:
        return 0


def measure_body_size(body: Any) -> int:
    """Best-effort byte size of an in-memory body representation."""
    if body is None:
        return 0
    if isinstance(body, str):
        return len(body.encode("utf-8"))
    if isinstance(body, bytes | bytearray):
        return len(body)
    if isinstance(body, UploadFile):
        return body.size or 0
    if isinstance(body, dict | list):
        try:
            return len(json.dumps(body, default=str).encode("utf-8"))
        except (TypeError, ValueError):
            return 0
    return 0


class BodyParser:
    """Parses request bodies and reports parse telemetry."""

    def __init__(
        self, telemetry: TelemetryManager | None = None, logger: Any | None = None
    ) -> None:
        self._telemetry = telemetry or TelemetryManager(logger=logger)
        self._logger = child_logger(logger, "BodyParser")

    async def parse(
        self,
        request: Request,
        has_body_schema: bool,
        parent_span: ITelemetrySpan | None = None,
    ) -> Any:
        """Extract and parse the request body.

        Raises:
            BodyParseError: When the body is malformed for its content type
        """
        start_time = time.monotonic()
        content_type = request.headers.get("content-type", "")
        span = self._telemetry.create_body_parsing_span(
            content_type, has_body_schema, parent_span
        )

        self._logger.debug("Parsing request body", content_type=content_type or "none")

        if not has_body_schema or not has_body_stream(request):
            self._logger.debug(
                "No body schema or no body, returning None; use request.raw to read it"
            )
            self._finish(span, content_type, True, 0, start_time)
            return None

        content_length = _content_length(request.headers)
        try:
            parsed = await self._dispatch(request, content_type.lower())
        except PipelineError:
            self._finish(span, content_type, False, content_length, start_time)
            raise
        except Exception as e:
            self._finish(span, content_type, False, content_length, start_time)
            self._logger.error("Body parsing failed", error=str(e))
            raise BodyParseError(
                "Failed to parse request body",
                details=str(e) or "Invalid request body format",
            ) from e

        size = content_length or measure_body_size(parsed)
        self._finish(span, content_type, True, size, start_time)
        return parsed

    def _finish(
        self,
        span: ITelemetrySpan | None,
        content_type: str,
        success: bool,
        size: int,
        start_time: float,
    ) -> None:
        duration = elapsed_ms(start_time)
        self._telemetry.finish_body_parsing_span(span, success, size, duration)
        self._telemetry.record_body_parsing(content_type, size, duration, success)

    async def _dispatch(self, request: Request, content_type: str) -> Any:
        if "application/json" in content_type:
            return await self._parse_json(request)
        if "application/x-www-form-urlencoded" in content_type:
            self._logger.debug("Parsing as URL encoded form")
            form = await request.form()
            return {key: str(value) for key, value in form.multi_items()}
        if "multipart/form-data" in content_type:
            self._logger.debug("Parsing as multipart form data")
            form = await request.form()
            # file parts stay UploadFile instances
            return dict(form.multi_items())
        if "text/plain" in content_type:
            self._logger.debug("Parsing as plain text")
            return await self._read_text(request)
        if "application/octet-stream" in content_type:
            self._logger.debug("Parsing as binary")
            return await request.body()
        if (
            "application/pdf" in content_type
            or "image/" in content_type
            or "video/" in content_type
        ):
            self._logger.debug("Parsing as blob", content_type=content_type)
            return await self._read_blob(request, content_type)
        if "application/stream" in content_type:
            self._logger.debug("Passing stream through")
            return request.stream()
        self._logger.debug("Parsing as text")
        return await self._read_text(request)

    async def _parse_json(self, request: Request) -> Any:
        self._logger.debug("Parsing as JSON")
        text = await self._read_text(request)
        if not text.strip():
            self._logger.debug("Empty JSON body")
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise BodyParseError(
                "Failed to parse JSON request body", details=str(e)
            ) from e

    @staticmethod
    async def _read_text(request: Request) -> str:
        raw = await request.body()
        return raw.decode("utf-8")

    @staticmethod
    async def _read_blob(request: Request, content_type: str) -> UploadFile:
        spooled = tempfile.SpooledTemporaryFile(max_size=_SPOOL_MAX_SIZE)
        size = 0
        async for chunk in request.stream():
            if chunk:
                spooled.write(chunk)
                size += len(chunk)
        spooled.seek(0)
        return UploadFile(
            file=spooled,  # type: ignore[arg-type]
            size=size,
            headers=Headers({"content-type": content_type}),
        )
