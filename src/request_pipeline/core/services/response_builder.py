"""
Fluent response builder handed to procedures and action handlers.

Handlers shape a response with ``response.status(201).success(data)`` and
return the builder; the pipeline turns it into a ``ResponseEnvelope`` with
``to_response()``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal
from urllib.parse import quote

from pydantic_core import to_jsonable_python
from starlette.responses import Response

from request_pipeline.core.common.logging_utils import child_logger
from request_pipeline.core.domain.response_envelope import ResponseEnvelope

SameSite = Literal["strict", "lax", "none"]
CookiePrefix = Literal["secure", "host"]

_ERROR_CODE_STATUS: dict[str, int] = {
    "ERR_BAD_REQUEST": 400,
    "ERR_UNAUTHORIZED": 401,
    "ERR_FORBIDDEN": 403,
    "ERR_NOT_FOUND": 404,
    "ERR_CONFLICT": 409,
    "ERR_UNPROCESSABLE_ENTITY": 422,
    "ERR_REDIRECT": 302,
}

_CIRCULAR = "[Circular]"


def _break_cycles(value: Any, ancestors: frozenset[int] = frozenset()) -> Any:
    if isinstance(value, dict | list | tuple | set):
        if id(value) in ancestors:
            return _CIRCULAR
        inner = ancestors | {id(value)}
        if isinstance(value, dict):
            return {k: _break_cycles(v, inner) for k, v in value.items()}
        return [_break_cycles(v, inner) for v in value]
    return value


def to_jsonable(value: Any) -> Any:
    """Convert ``value`` into JSON-compatible Python data.

    Pydantic models, dataclasses, datetimes and the like go through
    pydantic's encoder; self-referencing containers become ``"[Circular]"``;
    anything else unknown is stringified.
    """
    return to_jsonable_python(_break_cycles(value), fallback=str)


def default_status_for_error_code(code: str) -> int:
    if code.startswith("ERR_"):
        return _ERROR_CODE_STATUS.get(code, 500)
    return 500


class ResponseBuilder:
    """Accumulates status, headers, cookies and body for one request."""

    def __init__(self, logger: Any | None = None) -> None:
        self._status = 200
        self._status_explicitly_set = False
        self._headers: dict[str, str] = {}
        self._cookies: list[str] = []
        self._body: Any = None
        self._has_body = False
        self._logger = child_logger(logger, "ResponseBuilder")

    @property
    def status_code(self) -> int:
        return self._status

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    @property
    def cookies(self) -> list[str]:
        return list(self._cookies)

    def status(self, code: int) -> ResponseBuilder:
        """Set the status code; later helpers keep it instead of their default."""
        self._logger.debug("Setting response status", status=code)
        self._status = code
        self._status_explicitly_set = True
        return self

    def _set_body(self, body: Any, default_status: int) -> ResponseBuilder:
        self._body = body
        self._has_body = True
        if not self._status_explicitly_set:
            self._status = default_status
        return self

    def success(self, data: Any = None) -> ResponseBuilder:
        return self._set_body({"data": data, "error": None}, 200)

    def created(self, data: Any) -> ResponseBuilder:
        return self._set_body({"data": data, "error": None}, 201)

    def no_content(self) -> ResponseBuilder:
        return self._set_body({"data": None, "error": None}, 204)

    def json(self, data: Any) -> ResponseBuilder:
        return self._set_body({"data": data, "error": None}, 200)

    def error(self, code: str, message: str, data: Any = None) -> ResponseBuilder:
        default_status = default_status_for_error_code(code)
        if not self._status_explicitly_set:
            self._logger.debug(
                "Setting response status for error code",
                status=default_status,
                code=code,
            )
        return self._set_body(
            {"data": None, "error": {"code": code, "message": message, "data": data}},
            default_status,
        )

    def bad_request(self, message: str = "Bad Request", data: Any = None) -> ResponseBuilder:
        return self.error("ERR_BAD_REQUEST", message, data)

    def unauthorized(self, message: str = "Unauthorized", data: Any = None) -> ResponseBuilder:
        return self.error("ERR_UNAUTHORIZED", message, data)

    def forbidden(self, message: str = "Forbidden", data: Any = None) -> ResponseBuilder:
        return self.error("ERR_FORBIDDEN", message, data)

    def not_found(self, message: str = "Not Found", data: Any = None) -> ResponseBuilder:
        return self.error("ERR_NOT_FOUND", message, data)

    def redirect(
        self, destination: str, type: Literal["replace", "push"] = "replace"
    ) -> ResponseBuilder:
        return self.error(
            "ERR_REDIRECT", "Redirect", {"destination": destination, "type": type}
        )

    def set_header(self, name: str, value: str) -> ResponseBuilder:
        self._logger.debug("Setting header", header=name)
        self._headers[name] = value
        return self

    def set_cookie(
        self,
        name: str,
        value: str,
        *,
        max_age: float | None = None,
        domain: str | None = None,
        path: str | None = None,
        expires: datetime | None = None,
        http_only: bool = False,
        secure: bool = False,
        same_site: SameSite | None = None,
        partitioned: bool = False,
        prefix: CookiePrefix | None = None,
    ) -> ResponseBuilder:
        cookie = build_cookie_string(
            name,
            value,
            max_age=max_age,
            domain=domain,
            path=path,
            expires=expires,
            http_only=http_only,
            secure=secure,
            same_site=same_site,
            partitioned=partitioned,
            prefix=prefix,
        )
        self._logger.debug("Setting cookie", cookie=name)
        self._cookies.append(cookie)
        return self

    def to_response(self) -> ResponseEnvelope:
        """Build the final envelope from everything set so far."""
        headers = dict(self._headers)
        if not any(k.lower() == "content-type" for k in headers):
            headers["Content-Type"] = "application/json"

        status = self._status
        # 204 responses never carry a body
        if not self._has_body or status == 204:
            content = None
        else:
            try:
                content = to_jsonable(self._body)
            except Exception as e:
                self._logger.error(
                    "Failed to serialize response data, returning a generic error response",
                    error=str(e),
                )
                content = {
                    "data": None,
                    "error": {
                        "code": "SERIALIZATION_ERROR",
                        "message": "Failed to serialize response data",
                    },
                }

        self._logger.debug(
            "Final response built", status=status, header_keys=sorted(headers)
        )
        return ResponseEnvelope(
            content=content,
            headers=headers,
            status_code=status,
            cookies=list(self._cookies),
        )


def _encode_cookie_value(value: str) -> str:
    # Percent-encoded values never need cookie quoting
    return quote(value, safe="-_.!~*'")


def build_cookie_string(
    name: str,
    value: str,
    *,
    max_age: float | None = None,
    domain: str | None = None,
    path: str | None = None,
    expires: datetime | None = None,
    http_only: bool = False,
    secure: bool = False,
    same_site: SameSite | None = None,
    partitioned: bool = False,
    prefix: CookiePrefix | None = None,
) -> str:
    """Serialize one ``Set-Cookie`` value.

    Attribute rendering is Starlette's ``Response.set_cookie``. ``__Host-``
    cookies are always Secure with ``Path=/`` and no Domain; partitioned
    cookies are always Secure.
    """
    is_host = prefix == "host"
    if prefix == "secure":
        name = f"__Secure-{name}"
    elif is_host:
        name = f"__Host-{name}"

    if expires is not None:
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        expires = expires.astimezone(timezone.utc)

    rendered = Response()
    rendered.set_cookie(
        name,
        _encode_cookie_value(value),
        max_age=int(max_age) if max_age is not None else None,
        expires=expires,
        path="/" if is_host else path,
        domain=None if is_host else domain,
        secure=secure or prefix is not None or partitioned,
        httponly=http_only,
        samesite=same_site,
    )
    cookie = rendered.headers["set-cookie"]
    # Starlette only renders Partitioned on Python 3.14+
    if partitioned:
        cookie = f"{cookie}; Partitioned"
    return cookie
