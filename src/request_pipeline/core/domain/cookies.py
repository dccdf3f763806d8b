from __future__ import annotations

from collections.abc import Iterator, Mapping

from starlette.datastructures import Headers
from starlette.requests import cookie_parser


class RequestCookies(Mapping[str, str]):
    """Read-only accessor over the cookies sent with a request.

    Parsed once from the ``Cookie`` header when the context is built.
    """

    def __init__(self, headers: Headers | Mapping[str, str] | None = None) -> None:
        cookie_header = ""
        if headers is not None:
            cookie_header = headers.get("cookie", "") or ""
        self._cookies: dict[str, str] = cookie_parser(cookie_header)

    def __getitem__(self, name: str) -> str:
        return self._cookies[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._cookies)

    def __len__(self) -> int:
        return len(self._cookies)

    def has(self, name: str) -> bool:
        return name in self._cookies

    def all(self) -> dict[str, str]:
        return dict(self._cookies)

    def __repr__(self) -> str:
        return f"<RequestCookies names={sorted(self._cookies)}>"
