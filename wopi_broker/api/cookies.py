"""
Cookie transport backed by a Starlette request/response pair.
"""

from email.utils import formatdate
from typing import Optional

from fastapi import Request, Response

from ..domain.services import CookieJar


class ResponseCookieJar(CookieJar):
    """Reads inbound cookies from the request and queues outbound ones on the response."""

    def __init__(self, request: Request, response: Response):
        self.request = request
        self.response = response
        self._pending = {}

    def get(self, name: str) -> Optional[str]:
        if name in self._pending:
            return self._pending[name] or None
        return self.request.cookies.get(name)

    def set(
        self,
        name: str,
        value: str,
        *,
        expires: int,
        path: str,
        secure: bool,
        httponly: bool = True,
        samesite: str = "lax"
    ) -> None:
        self._pending[name] = value
        # Starlette treats integer expiries as relative seconds
        self.response.set_cookie(
            key=name,
            value=value,
            expires=formatdate(expires, usegmt=True),
            path=path,
            secure=secure,
            httponly=httponly,
            samesite=samesite,
        )
