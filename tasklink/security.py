"""Optional HTTP Basic auth for the API"""

from __future__ import annotations

import base64
import binascii
import secrets
from typing import Iterable, NamedTuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Liveness probes must work without credentials.
PUBLIC_PATHS = frozenset({"/health"})


class Credentials(NamedTuple):
    username: str
    password: str


def parse_basic_credentials(authorization: str | None) -> Credentials | None:
    """Decode `Authorization: Basic ...`; None for anything else or garbage."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "basic" or not token.strip():
        return None
    try:
        raw = base64.b64decode(token.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, sep, password = raw.partition(":")
    if not sep:
        return None
    return Credentials(username, password)


class BasicAuthMiddleware(BaseHTTPMiddleware):
    """Reject requests without the configured credentials, except on public paths."""

    def __init__(
        self,
        app,
        *,
        username: str,
        password: str,
        public_paths: Iterable[str] = PUBLIC_PATHS,
        realm: str = "TaskLink",
    ):
        super().__init__(app)
        self.expected = Credentials(username, password)
        self.public_paths = frozenset(public_paths)
        self.realm = realm

    def _matches(self, creds: Credentials | None) -> bool:
        if creds is None:
            return False
        # Constant-time on both halves.
        user_ok = secrets.compare_digest(creds.username.encode(), self.expected.username.encode())
        pass_ok = secrets.compare_digest(creds.password.encode(), self.expected.password.encode())
        return user_ok and pass_ok

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.public_paths:
            return await call_next(request)
        if self._matches(parse_basic_credentials(request.headers.get("Authorization"))):
            return await call_next(request)
        return Response(
            "Unauthorized",
            status_code=401,
            headers={"WWW-Authenticate": f'Basic realm="{self.realm}", charset="UTF-8"'},
        )
