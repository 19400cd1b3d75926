"""ClientIdentityMiddleware: derives the rate-limit key for each request.

The identity is the first entry of ``X-Forwarded-For`` when present, or the
``"unknown"`` sentinel otherwise, so every client behind a proxy without that
header shares one bucket.
"""

import logging

from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"


class ClientIdentityMiddleware:
    """Pure-ASGI middleware storing the client identity in request state.

    After this middleware runs, downstream handlers can read
    ``request.state.client_identity``.
    """

    def __init__(self, app: ASGIApp, *, header: str = "x-forwarded-for") -> None:
        self.app = app
        self.header = header.lower().encode("latin-1")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        state = scope.setdefault("state", {})
        state["client_identity"] = self.identify(scope)
        await self.app(scope, receive, send)

    def identify(self, scope: Scope) -> str:
        for name, value in scope.get("headers") or []:
            if name.lower() == self.header:
                first = value.decode("latin-1").split(",")[0].strip()
                return first or UNKNOWN_CLIENT
        return UNKNOWN_CLIENT
