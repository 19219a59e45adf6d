"""Pure ASGI CORS middleware for /stream/* endpoints only.

- Starlette's CORSMiddleware is not path-scoped, so it is not used here.
- Pure ASGI: injects headers on http.response.start without touching the
  streamed body.
- Non-/stream/* requests pass through untouched.
- Handles OPTIONS preflight before any auth dependency runs.
"""

from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import Response
from starlette.types import ASGIApp, Receive, Scope, Send

from donateconnect.auth.middleware import STREAM_PATH_PREFIX


class StreamCORSMiddleware:
    """Path-scoped CORS for browser EventSource connections to /stream/*."""

    def __init__(self, app: ASGIApp, allowed_origins: list[str]):
        self.app = app
        self.allowed_origins = set(allowed_origins)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not scope["path"].startswith(STREAM_PATH_PREFIX):
            await self.app(scope, receive, send)
            return

        origin = Headers(scope=scope).get("origin")
        if origin is None:
            # Non-browser client (curl, tests)
            await self.app(scope, receive, send)
            return

        if origin not in self.allowed_origins:
            response = Response(status_code=403, content="origin not allowed")
            await response(scope, receive, send)
            return

        if scope["method"] == "OPTIONS":
            response = Response(
                status_code=204,
                headers={
                    "access-control-allow-origin": origin,
                    "access-control-allow-methods": "GET, OPTIONS",
                    "access-control-allow-headers": "Authorization, Last-Event-ID",
                    "access-control-max-age": "600",
                },
            )
            await response(scope, receive, send)
            return

        async def send_with_cors(message: dict) -> None:
            if message["type"] == "http.response.start":
                resp_headers = MutableHeaders(scope=message)
                resp_headers.append("access-control-allow-origin", origin)
                resp_headers.append("access-control-expose-headers", "X-Request-Id")
            await send(message)

        await self.app(scope, receive, send_with_cors)
