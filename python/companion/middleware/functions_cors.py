"""Pure ASGI CORS middleware for the /functions/* webhook endpoints.

The AI backend may call the webhook endpoints from a browser context, so
they answer CORS preflights without requiring an API key. Other paths pass
through untouched (the user-facing API is served same-origin).
"""

from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import Response
from starlette.types import ASGIApp, Receive, Scope, Send

FUNCTIONS_PREFIX = "/functions/"
ALLOWED_HEADERS = "authorization, x-client-info, apikey, content-type, x-api-key"


class FunctionsCORSMiddleware:
    """Path-scoped CORS for /functions/*.

    allowed_origins may contain "*" to answer every origin.
    """

    def __init__(self, app: ASGIApp, allowed_origins: list[str]):
        self.app = app
        self.allowed_origins = set(allowed_origins)
        self.allow_any = "*" in self.allowed_origins

    def _allow_origin_value(self, origin: str | None) -> str | None:
        if self.allow_any:
            return "*"
        if origin is not None and origin in self.allowed_origins:
            return origin
        return None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not scope["path"].startswith(FUNCTIONS_PREFIX):
            await self.app(scope, receive, send)
            return

        origin = Headers(scope=scope).get("origin")
        allow_origin = self._allow_origin_value(origin)

        if scope["method"] == "OPTIONS":
            if allow_origin is None:
                response = Response(status_code=403, content="origin not allowed")
            else:
                response = Response(
                    status_code=200,
                    content="ok",
                    headers={
                        "access-control-allow-origin": allow_origin,
                        "access-control-allow-methods": "POST, OPTIONS",
                        "access-control-allow-headers": ALLOWED_HEADERS,
                        "access-control-max-age": "600",
                    },
                )
            await response(scope, receive, send)
            return

        if allow_origin is None:
            await self.app(scope, receive, send)
            return

        async def send_with_cors(message: dict) -> None:
            if message["type"] == "http.response.start":
                resp_headers = MutableHeaders(scope=message)
                resp_headers.append("access-control-allow-origin", allow_origin)
                resp_headers.append("access-control-expose-headers", "X-Request-ID")
            await send(message)

        await self.app(scope, receive, send_with_cors)
