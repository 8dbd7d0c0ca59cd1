from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

PRODUCTION_CSP = "; ".join([
    "default-src 'self'",
    "script-src 'self'",
    "style-src 'self' 'unsafe-inline'",
    "img-src 'self' data: blob:",
    "font-src 'self'",
    "connect-src 'self'",
    "media-src 'self'",
    "object-src 'none'",
    "base-uri 'self'",
    "form-action 'self'",
    "frame-ancestors 'none'",
    "upgrade-insecure-requests",
])

DEVELOPMENT_CSP = "; ".join([
    "default-src 'self'",
    "script-src 'self' 'unsafe-inline' 'unsafe-eval'",
    "style-src 'self' 'unsafe-inline'",
    "img-src 'self' data: blob:",
    "font-src 'self'",
    "connect-src 'self' ws: wss:",
    "media-src 'self'",
    "object-src 'none'",
    "base-uri 'self'",
    "form-action 'self'",
    "frame-ancestors 'none'",
])

CORS_HEADERS = {
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Requested-With",
}

EXCLUDED_PREFIXES = ("/static", "/api/health", "/favicon.ico")


class SecurityHeadersMiddleware:
    """
    Adds fixed security headers and a content-security-policy to every
    non-static response. Under /api/ it also answers CORS for allow-listed
    origins and short-circuits OPTIONS preflights with an empty 200.

    Written as a plain ASGI middleware: `receive` reaches the endpoint
    untouched, so `request.is_disconnected()` sees a client abort.
    """

    def __init__(self, app: ASGIApp, allowed_origins=(), production: bool = False):
        self.app = app
        self.allowed_origins = set(allowed_origins)
        self.csp = PRODUCTION_CSP if production else DEVELOPMENT_CSP

    def _headers_for(self, path: str, request_headers: Headers) -> dict:
        headers = dict(SECURITY_HEADERS)
        headers["Content-Security-Policy"] = self.csp
        if path.startswith("/api/"):
            origin = request_headers.get("origin")
            if origin and origin in self.allowed_origins:
                headers["Access-Control-Allow-Origin"] = origin
                headers["Vary"] = "Origin"
            headers.update(CORS_HEADERS)
        return headers

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        path = scope.get("path", "")
        if scope["type"] != "http" or path.startswith(EXCLUDED_PREFIXES):
            await self.app(scope, receive, send)
            return

        headers = self._headers_for(path, Headers(scope=scope))
        if scope["method"] == "OPTIONS" and path.startswith("/api/"):
            response = Response(status_code=200, headers=headers)
            await response(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                response_headers = MutableHeaders(scope=message)
                for name, value in headers.items():
                    response_headers[name] = value
            await send(message)

        await self.app(scope, receive, send_with_headers)
