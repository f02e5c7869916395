"""
Name: Security Headers (pipeline stage 6)

Responsibilities:
  - Add hardening headers to every response (CSP, anti-clickjacking, nosniff, ...)
  - HSTS only in production over HTTPS (direct or behind a proxy)
  - Publish the header set in request state so error responses carry it too

Collaborators:
  - api/exception_handlers.ErrorResponderMiddleware: reads SECURITY_HEADERS_KEY
"""

from __future__ import annotations

from starlette.datastructures import Headers

from .payload import scope_state

SECURITY_HEADERS_KEY = "security_headers"

_HSTS_VALUE = "max-age=15552000; includeSubDomains"


def _build_csp(is_production: bool) -> str:
    # Development allows inline scripts/styles for the interactive docs.
    if is_production:
        return (
            "default-src 'self'; "
            "base-uri 'self'; "
            "script-src 'self'; "
            "style-src 'self'; "
            "img-src 'self' data:; "
            "font-src 'self'; "
            "object-src 'none'; "
            "frame-ancestors 'self'"
        )

    return (
        "default-src 'self'; "
        "base-uri 'self'; "
        "script-src 'self' 'unsafe-inline'; "
        "style-src 'self' 'unsafe-inline'; "
        "img-src 'self' data:; "
        "font-src 'self'; "
        "object-src 'none'; "
        "frame-ancestors 'self'"
    )


def build_security_headers(is_production: bool) -> dict[str, str]:
    return {
        "Content-Security-Policy": _build_csp(is_production),
        "Cross-Origin-Opener-Policy": "same-origin",
        "Cross-Origin-Resource-Policy": "same-origin",
        "Origin-Agent-Cluster": "?1",
        "Referrer-Policy": "no-referrer",
        "X-Content-Type-Options": "nosniff",
        "X-DNS-Prefetch-Control": "off",
        "X-Download-Options": "noopen",
        "X-Frame-Options": "SAMEORIGIN",
        "X-Permitted-Cross-Domain-Policies": "none",
        "X-XSS-Protection": "0",
    }


class SecurityHeadersMiddleware:
    def __init__(self, app, *, is_production: bool):
        self.app = app
        self._is_production = is_production
        self._headers = build_security_headers(is_production)

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(self._headers)
        if self._is_production:
            request_headers = Headers(scope=scope)
            proto = (
                request_headers.get("x-forwarded-proto") or scope.get("scheme") or ""
            ).lower()
            if proto == "https":
                headers["Strict-Transport-Security"] = _HSTS_VALUE

        scope_state(scope)[SECURITY_HEADERS_KEY] = headers
        encoded = [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in headers.items()
        ]

        async def send_with_headers(message):
            if message["type"] == "http.response.start":
                present = {k.lower() for k, _ in message.get("headers", [])}
                extra = [(k, v) for k, v in encoded if k not in present]
                message["headers"] = list(message.get("headers", [])) + extra
            await send(message)

        await self.app(scope, receive, send_with_headers)
