"""
Name: HTTP Middlewares (cookies + verbose request logging)

Responsibilities:
  1) CookieParserMiddleware (stage 2):
     - Parse the Cookie header once into request.state.cookies
  2) RequestLoggingMiddleware (stage 3, development only):
     - One log line per request: method, path, status, latency, size

Collaborators:
  - crosscutting/logger.py
  - api/pipeline.py: enables stage 3 only when RUN_MODE=development
"""

from __future__ import annotations

import time

from starlette.datastructures import Headers
from starlette.requests import cookie_parser

from .logger import logger
from .payload import scope_state


class CookieParserMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            raw = Headers(scope=scope).get("cookie", "")
            scope_state(scope)["cookies"] = cookie_parser(raw) if raw else {}
        await self.app(scope, receive, send)


class RequestLoggingMiddleware:
    """
    Verbose request/response logging.

    Logs after the response is sent; failures are logged and re-raised so the
    error responder still produces the client response.
    """

    _QUIET_PATHS = {"/healthz", "/readyz"}

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or scope.get("path") in self._QUIET_PATHS:
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status_code = 500
        content_length = "-"

        async def send_wrapper(message):
            nonlocal status_code, content_length
            if message["type"] == "http.response.start":
                status_code = message["status"]
                for key, value in message.get("headers", []):
                    if key.lower() == b"content-length":
                        content_length = value.decode("latin-1")
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception:
            logger.info(
                f"{scope.get('method')} {_url(scope)} failed",
                extra={
                    "latency_ms": round((time.perf_counter() - start) * 1000, 2),
                },
            )
            raise

        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            f"{scope.get('method')} {_url(scope)} {status_code} "
            f"{latency_ms} ms - {content_length}",
            extra={"status_code": status_code, "latency_ms": latency_ms},
        )


def _url(scope) -> str:
    path = scope.get("path", "")
    query = scope.get("query_string", b"")
    return f"{path}?{query.decode('latin-1')}" if query else path
