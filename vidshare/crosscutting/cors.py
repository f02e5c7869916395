"""
Name: Cross-Origin Policy (pipeline stage 8)

Responsibilities:
  - Apply Starlette's CORSMiddleware policy (preflight + simple responses)
  - Publish the simple-response headers in request state so error responses
    built by the error responder carry them too

Collaborators:
  - crosscutting/config.py: ALLOWED_ORIGINS, CORS_ALLOW_CREDENTIALS
  - api/exception_handlers.ErrorResponderMiddleware: reads CORS_HEADERS_KEY
"""

from __future__ import annotations

from starlette.datastructures import Headers, MutableHeaders
from starlette.middleware.cors import CORSMiddleware

from .payload import scope_state

CORS_HEADERS_KEY = "cors_headers"


class CORSStageMiddleware(CORSMiddleware):
    def simple_response_headers(self, request_headers: Headers) -> dict[str, str]:
        """Headers CORSMiddleware adds to a simple (non-preflight) response."""
        headers = MutableHeaders()
        headers.update(self.simple_headers)
        origin = request_headers["origin"]
        # Cookies require the explicit origin instead of "*".
        if self.allow_all_origins and "cookie" in request_headers:
            self.allow_explicit_origin(headers, origin)
        elif not self.allow_all_origins and self.is_allowed_origin(origin=origin):
            self.allow_explicit_origin(headers, origin)
        return dict(headers.items())

    async def simple_response(
        self, scope, receive, send, request_headers: Headers
    ) -> None:
        scope_state(scope)[CORS_HEADERS_KEY] = self.simple_response_headers(
            request_headers
        )
        await super().simple_response(
            scope, receive, send, request_headers=request_headers
        )
