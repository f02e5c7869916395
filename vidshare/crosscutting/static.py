"""
Name: Static Assets (pipeline stage 11)

Responsibilities:
  - Serve files from STATIC_DIR at the root path before route dispatch
  - Fall through to the route groups when no file matches

Collaborators:
  - starlette.staticfiles.StaticFiles (file lookup, caching headers, ranges)
"""

from __future__ import annotations

from starlette.exceptions import HTTPException
from starlette.staticfiles import StaticFiles


class StaticAssetsMiddleware:
    def __init__(self, app, *, directory: str):
        self.app = app
        # R: check_dir=False so a missing directory just means "no assets".
        self._static = StaticFiles(directory=directory, check_dir=False)

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or scope.get("method") not in ("GET", "HEAD"):
            await self.app(scope, receive, send)
            return

        try:
            response = await self._static.get_response(
                self._static.get_path(scope), scope
            )
        except HTTPException as exc:
            if exc.status_code != 404:
                raise
            await self.app(scope, receive, send)
            return

        await response(scope, receive, send)
