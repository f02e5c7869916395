"""
Name: JSON Body Parser (pipeline stage 1)

Responsibilities:
  - Buffer and decode JSON request bodies before any handler sees them
  - Reject malformed JSON with 400 MALFORMED_BODY
  - Reject bodies over max_body_bytes with 413 (Content-Length and streamed)

Collaborators:
  - crosscutting/payload.py: stores decoded body, replays bytes downstream
  - crosscutting/error_responses.py: malformed_body(), payload_too_large()

Notes:
  - Non-JSON bodies (multipart uploads, form posts) pass through untouched
  - An empty JSON body decodes to {}
"""

from __future__ import annotations

import json

from starlette.datastructures import Headers

from .error_responses import malformed_body, payload_too_large
from .logger import logger
from .payload import JSON_BODY_KEY, RAW_BODY_KEY, replay_receive, scope_state


def is_json_content_type(content_type: str | None) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


class BodyParserMiddleware:
    """ASGI stage that decodes JSON bodies into request.state.json_body."""

    def __init__(self, app, *, max_body_bytes: int):
        self.app = app
        self._max_bytes = max_body_bytes

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        if not is_json_content_type(headers.get("content-type")):
            await self.app(scope, receive, send)
            return

        declared = headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self._max_bytes:
            logger.warning(
                "payload too large (content-length)",
                extra={"content_length": declared, "max_bytes": self._max_bytes},
            )
            raise payload_too_large(self._max_bytes)

        raw = await self._read_body(receive)

        if raw.strip():
            try:
                decoded = json.loads(raw)
            except (ValueError, UnicodeDecodeError) as exc:
                logger.info("malformed JSON body", extra={"error": str(exc)})
                raise malformed_body() from exc
        else:
            decoded = {}

        state = scope_state(scope)
        state[JSON_BODY_KEY] = decoded
        state[RAW_BODY_KEY] = raw

        await self.app(scope, replay_receive(scope, receive), send)

    async def _read_body(self, receive) -> bytes:
        chunks: list[bytes] = []
        received = 0
        while True:
            message = await receive()
            if message["type"] != "http.request":
                break
            body = message.get("body", b"") or b""
            received += len(body)
            if received > self._max_bytes:
                logger.warning(
                    "payload too large (streaming)",
                    extra={"received_bytes": received, "max_bytes": self._max_bytes},
                )
                raise payload_too_large(self._max_bytes)
            chunks.append(body)
            if not message.get("more_body", False):
                break
        return b"".join(chunks)
