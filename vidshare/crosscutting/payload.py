"""
Name: Request Payload State

Responsibilities:
  - Hold the decoded JSON body and raw bytes in the ASGI scope state
  - Let later stages rewrite the body and query string in place
  - Replay the (possibly rewritten) body to downstream receivers

Collaborators:
  - body_parser.BodyParserMiddleware: stores the decoded body
  - sanitize, xss, hpp stages: rewrite body/query
  - route groups: read request.state.json_body or await request.json()

Notes:
  - Scope state is the same dict Starlette exposes as request.state
"""

from __future__ import annotations

import json
from typing import Any
from urllib.parse import parse_qsl, quote, urlencode

JSON_BODY_KEY = "json_body"
RAW_BODY_KEY = "raw_body"

_MISSING = object()

# Everything a well-formed query may already contain unescaped.
_QUERY_SAFE = "&=+%;/?:@,$!*'()~[]"


def scope_state(scope) -> dict[str, Any]:
    return scope.setdefault("state", {})


def has_json_body(scope) -> bool:
    return scope_state(scope).get(JSON_BODY_KEY, _MISSING) is not _MISSING


def get_json_body(scope) -> Any:
    return scope_state(scope).get(JSON_BODY_KEY)


def set_json_body(scope, value: Any) -> None:
    """Store a new decoded body and re-encode the bytes that will be replayed."""
    raw = json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    state = scope_state(scope)
    state[JSON_BODY_KEY] = value
    state[RAW_BODY_KEY] = raw
    _set_header(scope, b"content-length", str(len(raw)).encode("latin-1"))


def get_query_pairs(scope) -> list[tuple[str, str]]:
    # Raw non-ASCII bytes are percent-escaped first so they decode as UTF-8,
    # the same encoding set_query_pairs() writes back.
    query = quote(scope.get("query_string", b""), safe=_QUERY_SAFE)
    return parse_qsl(query, keep_blank_values=True)


def set_query_pairs(scope, pairs: list[tuple[str, str]]) -> None:
    scope["query_string"] = urlencode(pairs).encode("latin-1")


def replay_receive(scope, receive):
    """
    Receive callable that first delivers the buffered body from scope state.

    The bytes are looked up when the downstream app reads them, so rewrites made
    by later stages are what the route handler sees.
    """
    delivered = False

    async def receive_replayed():
        nonlocal delivered
        if not delivered:
            delivered = True
            body = scope_state(scope).get(RAW_BODY_KEY, b"")
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return receive_replayed


def _set_header(scope, name: bytes, value: bytes) -> None:
    headers = [(k, v) for k, v in scope.get("headers", []) if k.lower() != name]
    headers.append((name, value))
    scope["headers"] = headers
