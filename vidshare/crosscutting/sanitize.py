"""
Name: Query-Operator Sanitizer (pipeline stage 5)

Responsibilities:
  - Strip keys that start with "$" or contain "." from the JSON body and query
  - Optionally reject such requests instead (SANITIZE_REJECT=true)

Collaborators:
  - crosscutting/payload.py
  - crosscutting/error_responses.rejected_input()

Notes:
  - Keys are removed at every nesting level, including inside lists
"""

from __future__ import annotations

from typing import Any

from .error_responses import rejected_input
from .logger import logger
from .payload import (
    get_json_body,
    get_query_pairs,
    has_json_body,
    set_json_body,
    set_query_pairs,
)


def is_operator_key(key: str) -> bool:
    return key.startswith("$") or "." in key


def strip_operator_keys(value: Any, found: list[str] | None = None) -> Any:
    """Return a copy of value without operator keys; offending keys go to `found`."""
    if isinstance(value, dict):
        cleaned = {}
        for key, item in value.items():
            if is_operator_key(str(key)):
                if found is not None:
                    found.append(str(key))
                continue
            cleaned[key] = strip_operator_keys(item, found)
        return cleaned
    if isinstance(value, list):
        return [strip_operator_keys(item, found) for item in value]
    return value


class SanitizeMiddleware:
    def __init__(self, app, *, reject: bool = False):
        self.app = app
        self._reject = reject

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        found: list[str] = []

        pairs = get_query_pairs(scope)
        kept = []
        for key, value in pairs:
            if is_operator_key(key):
                found.append(key)
            else:
                kept.append((key, value))

        cleaned_body = None
        body_found: list[str] = []
        if has_json_body(scope):
            cleaned_body = strip_operator_keys(get_json_body(scope), body_found)
            found.extend(body_found)

        if found:
            logger.warning("operator keys in request", extra={"keys": found})
            if self._reject:
                raise rejected_input(found)
            if len(kept) != len(pairs):
                set_query_pairs(scope, kept)
            if body_found:
                set_json_body(scope, cleaned_body)

        await self.app(scope, receive, send)
