"""
Name: XSS Input Scrubbing (pipeline stage 7)

Responsibilities:
  - Escape "<" and ">" in every string value of the JSON body and query string

Collaborators:
  - crosscutting/payload.py
"""

from __future__ import annotations

from typing import Any

from .payload import (
    get_json_body,
    get_query_pairs,
    has_json_body,
    set_json_body,
    set_query_pairs,
)


def escape_markup(text: str) -> str:
    return text.replace("<", "&lt;").replace(">", "&gt;")


def clean_value(value: Any) -> Any:
    if isinstance(value, str):
        return escape_markup(value)
    if isinstance(value, dict):
        return {key: clean_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [clean_value(item) for item in value]
    return value


class XSSCleanMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        pairs = get_query_pairs(scope)
        cleaned_pairs = [(key, escape_markup(value)) for key, value in pairs]
        if cleaned_pairs != pairs:
            set_query_pairs(scope, cleaned_pairs)

        if has_json_body(scope):
            body = get_json_body(scope)
            cleaned = clean_value(body)
            if cleaned != body:
                set_json_body(scope, cleaned)

        await self.app(scope, receive, send)
