"""
Name: HTTP Parameter Pollution guard (pipeline stage 10)

Responsibilities:
  - Collapse repeated query parameters to their last value
  - Keep the collapsed values in request.state.query_polluted for handlers that care

Notes:
  - Whitelisted parameters keep every occurrence
"""

from __future__ import annotations

from typing import Iterable

from .payload import get_query_pairs, scope_state, set_query_pairs


def collapse_repeated(
    pairs: list[tuple[str, str]], whitelist: frozenset[str] = frozenset()
) -> tuple[list[tuple[str, str]], dict[str, list[str]]]:
    """Return (collapsed pairs in first-seen order, {key: all values} for repeats)."""
    values: dict[str, list[str]] = {}
    for key, value in pairs:
        values.setdefault(key, []).append(value)

    polluted = {
        key: seen for key, seen in values.items() if len(seen) > 1 and key not in whitelist
    }
    if not polluted:
        return pairs, {}

    collapsed: list[tuple[str, str]] = []
    emitted: set[str] = set()
    for key, value in pairs:
        if key in polluted:
            if key not in emitted:
                collapsed.append((key, polluted[key][-1]))
                emitted.add(key)
        else:
            collapsed.append((key, value))
    return collapsed, polluted


class HPPMiddleware:
    def __init__(self, app, *, whitelist: Iterable[str] = ()):
        self.app = app
        self._whitelist = frozenset(whitelist)

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        collapsed, polluted = collapse_repeated(get_query_pairs(scope), self._whitelist)
        scope_state(scope)["query_polluted"] = polluted
        if polluted:
            set_query_pairs(scope, collapsed)

        await self.app(scope, receive, send)
