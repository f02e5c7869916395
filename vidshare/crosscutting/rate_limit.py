"""
Name: Rate Limiting (fixed window per client) - in-memory

Responsibilities:
  - Count requests per client identity inside a fixed window (10 min / 100 by default)
  - Reject requests over the cap with 429 RATE_LIMITED until the window rolls over
  - Emit RateLimit-Limit / RateLimit-Remaining / RateLimit-Reset headers

Collaborators:
  - crosscutting/config.py: RATE_LIMIT_WINDOW_SECONDS, RATE_LIMIT_MAX_REQUESTS, TRUST_PROXY
  - crosscutting/error_responses.rate_limited()
  - api/pipeline.py: owns the limiter instance (stage 9)

Constraints:
  - In-memory (resets on restart)
  - Counter updates happen under a lock, one hit per request
  - Each identity's window starts at its first request
  - Expired windows are swept periodically; the oldest identity is evicted past max_keys
"""

from __future__ import annotations

import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from starlette.datastructures import Headers

from .error_responses import rate_limited
from .logger import logger


@dataclass
class Window:
    started_at: float
    count: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_after: float

    def headers(self) -> dict[str, str]:
        return {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(max(0, math.ceil(self.reset_after))),
        }


class FixedWindowRateLimiter:
    """
    Per-identity fixed window counter.

    Algorithm:
      1. The first hit of an identity opens a window of `window_seconds`
      2. Every hit increments the counter; hits 1..max_requests are allowed
      3. Once `window_seconds` have elapsed the next hit opens a new window
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        max_keys: int = 10_000,
    ):
        if max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.max_requests = int(max_requests)
        self.window_seconds = float(window_seconds)
        self.max_keys = int(max_keys)

        self._clock = clock
        self._windows: "OrderedDict[str, Window]" = OrderedDict()
        self._lock = threading.Lock()
        self._ops = 0

    def hit(self, key: str) -> RateLimitDecision:
        with self._lock:
            now = self._clock()
            self._ops += 1
            self._sweep_if_needed(now)

            window = self._windows.get(key)
            if window is None or now - window.started_at >= self.window_seconds:
                if window is None and len(self._windows) >= self.max_keys:
                    self._windows.popitem(last=False)
                window = Window(started_at=now, count=0)
                self._windows[key] = window
                self._windows.move_to_end(key, last=True)

            window.count += 1
            reset_after = window.started_at + self.window_seconds - now
            return RateLimitDecision(
                allowed=window.count <= self.max_requests,
                limit=self.max_requests,
                remaining=max(0, self.max_requests - window.count),
                reset_after=reset_after,
            )

    def get_remaining(self, key: str) -> int:
        with self._lock:
            window = self._windows.get(key)
            if window is None or self._clock() - window.started_at >= self.window_seconds:
                return self.max_requests
            return max(0, self.max_requests - window.count)

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()

    def _sweep_if_needed(self, now: float) -> None:
        # Amortized: every 256 hits.
        if (self._ops & 0xFF) != 0:
            return
        # Windows are ordered by start time, so stop at the first live one.
        expired = []
        for key, window in self._windows.items():
            if now - window.started_at >= self.window_seconds:
                expired.append(key)
            else:
                break
        for key in expired:
            self._windows.pop(key, None)


def get_client_identifier(scope, *, trust_proxy: bool = False) -> str:
    """Client identity: first X-Forwarded-For hop when trusted, else the peer address."""
    if trust_proxy:
        forwarded_for = Headers(scope=scope).get("x-forwarded-for")
        if forwarded_for:
            return f"ip:{forwarded_for.split(',')[0].strip()}"

    client = scope.get("client")
    if client:
        return f"ip:{client[0]}"

    return "ip:unknown"


class RateLimitMiddleware:
    """ASGI stage applying the limiter; health probes are not counted."""

    EXCLUDED_PATHS = {"/healthz", "/readyz"}

    def __init__(self, app, *, limiter: FixedWindowRateLimiter, trust_proxy: bool = False):
        self.app = app
        self._limiter = limiter
        self._trust_proxy = trust_proxy

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or scope.get("path", "") in self.EXCLUDED_PATHS:
            await self.app(scope, receive, send)
            return

        client_id = get_client_identifier(scope, trust_proxy=self._trust_proxy)
        decision = self._limiter.hit(client_id)

        if not decision.allowed:
            retry_after = max(1, math.ceil(decision.reset_after))
            logger.warning(
                "rate limit exceeded",
                extra={
                    "client_id": client_id,
                    "path": scope.get("path", ""),
                    "retry_after": retry_after,
                },
            )
            raise rate_limited(retry_after, decision.headers())

        encoded = [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in decision.headers().items()
        ]

        async def send_with_headers(message):
            if message["type"] == "http.response.start":
                message["headers"] = list(message.get("headers", [])) + encoded
            await send(message)

        await self.app(scope, receive, send_with_headers)
