"""Per-client request limits for the dashboard API.

Approximate sliding window: each key keeps the hit count of the current
fixed window and the previous one, and the previous count is weighted by
how much of it still overlaps the sliding window.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from threading import Lock
from typing import NamedTuple

from aiohttp import web

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100      # requests per window per client
DEFAULT_WINDOW = 60.0    # seconds
CLEANUP_INTERVAL = 60.0  # seconds

# Health checks from uptime monitors are never limited
EXEMPT_PATHS = frozenset({"/api/health"})


class RateLimitResult(NamedTuple):
    allowed: bool
    limit: int
    remaining: int
    reset: float  # epoch seconds when the current window ends
    retry_after: int


class SlidingWindowLimiter:
    def __init__(
        self,
        limit: int = DEFAULT_LIMIT,
        window: float = DEFAULT_WINDOW,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        if window <= 0:
            raise ValueError(f"window must be positive, got {window}")
        self.limit = limit
        self.window = window
        self._clock = clock
        self._lock = Lock()
        # key -> (previous count, current count, current window start)
        self._counters: dict[str, tuple[int, int, float]] = {}
        self._last_cleanup = clock()

    def hit(self, key: str) -> RateLimitResult:
        """Count one request for ``key`` and report whether it is allowed."""
        now = self._clock()
        start = (now // self.window) * self.window
        with self._lock:
            prev, curr, stored = self._counters.get(key, (0, 0, start))
            if stored < start:
                prev = curr if stored == start - self.window else 0
                curr = 0
                stored = start
            curr += 1
            self._counters[key] = (prev, curr, stored)
        weight = 1 - (now - start) / self.window
        count = int(prev * weight) + curr

        if now - self._last_cleanup > CLEANUP_INTERVAL:
            self.cleanup()

        return RateLimitResult(
            allowed=count <= self.limit,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            reset=start + self.window,
            retry_after=max(1, math.ceil(start + self.window - now)),
        )

    def cleanup(self) -> int:
        """Drop keys idle for two windows or more; returns how many."""
        now = self._clock()
        cutoff = now - 2 * self.window
        with self._lock:
            stale = [k for k, (_, _, start) in self._counters.items() if start < cutoff]
            for k in stale:
                del self._counters[k]
            self._last_cleanup = now
        if stale:
            logger.debug("Rate limiter dropped %d idle clients", len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._counters)


def client_ip(request: web.Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    return request.remote or "unknown"


def rate_limit_middleware(limiter: SlidingWindowLimiter):
    """aiohttp middleware limiting ``/api/`` requests per client IP."""

    @web.middleware
    async def middleware(request: web.Request, handler):
        if not request.path.startswith("/api/") or request.path in EXEMPT_PATHS:
            return await handler(request)

        ip = client_ip(request)
        result = limiter.hit(f"api:{ip}")
        headers = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": str(int(result.reset)),
        }
        if not result.allowed:
            logger.warning("Rate limit exceeded for %s on %s", ip, request.path)
            return web.json_response({
                "error": "Rate limit exceeded",
                "message": "Too many requests. Please try again later.",
                "limit": result.limit,
                "remaining": 0,
                "reset": int(result.reset),
            }, status=429, headers={**headers, "Retry-After": str(result.retry_after)})

        response = await handler(request)
        response.headers.update(headers)
        return response

    return middleware
