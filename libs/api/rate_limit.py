"""Per-client token bucket rate limiting for the HTTP services."""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

IDLE_TTL = 3600.0
CLEANUP_INTERVAL = 600.0


@dataclass
class TokenBucket:
    capacity: float
    rate: float
    tokens: float
    updated_at: float

    def take(self, now: float) -> bool:
        elapsed = max(0.0, now - self.updated_at)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self.updated_at = now
        if self.tokens >= 1:
            self.tokens -= 1
            return True
        return False


class RateLimiter:
    """``requests`` per ``window`` seconds with a burst of ``requests``."""

    def __init__(
        self,
        requests: int,
        window: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.requests = requests
        self.window = window
        self.rate = requests / window
        self._clock = clock
        self._buckets: Dict[str, TokenBucket] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    @property
    def retry_after(self) -> int:
        return max(1, math.ceil(self.window / self.requests))

    def allow(self, client: str) -> bool:
        with self._lock:
            now = self._clock()
            if now - self._last_cleanup >= CLEANUP_INTERVAL:
                self._cleanup(now)
            bucket = self._buckets.get(client)
            if bucket is None:
                bucket = TokenBucket(self.requests, self.rate, self.requests, now)
                self._buckets[client] = bucket
            return bucket.take(now)

    def _cleanup(self, now: float) -> None:
        idle = [key for key, b in self._buckets.items() if now - b.updated_at > IDLE_TTL]
        for key in idle:
            del self._buckets[key]
        self._last_cleanup = now
        if idle:
            logger.debug("Dropped %d idle rate limit buckets", len(idle))


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, requests: int = 100, window: float = 60.0, limiter: RateLimiter | None = None):
        super().__init__(app)
        self.limiter = limiter or RateLimiter(requests, window)

    async def dispatch(self, request: Request, call_next):
        client = request.client.host if request.client else "unknown"
        if not self.limiter.allow(client):
            logger.warning("Rate limit exceeded for %s", client)
            return Response(
                content="Rate limit exceeded",
                status_code=429,
                headers={
                    "Retry-After": str(self.limiter.retry_after),
                    "X-RateLimit-Limit": str(self.limiter.requests),
                    "X-RateLimit-Remaining": "0",
                },
            )
        return await call_next(request)


__all__ = ["RateLimiter", "RateLimitMiddleware", "TokenBucket"]
