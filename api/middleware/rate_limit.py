"""
Rate limiting middleware for SupportDesk Chat API.

Sliding-window counter per client (bearer token or IP). Clients whose
window has emptied are forgotten, so the table holds only recent callers.
"""

import hashlib
import logging
import math
import time
from collections import deque
from typing import Callable, Deque, Dict, Tuple

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

EXEMPT_PATHS = frozenset({"/health", "/metrics", "/docs", "/redoc", "/openapi.json"})


class SlidingWindowLimiter:
    """Per-client request timestamps over the last `window_seconds`."""

    def __init__(
        self,
        limit: int,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._next_sweep = clock() + window_seconds

    def _expire(self, client_id: str, now: float) -> int:
        hits = self._hits.get(client_id)
        if hits is None:
            return 0
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if not hits:
            del self._hits[client_id]
            return 0
        return len(hits)

    def _sweep(self, now: float):
        for client_id in list(self._hits):
            self._expire(client_id, now)
        self._next_sweep = now + self.window_seconds

    def hit(self, client_id: str) -> Tuple[bool, int, int]:
        """
        Count one request.

        Returns (allowed, remaining, retry_after_seconds). A rejected
        request is not counted.
        """
        now = self._clock()
        if now >= self._next_sweep:
            self._sweep(now)

        used = self._expire(client_id, now)
        if used >= self.limit:
            oldest = self._hits[client_id][0]
            retry_after = max(1, math.ceil(oldest + self.window_seconds - now))
            return False, 0, retry_after

        self._hits.setdefault(client_id, deque()).append(now)
        return True, self.limit - used - 1, 0

    @property
    def tracked_clients(self) -> int:
        return len(self._hits)


def client_key(request: Request) -> str:
    """Identify client by a digest of its bearer token, or by IP."""
    auth = request.headers.get("Authorization")
    if auth and auth.startswith("Bearer "):
        return "token:" + hashlib.sha256(auth[7:].encode()).hexdigest()[:16]
    return f"ip:{request.client.host}" if request.client else "ip:unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rejects callers over `requests_per_minute` with a 429."""

    def __init__(self, app, requests_per_minute: int = 100, clock: Callable[[], float] = time.monotonic):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.limiter = SlidingWindowLimiter(requests_per_minute, 60.0, clock)

    async def dispatch(self, request: Request, call_next):
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        client_id = client_key(request)
        allowed, remaining, retry_after = self.limiter.hit(client_id)
        if not allowed:
            logger.warning(f"Rate limit exceeded for {client_id}")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "success": False,
                    "error": "Too many requests, please try again later.",
                    "code": "rate_limited",
                },
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(self.requests_per_minute),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.requests_per_minute)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
