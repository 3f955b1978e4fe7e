"""
CodeSafe Backend — Rate Limiting Middleware
=============================================

What:  Per-IP sliding window rate limiter.
Why:   Note codes are guessable by brute force and PINs are short; capping
       requests per client makes enumerating either expensive.
How:   SlidingWindowLimiter keeps one deque of request timestamps per IP.
       RateLimitMiddleware asks it before every request and answers 429
       itself, since exceptions raised in BaseHTTPMiddleware bypass the
       app's exception handlers.

State is in-process: with several workers each enforces its own window.
"""

import logging
import time
from collections import defaultdict, deque
from typing import Deque, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from codesafe.config import settings
from codesafe.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


class SlidingWindowLimiter:
    """
    Allows at most `limit` hits per `window` seconds for each key.

    hit() returns None when the request may proceed, otherwise the number
    of seconds until the oldest hit leaves the window.
    """

    SWEEP_EVERY = 1000

    def __init__(self, limit: int, window: int):
        self.limit = limit
        self.window = window
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._calls = 0

    def hit(self, key: str, now: Optional[float] = None) -> Optional[int]:
        now = time.time() if now is None else now
        window_start = now - self.window
        hits = self._hits[key]
        while hits and hits[0] <= window_start:
            hits.popleft()

        if len(hits) >= self.limit:
            return int(hits[0] + self.window - now) + 1

        hits.append(now)
        self._calls += 1
        if self._calls % self.SWEEP_EVERY == 0:
            self._sweep(window_start)
        return None

    def _sweep(self, window_start: float) -> None:
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= window_start]
        for key in idle:
            del self._hits[key]
        if idle:
            logger.debug("Dropped %d idle rate limit entries", len(idle))


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies SlidingWindowLimiter per client IP.

    Configuration (from settings):
        rate_limit_requests: Max requests per window
        rate_limit_window: Window duration in seconds

    Health checks and API docs are never limited.
    """

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}

    def __init__(self, app, limit: Optional[int] = None, window: Optional[int] = None, **kwargs):
        super().__init__(app, **kwargs)
        self.limiter = SlidingWindowLimiter(
            limit=limit or settings.rate_limit_requests,
            window=window or settings.rate_limit_window,
        )

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        retry_after = self.limiter.hit(client_ip)
        if retry_after is None:
            return await call_next(request)

        logger.warning(
            "Rate limit exceeded for IP %s (%d requests per %ds)",
            client_ip,
            self.limiter.limit,
            self.limiter.window,
        )
        exc = RateLimitExceededError(retry_after=retry_after)
        return JSONResponse(
            status_code=429,
            content={
                "error": "rate_limit_exceeded",
                "message": exc.message,
                "details": exc.context,
                "request_id": None,
            },
            headers={"Retry-After": str(retry_after)},
        )
