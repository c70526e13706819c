"""
PawMatch Backend — Rate Limiting Middleware
=============================================

What:  Per-client sliding window rate limiter.
How:   Keeps the request timestamps of each client address in memory.
       Timestamps older than the window are dropped; a client at the limit
       gets 429 with Retry-After.

The key is the client address only. Device keys and bearer tokens are not
verified at this point in the stack, so a caller could mint a fresh one per
request.

Entries that saw no request during the last window are dropped every
CLEANUP_EVERY requests.

Single-process only: every uvicorn worker keeps its own counters.
"""

import logging
import time
from collections import defaultdict
from typing import Dict, List

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from pawmatch.config import settings
from pawmatch.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


def caller_key(request: Request) -> str:
    host = request.client.host if request.client else None
    return f"ip:{host or 'unknown'}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Configuration (from settings):
        rate_limit_requests: Max requests per window
        rate_limit_window:   Window duration in seconds
    """

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}
    CLEANUP_EVERY = 1000

    def __init__(self, app, **kwargs):
        super().__init__(app, **kwargs)
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._seen = 0

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.EXCLUDED_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        key = caller_key(request)
        now = time.time()
        window_start = now - settings.rate_limit_window

        self._seen += 1
        if self._seen % self.CLEANUP_EVERY == 0:
            self._cleanup_inactive(window_start)

        self._requests[key] = [ts for ts in self._requests[key] if ts > window_start]

        if len(self._requests[key]) >= settings.rate_limit_requests:
            oldest = self._requests[key][0]
            exc = RateLimitExceededError(
                retry_after=int(oldest + settings.rate_limit_window - now) + 1
            )
            logger.warning(
                "Rate limit exceeded for %s: %d requests in %ds window",
                key,
                len(self._requests[key]),
                settings.rate_limit_window,
            )
            # Raised errors would bypass the app's exception handlers here
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": exc.message,
                    "details": exc.context,
                },
                headers={"Retry-After": str(exc.retry_after)},
            )

        self._requests[key].append(now)
        return await call_next(request)

    def _cleanup_inactive(self, window_start: float) -> None:
        inactive = [
            key for key, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] <= window_start
        ]
        for key in inactive:
            del self._requests[key]

        if inactive:
            logger.debug("Cleaned up %d inactive rate limit entries", len(inactive))
