"""
PawMatch Backend — Request Logging Middleware
===============================================

What:  One access log line per HTTP request.
How:   Times call_next and logs method, path, status, duration, request id
       and the resolved caller kind (user / device / shelter, set by the
       identity dependency) on the "pawmatch.access" logger. Health checks
       are skipped.

Log levels:
    5xx → ERROR, 4xx → WARNING, everything else → INFO

Credentials are never logged: no Authorization, X-Device-Key or
X-Shelter-Token values, and no request bodies (message texts).
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from pawmatch.middleware.request_id import request_id_var

logger = logging.getLogger("pawmatch.access")

SKIPPED_PATHS = {"/health"}


def _level_for(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in SKIPPED_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        # Unset when identity resolution failed or the route needs none
        caller = getattr(request.state, "identity_kind", "-")
        rid = request_id_var.get("")

        logger.log(
            _level_for(response.status_code),
            "%s %s %d %.1fms [%s] caller=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            rid,
            caller,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 2),
                "caller": caller,
            },
        )
        return response
