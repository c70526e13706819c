"""
PawMatch Backend — Request ID Middleware
==========================================

What:  Assigns a correlation id to each request and returns it in X-Request-ID.
How:   Reuses the client's X-Request-ID when it is a short token of letters,
       digits, dots, dashes and underscores; anything else is replaced by a
       fresh 8-character uuid4 prefix so it cannot forge log lines. The id
       lives in a ContextVar for the error handlers and loggers, and in
       request.state for route handlers.
"""

import re
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one event loop each see their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

_CLIENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


def accept_client_id(value: str) -> bool:
    return bool(value) and _CLIENT_ID_PATTERN.match(value) is not None


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        client_id = request.headers.get("X-Request-ID", "")
        rid = client_id if accept_client_id(client_id) else new_request_id()

        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = rid
        return response
