"""
AuthGate — Request ID Middleware
==================================

What:  Assigns a correlation id to every request and echoes it back.
How:   Uses the client's X-Request-ID when present, otherwise a short UUID;
       stores it in a ContextVar (for loggers and exception handlers) and in
       `request.state.request_id`, and sets the X-Request-ID response header.

Error bodies do not carry the id; clients read it from the header.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one thread each see their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

MAX_CLIENT_ID_LENGTH = 64


def _new_request_id() -> str:
    return str(uuid.uuid4())[:8]


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Outermost middleware: every later log line can be correlated."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID", "").strip()
        if not rid or len(rid) > MAX_CLIENT_ID_LENGTH or not rid.isprintable():
            rid = _new_request_id()

        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = rid
        return response
