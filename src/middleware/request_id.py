"""Request ID tracing middleware — adds X-Request-ID to every response."""
from __future__ import annotations

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Read by src.logging_config.RequestIDFilter so every log line carries the ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

_MAX_CLIENT_ID_LEN = 128


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a request ID to every request/response for tracing.

    Pub/Sub push deliveries and app clients may send X-Request-ID; it is
    honored when reasonably short, otherwise a UUID4 is generated.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        rid = request.headers.get("x-request-id", "")
        if not rid or len(rid) > _MAX_CLIENT_ID_LEN:
            rid = str(uuid.uuid4())
        token = request_id_var.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers["X-Request-ID"] = rid
        return response
