"""Request ID + access log middleware.

Every request gets an ID, either from the incoming X-Request-ID header
or a fresh uuid4 hex. It is bound to structlog's contextvars, so the
broadcast, push and email log lines of that request carry it, and it
is echoed back in the response header.

One `http.request` line is logged per request once the handler has
returned. For the SSE stream that is when the headers go out, not when
the stream ends (stream.closed covers that).
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with an ID and log its outcome."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        started = time.perf_counter()
        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "http.request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return response
