"""SSE endpoint — live notification delivery to the browser.

The client opens GET /api/v1/notifications/stream?token=JWT with an
EventSource. EventSource cannot send an Authorization header, so the
token comes as a query parameter and is checked with the same
verify_token as every other route, before the stream is opened.

Wire format (text/event-stream):
    : connected                      <- on open
    event: notification
    data: {"id": 12, "title": ...}   <- one per pushed notification
    : keep-alive                     <- after each quiet period

The generator subscribes when the response starts and unsubscribes in
its finally block. Starlette cancels the generator when the client
goes away; a failed disconnect check or keep-alive does the same for
half-open connections.
"""

import asyncio
import json
from typing import Any, AsyncIterator, Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from smartflow.auth.dependencies import authenticate_token
from smartflow.config import settings
from smartflow.realtime.registry import CLOSE, PushRegistry, get_push_registry

logger = structlog.get_logger()
router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # nginx: don't buffer the stream
}


def format_sse(event: str, data: dict[str, Any]) -> str:
    """Encode one SSE event. json.dumps output never contains newlines."""
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


async def event_stream(
    request: Request,
    registry: PushRegistry,
    user_id: int,
    keepalive: Optional[float] = None,
) -> AsyncIterator[str]:
    """Yield SSE frames for one user's session until it ends."""
    keepalive = keepalive or settings.stream_keepalive_seconds
    session = registry.subscribe(user_id)
    logger.info("stream.opened", user_id=user_id, session_id=session.id)
    try:
        yield ": connected\n\n"
        while True:
            try:
                payload = await session.next_event(timeout=keepalive)
            except asyncio.TimeoutError:
                if await request.is_disconnected():
                    break
                yield ": keep-alive\n\n"
                continue

            if payload is CLOSE or session.closed:
                break
            yield format_sse("notification", payload)
    finally:
        registry.unsubscribe(session)
        logger.info("stream.closed", user_id=user_id, session_id=session.id)


@router.get("/api/v1/notifications/stream")
async def notification_stream(
    request: Request,
    token: Optional[str] = Query(None, description="JWT access token"),
    registry: PushRegistry = Depends(get_push_registry),
):
    """Open the caller's live notification stream.

    401 before any byte is streamed when the token is missing, invalid
    or expired.
    """
    identity = authenticate_token(token)
    return StreamingResponse(
        event_stream(request, registry, identity.user_id),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
