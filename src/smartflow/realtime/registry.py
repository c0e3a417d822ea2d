"""Push registry — which users have live stream sessions open.

One PushRegistry per application, created in the app factory and
stored on app.state. Handlers get it through the get_push_registry
dependency, so tests can swap in a fresh one.

Each PushSession owns a bounded asyncio.Queue that its SSE generator
drains. publish() never blocks: a full queue (stalled client) or a
closed session is a PushDeliveryError, logged and skipped.
"""

import asyncio
import uuid
from typing import Any, Optional

import structlog
from fastapi import Request

from smartflow.config import settings

logger = structlog.get_logger()

# Queued to tell a session's stream to finish (shutdown).
CLOSE = None


class PushDeliveryError(Exception):
    """Raised when a payload cannot be handed to one session."""


class PushSession:
    """One open stream — usually one browser tab."""

    def __init__(self, user_id: int, queue_size: int):
        self.id = uuid.uuid4().hex
        self.user_id = user_id
        self.queue: asyncio.Queue[Optional[dict[str, Any]]] = asyncio.Queue(
            maxsize=queue_size
        )
        self.closed = False

    def deliver(self, payload: dict[str, Any]) -> None:
        if self.closed:
            raise PushDeliveryError(f"session {self.id} is closed")
        try:
            self.queue.put_nowait(payload)
        except asyncio.QueueFull:
            raise PushDeliveryError(f"session {self.id} queue is full")

    def close(self) -> None:
        """Mark closed and wake the reader so its stream can end."""
        if self.closed:
            return
        self.closed = True
        try:
            self.queue.put_nowait(CLOSE)
        except asyncio.QueueFull:
            # The reader checks `closed` after every item.
            pass

    async def next_event(self, timeout: Optional[float] = None) -> Optional[dict]:
        """Wait for the next payload. None means the session was closed.

        Raises asyncio.TimeoutError when nothing arrived within timeout.
        """
        if self.closed and self.queue.empty():
            return CLOSE
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)


class PushRegistry:
    """user_id -> set of open PushSessions."""

    def __init__(self, queue_size: Optional[int] = None):
        self.queue_size = queue_size or settings.stream_queue_size
        self._sessions: dict[int, set[PushSession]] = {}

    def subscribe(self, user_id: int) -> PushSession:
        session = PushSession(user_id, self.queue_size)
        self._sessions.setdefault(user_id, set()).add(session)
        logger.info(
            "push.subscribed",
            user_id=user_id,
            session_id=session.id,
            sessions=len(self._sessions[user_id]),
        )
        return session

    def unsubscribe(self, session: PushSession) -> None:
        session.close()
        sessions = self._sessions.get(session.user_id)
        if not sessions or session not in sessions:
            return
        sessions.discard(session)
        if not sessions:
            del self._sessions[session.user_id]
        logger.info(
            "push.unsubscribed",
            user_id=session.user_id,
            session_id=session.id,
        )

    def publish(self, user_id: int, payload: dict[str, Any]) -> int:
        """Hand payload to every open session of user_id.

        Returns how many sessions accepted it.
        """
        delivered = 0
        for session in list(self._sessions.get(user_id, ())):
            try:
                session.deliver(payload)
                delivered += 1
            except PushDeliveryError as e:
                logger.warning(
                    "push.delivery_failed",
                    user_id=user_id,
                    session_id=session.id,
                    error=str(e),
                )
        return delivered

    def session_count(self, user_id: int) -> int:
        return len(self._sessions.get(user_id, ()))

    def connected_users(self) -> list[int]:
        return sorted(self._sessions)

    def close_all(self) -> None:
        """End every stream (application shutdown)."""
        for sessions in list(self._sessions.values()):
            for session in list(sessions):
                session.close()
        self._sessions.clear()


def get_push_registry(request: Request) -> PushRegistry:
    """FastAPI dependency — the application's registry."""
    return request.app.state.push_registry
