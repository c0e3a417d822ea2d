"""Broadcast coordinator — one message, many recipients.

For each recipient, in this order:
1. store.create  — insert the row (decorated title, type = kind)
2. pruner.prune  — trim that user's history to the retention cap
3. commit        — create + prune become visible together
4. push.publish  — hand the committed row to the user's live sessions

A database failure for one recipient rolls back only that recipient's
work; the loop moves on. Push never fails a recipient (the registry
swallows per-session errors). Only when every recipient failed does
broadcast raise BroadcastFailedError.

Email is not sent from here. Routers schedule it separately so an SMTP
failure can never undo or delay the in-app notifications.
"""

import enum
from typing import Iterable, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from smartflow.realtime.registry import PushRegistry
from smartflow.schemas.notification import notification_payload
from smartflow.services.notification_store import NotificationStore
from smartflow.services.retention import RetentionPruner

logger = structlog.get_logger()


class BroadcastKind(str, enum.Enum):
    GENERAL = "general"
    PERSONAL = "personal"


TITLE_MARKERS = {
    BroadcastKind.GENERAL: "📣",
    BroadcastKind.PERSONAL: "📢",
}


def decorate_title(title: str, kind: BroadcastKind) -> str:
    """Prefix the title so the client can tell general from personal."""
    return f"{TITLE_MARKERS[kind]} {title}"


class BroadcastFailedError(Exception):
    """Raised when no recipient could be notified."""

    def __init__(self, failures: dict[int, str]):
        self.failures = failures
        super().__init__(
            f"Broadcast failed for all {len(failures)} recipient(s)"
        )


class BroadcastCoordinator:
    """Writes, prunes and pushes one notification per recipient."""

    def __init__(
        self,
        db: AsyncSession,
        push: PushRegistry,
        store: Optional[NotificationStore] = None,
        pruner: Optional[RetentionPruner] = None,
    ):
        self.db = db
        self.push = push
        self.store = store or NotificationStore(db)
        self.pruner = pruner or RetentionPruner(db)

    async def broadcast(
        self,
        *,
        sender_id: Optional[int],
        sender_name: Optional[str],
        recipient_ids: Iterable[int],
        title: str,
        message: str,
        kind: BroadcastKind | str = BroadcastKind.PERSONAL,
    ) -> list[int]:
        """Notify every recipient. Returns the ids that were notified."""
        kind = BroadcastKind(kind)
        box_title = decorate_title(title, kind)

        notified: list[int] = []
        failures: dict[int, str] = {}
        pushed = 0

        for user_id in dict.fromkeys(recipient_ids):
            try:
                payload = await self._write(
                    user_id,
                    title=box_title,
                    message=message,
                    kind=kind,
                    sender_id=sender_id,
                    sender_name=sender_name,
                )
            except SQLAlchemyError as e:
                await self.db.rollback()
                failures[user_id] = str(e)
                logger.warning(
                    "notification.recipient_failed",
                    user_id=user_id,
                    error=str(e),
                )
                continue

            notified.append(user_id)
            pushed += self.push.publish(user_id, payload)

        logger.info(
            "notification.broadcast",
            kind=kind.value,
            sender_id=sender_id,
            notified=len(notified),
            failed=len(failures),
            sessions_reached=pushed,
        )

        if failures and not notified:
            raise BroadcastFailedError(failures)
        return notified

    async def _write(
        self,
        user_id: int,
        *,
        title: str,
        message: str,
        kind: BroadcastKind,
        sender_id: Optional[int],
        sender_name: Optional[str],
    ) -> dict:
        """create → prune → commit for one recipient; returns the push payload."""
        notification = await self.store.create(
            user_id,
            title,
            message,
            type=kind.value,
            sender_id=sender_id,
            sender_name=sender_name,
        )
        pruned = await self.pruner.prune(user_id)
        await self.db.commit()
        if pruned:
            logger.debug("notification.pruned", user_id=user_id, deleted=pruned)
        return notification_payload(notification)
