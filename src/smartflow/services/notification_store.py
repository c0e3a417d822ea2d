"""Notification store — the durable record of every in-app notification.

Ownership is part of every mutating statement (WHERE id = ? AND
user_id = ?). A zero-row result raises NotificationNotFoundError
whether the id does not exist or belongs to someone else; callers
cannot tell the two apart.

create() only flushes. The broadcast coordinator runs the retention
pruner and commits afterwards, so insert + prune land in one
transaction. The mark/delete operations are single statements and
commit themselves.
"""

from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from smartflow.config import settings
from smartflow.db.models import Notification, utcnow


class NotificationNotFoundError(Exception):
    """Raised when a notification does not exist for the given user."""


def newest_first():
    """ORDER BY used for listing and retention: created_at, then id."""
    return (Notification.created_at.desc(), Notification.id.desc())


class NotificationStore:
    """CRUD over the notifications table, always scoped to one user."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        user_id: int,
        title: str,
        message: str,
        type: str = "personal",
        sender_id: Optional[int] = None,
        sender_name: Optional[str] = None,
    ) -> Notification:
        """Insert an unread notification. Flushes, does not commit."""
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            read=False,
            sender_id=sender_id,
            sender_name=sender_name,
            created_at=utcnow(),
        )
        self.db.add(notification)
        await self.db.flush()  # assigns the id
        return notification

    async def list_for_user(
        self, user_id: int, limit: Optional[int] = None
    ) -> list[Notification]:
        """Newest first. Read-only."""
        q = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(*newest_first())
            .limit(limit or settings.notification_list_limit)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(q)
        return list(result.scalars().all())

    async def unread_count(self, user_id: int) -> int:
        q = select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.read.is_(False),
        )
        return (await self.db.execute(q)).scalar_one()

    async def mark_read(self, notification_id: int, user_id: int) -> bool:
        stmt = (
            update(Notification)
            .where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
            .values(read=True)
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            raise NotificationNotFoundError(
                f"Notification {notification_id} not found"
            )
        await self.db.commit()
        return True

    async def mark_all_read(self, user_id: int) -> int:
        """Mark every unread row read. Returns how many rows changed."""
        stmt = (
            update(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.read.is_(False),
            )
            .values(read=True)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount

    async def delete(self, notification_id: int, user_id: int) -> bool:
        stmt = delete(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            raise NotificationNotFoundError(
                f"Notification {notification_id} not found"
            )
        await self.db.commit()
        return True
