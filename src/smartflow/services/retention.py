"""Retention pruner — keeps only the newest N notifications per user.

One DELETE ... WHERE id NOT IN (newest N ids) statement. It is
deterministic and idempotent: running it again (or concurrently from
another broadcast) converges on the same retained set.
"""

from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from smartflow.config import settings
from smartflow.db.models import Notification
from smartflow.services.notification_store import newest_first


class RetentionPruner:
    """Deletes everything but the `keep` most recent rows of a user."""

    def __init__(self, db: AsyncSession, keep: Optional[int] = None):
        self.db = db
        self.keep = keep or settings.notification_retention

    async def prune(self, user_id: int) -> int:
        """Prune one user's history. Returns the number of rows deleted.

        Does not commit; runs inside the caller's transaction.
        """
        newest = (
            select(Notification.id)
            .where(Notification.user_id == user_id)
            .order_by(*newest_first())
            .limit(self.keep)
        )
        stmt = (
            delete(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.id.not_in(newest.scalar_subquery()),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount
