"""User directory — lookups the notification flows need from the tracker.

Resolves senders and recipients, and loads the task/project context
for assignment, reminder and project-update notifications.
"""

from typing import Iterable, Optional

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from smartflow.db.models import Project, Task, User


class UserDirectory:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: int) -> Optional[User]:
        return await self.db.get(User, user_id)

    async def resolve_recipients(self, user_ids: Iterable[int]) -> list[User]:
        """Existing users among user_ids, in request order, without duplicates.

        Unknown ids are dropped silently.
        """
        wanted = list(dict.fromkeys(user_ids))
        if not wanted:
            return []
        result = await self.db.execute(select(User).where(User.id.in_(wanted)))
        found = {u.id: u for u in result.scalars().all()}
        return [found[uid] for uid in wanted if uid in found]

    async def get_task(self, task_id: int) -> Optional[Task]:
        return await self.db.get(Task, task_id)

    async def get_project(self, project_id: int) -> Optional[Project]:
        return await self.db.get(Project, project_id)

    async def project_members(self, project_id: int) -> list[User]:
        """Users assigned to at least one task of the project."""
        member_ids = (
            select(distinct(Task.assigned_to))
            .where(Task.project_id == project_id, Task.assigned_to.isnot(None))
        )
        result = await self.db.execute(
            select(User).where(User.id.in_(member_ids)).order_by(User.id)
        )
        return list(result.scalars().all())

    async def project_progress(self, project_id: int) -> int:
        """Percentage of the project's tasks that are done, rounded."""
        result = await self.db.execute(
            select(Task.status, func.count(Task.id))
            .where(Task.project_id == project_id)
            .group_by(Task.status)
        )
        counts = dict(result.all())
        total = sum(counts.values())
        if not total:
            return 0
        return round(counts.get("done", 0) * 100 / total)
