"""StatsService — queue, ledger and tenant aggregates for the admin API."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from commitcaster.core.database import utcnow
from commitcaster.dao.posted_commit_dao import PostedCommitDAO
from commitcaster.dao.queue_item_dao import QueueItemDAO
from commitcaster.dao.user_dao import UserDAO
from commitcaster.engines.work_queue.queue import WorkQueue


class StatsService:
    def __init__(
        self,
        queue: WorkQueue,
        posted_commit_dao: PostedCommitDAO,
        queue_item_dao: QueueItemDAO,
        user_dao: UserDAO,
    ) -> None:
        self._queue = queue
        self._posted_dao = posted_commit_dao
        self._queue_item_dao = queue_item_dao
        self._user_dao = user_dao

    def queue_stats(self) -> dict[str, Any]:
        """Live counters from the in-process queue."""
        return self._queue.stats()

    async def get_stats(self, session: AsyncSession) -> dict[str, Any]:
        since = utcnow() - timedelta(hours=24)
        return {
            "queue": self.queue_stats(),
            "stored_queue_items": await self._queue_item_dao.count_by_status(session),
            "posts_total": await self._posted_dao.count_for_user(session),
            "posts_last_24h": await self._posted_dao.count_for_user(session, since=since),
            "posts_by_repo": await self._posted_dao.count_by_repo(session),
            "tenants": await self._user_dao.count(session),
        }
