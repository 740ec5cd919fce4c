"""QueueItemDAO — durable work-queue records."""

from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from commitcaster.core.database import utcnow
from commitcaster.dao.base import BaseDAO, Page
from commitcaster.models.queue_item import TERMINAL_STATUSES, QueueItem


class QueueItemDAO(BaseDAO[QueueItem]):
    model = QueueItem

    async def get_by_queue_id(self, session: AsyncSession, queue_id: str) -> QueueItem | None:
        return await self.get_by_field(session, queue_id=queue_id)

    async def save(
        self,
        session: AsyncSession,
        *,
        queue_id: str,
        task_type: str,
        user_id: str,
        data: dict[str, Any],
        priority: int,
        status: str,
        retry_count: int = 0,
        error_message: str | None = None,
    ) -> None:
        """Insert-or-replace the row for *queue_id*."""
        mutable = {
            "task_type": task_type,
            "user_id": user_id,
            "data_json": data,
            "priority": priority,
            "status": status,
            "retry_count": retry_count,
            "error_message": error_message,
        }
        now = utcnow()
        stmt = insert(QueueItem).values(queue_id=queue_id, created_at=now, updated_at=now, **mutable)
        stmt = stmt.on_conflict_do_update(
            index_elements=[QueueItem.__table__.c.queue_id],
            set_={**mutable, "updated_at": now},
        )
        await session.execute(stmt)

    async def set_status(
        self,
        session: AsyncSession,
        queue_id: str,
        status: str,
        *,
        retry_count: int | None = None,
        error_message: str | None = None,
    ) -> int:
        values: dict[str, Any] = {"status": status, "updated_at": utcnow()}
        if retry_count is not None:
            values["retry_count"] = retry_count
        if error_message is not None:
            values["error_message"] = error_message
        result = await session.execute(
            update(QueueItem).where(QueueItem.queue_id == queue_id).values(**values)
        )
        return result.rowcount

    async def reset_processing(self, session: AsyncSession) -> int:
        """Flip rows left in ``processing`` by a crash back to ``pending``."""
        result = await session.execute(
            update(QueueItem)
            .where(QueueItem.status == "processing")
            .values(status="pending", updated_at=utcnow())
        )
        return result.rowcount

    async def list_restorable(self, session: AsyncSession) -> list[QueueItem]:
        stmt = (
            select(QueueItem)
            .where(QueueItem.status.in_(("pending", "retrying")))
            .order_by(QueueItem.priority, QueueItem.created_at, QueueItem.id)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def delete_finished_before(self, session: AsyncSession, cutoff: datetime) -> int:
        result = await session.execute(
            delete(QueueItem).where(
                QueueItem.status.in_(TERMINAL_STATUSES),
                QueueItem.updated_at < cutoff,
            )
        )
        return result.rowcount

    async def count_by_status(
        self, session: AsyncSession, user_id: str | None = None
    ) -> dict[str, int]:
        stmt = select(QueueItem.status, func.count().label("cnt")).group_by(QueueItem.status)
        if user_id is not None:
            stmt = stmt.where(QueueItem.user_id == user_id)
        result = await session.execute(stmt)
        return {row.status: row.cnt for row in result}

    async def list_paginated(
        self,
        session: AsyncSession,
        *,
        status: str | None = None,
        user_id: str | None = None,
        cursor: str | None = None,
        page_size: int = 20,
    ) -> Page[QueueItem]:
        query = select(QueueItem)
        if status is not None:
            query = query.where(QueueItem.status == status)
        if user_id is not None:
            query = query.where(QueueItem.user_id == user_id)
        return await self.paginate(session, query, cursor, page_size)
