"""ApiUsageDAO — hourly per-tenant call counters."""

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from commitcaster.dao.base import BaseDAO
from commitcaster.models.api_usage import ApiUsage


class ApiUsageDAO(BaseDAO[ApiUsage]):
    model = ApiUsage

    async def increment(
        self,
        session: AsyncSession,
        user_id: str,
        endpoint: str,
        period_start: datetime,
        period_end: datetime,
    ) -> None:
        table = ApiUsage.__table__
        stmt = insert(ApiUsage).values(
            user_id=user_id,
            endpoint=endpoint,
            request_count=1,
            period_start=period_start,
            period_end=period_end,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.endpoint, table.c.period_start],
            set_={"request_count": table.c.request_count + 1},
        )
        await session.execute(stmt)

    async def total_for_period(
        self, session: AsyncSession, user_id: str, period_start: datetime
    ) -> int:
        stmt = select(func.coalesce(func.sum(ApiUsage.request_count), 0)).where(
            ApiUsage.user_id == user_id, ApiUsage.period_start == period_start
        )
        result = await session.execute(stmt)
        return int(result.scalar_one())

    async def by_endpoint_since(
        self, session: AsyncSession, user_id: str, since: datetime
    ) -> dict[str, int]:
        stmt = (
            select(ApiUsage.endpoint, func.sum(ApiUsage.request_count).label("cnt"))
            .where(ApiUsage.user_id == user_id, ApiUsage.period_start >= since)
            .group_by(ApiUsage.endpoint)
        )
        result = await session.execute(stmt)
        return {row.endpoint: int(row.cnt) for row in result}
