"""UsageService — hourly AI-call accounting and quota resolution."""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from commitcaster.core.config import Settings
from commitcaster.core.database import utcnow
from commitcaster.dao.api_usage_dao import ApiUsageDAO
from commitcaster.dao.user_dao import UserDAO
from commitcaster.services import QuotaExceededError

AI_ENDPOINT = "ai"


def hour_bucket(now: datetime | None = None) -> tuple[datetime, datetime]:
    """Return the ``[start, end)`` hour window containing *now*."""
    now = now or utcnow()
    start = now.replace(minute=0, second=0, microsecond=0)
    return start, start + timedelta(hours=1)


class UsageService:
    def __init__(self, api_usage_dao: ApiUsageDAO, user_dao: UserDAO, settings: Settings) -> None:
        self._usage_dao = api_usage_dao
        self._user_dao = user_dao
        self._settings = settings

    async def quota_limit(self, session: AsyncSession, tenant_id: str) -> int:
        """Tier override, then the tenant's own limit, then the global default."""
        user = await self._user_dao.get_by_user_id(session, tenant_id)
        if user is None:
            return self._settings.user_quota_limit
        tier_limit = self._settings.quota_for_tier(user.tier)
        if tier_limit is not None:
            return tier_limit
        if user.api_quota_limit is not None:
            return user.api_quota_limit
        return self._settings.user_quota_limit

    async def used(
        self, session: AsyncSession, tenant_id: str, endpoint: str = AI_ENDPOINT
    ) -> int:
        start, _ = hour_bucket()
        by_endpoint = await self._usage_dao.by_endpoint_since(session, tenant_id, start)
        return by_endpoint.get(endpoint, 0)

    async def remaining(self, session: AsyncSession, tenant_id: str) -> int:
        limit = await self.quota_limit(session, tenant_id)
        return max(0, limit - await self.used(session, tenant_id))

    async def is_over_quota(self, session: AsyncSession, tenant_id: str) -> bool:
        return await self.remaining(session, tenant_id) <= 0

    async def check_quota(self, session: AsyncSession, tenant_id: str) -> None:
        """Raise :class:`QuotaExceededError` when the current hour is used up."""
        limit = await self.quota_limit(session, tenant_id)
        if await self.used(session, tenant_id) >= limit:
            raise QuotaExceededError(tenant_id, limit)

    async def track(
        self, session: AsyncSession, tenant_id: str, endpoint: str = AI_ENDPOINT
    ) -> None:
        start, end = hour_bucket()
        await self._usage_dao.increment(session, tenant_id, endpoint, start, end)

    async def summary(self, session: AsyncSession, tenant_id: str) -> dict:
        limit = await self.quota_limit(session, tenant_id)
        used = await self.used(session, tenant_id)
        return {"limit": limit, "used": used, "remaining": max(0, limit - used)}
