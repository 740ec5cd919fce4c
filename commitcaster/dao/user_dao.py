"""UserDAO — users (tenants) table operations."""

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from commitcaster.core.database import utcnow
from commitcaster.dao.base import BaseDAO
from commitcaster.models.user import User


class UserDAO(BaseDAO[User]):
    model = User

    async def get_by_user_id(self, session: AsyncSession, user_id: str) -> User | None:
        return await self.get_by_field(session, user_id=user_id)

    async def list_all(self, session: AsyncSession) -> list[User]:
        result = await session.execute(select(User).order_by(User.created_at, User.id))
        return list(result.scalars().all())

    async def upsert(
        self,
        session: AsyncSession,
        user_id: str,
        *,
        github_username: str | None = None,
        display_name: str | None = None,
        email: str | None = None,
        api_quota_limit: int | None = None,
    ) -> User:
        """Insert a tenant or refresh its profile fields.

        Profile fields passed as None keep the stored value; tier and
        api_quota_limit of an existing row are left alone.
        """
        values: dict[str, Any] = {
            "user_id": user_id,
            "github_username": github_username,
            "display_name": display_name,
            "email": email,
        }
        if api_quota_limit is not None:
            values["api_quota_limit"] = api_quota_limit

        table = User.__table__
        stmt = insert(User).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id],
            set_={
                "github_username": func.coalesce(
                    stmt.excluded.github_username, table.c.github_username
                ),
                "display_name": func.coalesce(stmt.excluded.display_name, table.c.display_name),
                "email": func.coalesce(stmt.excluded.email, table.c.email),
                "updated_at": utcnow(),
            },
        )
        await session.execute(stmt)
        user = await self.get_by_user_id(session, user_id)
        assert user is not None
        await session.refresh(user)
        return user

    async def set_tier(
        self, session: AsyncSession, user: User, tier: str, api_quota_limit: int | None
    ) -> User:
        values: dict[str, Any] = {"tier": tier}
        if api_quota_limit is not None:
            values["api_quota_limit"] = api_quota_limit
        return await self.update_fields(session, user, **values)
