"""UserRepoDAO — repository enrollment operations."""

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from commitcaster.dao.base import BaseDAO
from commitcaster.models.user_repo import UserRepo


class UserRepoDAO(BaseDAO[UserRepo]):
    model = UserRepo

    async def get(self, session: AsyncSession, user_id: str, repo_full_name: str) -> UserRepo | None:
        return await self.get_by_field(session, user_id=user_id, repo_full_name=repo_full_name)

    async def list_for_user(self, session: AsyncSession, user_id: str) -> list[UserRepo]:
        stmt = (
            select(UserRepo)
            .where(UserRepo.user_id == user_id)
            .order_by(UserRepo.repo_full_name)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def find_active_owner(self, session: AsyncSession, repo_full_name: str) -> UserRepo | None:
        """Earliest active enrollment for *repo_full_name*.

        A repo enrolled by several tenants resolves to the first one.
        """
        stmt = (
            select(UserRepo)
            .where(UserRepo.repo_full_name == repo_full_name, UserRepo.is_active.is_(True))
            .order_by(UserRepo.created_at, UserRepo.id)
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def find_any(self, session: AsyncSession, repo_full_name: str) -> UserRepo | None:
        """First enrollment for *repo_full_name*, active or not."""
        stmt = (
            select(UserRepo)
            .where(UserRepo.repo_full_name == repo_full_name)
            .order_by(UserRepo.is_active.desc(), UserRepo.created_at, UserRepo.id)
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def enroll(
        self,
        session: AsyncSession,
        user_id: str,
        repo_full_name: str,
        webhook_secret: str | None = None,
    ) -> UserRepo:
        """Insert or re-activate an enrollment; a given secret replaces the stored one."""
        table = UserRepo.__table__
        stmt = insert(UserRepo).values(
            user_id=user_id,
            repo_full_name=repo_full_name,
            webhook_secret=webhook_secret,
            is_active=True,
        )
        set_: dict = {"is_active": True}
        if webhook_secret is not None:
            set_["webhook_secret"] = webhook_secret
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.repo_full_name],
            set_=set_,
        )
        await session.execute(stmt)
        row = await self.get(session, user_id, repo_full_name)
        assert row is not None
        await session.refresh(row)
        return row
