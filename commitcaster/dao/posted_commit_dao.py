"""PostedCommitDAO — the posted-commit ledger, plus per-repo original posts."""

from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from commitcaster.core.database import utcnow
from commitcaster.dao.base import BaseDAO, Page
from commitcaster.models.og_post import OGPost
from commitcaster.models.posted_commit import PostedCommit


class PostedCommitDAO(BaseDAO[PostedCommit]):
    model = PostedCommit

    async def get_by_sha(self, session: AsyncSession, commit_sha: str) -> PostedCommit | None:
        return await self.get_by_field(session, commit_sha=commit_sha)

    async def exists(self, session: AsyncSession, commit_sha: str) -> bool:
        stmt = select(PostedCommit.id).where(PostedCommit.commit_sha == commit_sha).limit(1)
        result = await session.execute(stmt)
        return result.first() is not None

    async def record(
        self,
        session: AsyncSession,
        *,
        user_id: str,
        repo_name: str,
        commit_sha: str,
        tweet_id: str,
    ) -> bool:
        """Insert a ledger row. Returns False when the SHA was already recorded."""
        stmt = (
            insert(PostedCommit)
            .values(
                user_id=user_id,
                repo_name=repo_name,
                commit_sha=commit_sha,
                tweet_id=tweet_id,
                created_at=utcnow(),
            )
            .on_conflict_do_nothing(index_elements=[PostedCommit.__table__.c.commit_sha])
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def latest_for_repo(self, session: AsyncSession, repo_name: str) -> PostedCommit | None:
        stmt = (
            select(PostedCommit)
            .where(PostedCommit.repo_name == repo_name)
            .order_by(PostedCommit.created_at.desc(), PostedCommit.id.desc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def list_paginated(
        self,
        session: AsyncSession,
        *,
        user_id: str | None = None,
        repo_name: str | None = None,
        cursor: str | None = None,
        page_size: int = 20,
    ) -> Page[PostedCommit]:
        query = select(PostedCommit)
        if user_id is not None:
            query = query.where(PostedCommit.user_id == user_id)
        if repo_name is not None:
            query = query.where(PostedCommit.repo_name == repo_name)
        return await self.paginate(session, query, cursor, page_size)

    async def count_for_user(
        self, session: AsyncSession, user_id: str | None = None, since: datetime | None = None
    ) -> int:
        query = select(func.count()).select_from(PostedCommit)
        if user_id is not None:
            query = query.where(PostedCommit.user_id == user_id)
        if since is not None:
            query = query.where(PostedCommit.created_at >= since)
        result = await session.execute(query)
        return result.scalar_one()

    async def count_by_repo(
        self, session: AsyncSession, user_id: str | None = None
    ) -> dict[str, int]:
        query = select(PostedCommit.repo_name, func.count().label("cnt")).group_by(
            PostedCommit.repo_name
        )
        if user_id is not None:
            query = query.where(PostedCommit.user_id == user_id)
        result = await session.execute(query)
        return {row.repo_name: row.cnt for row in result}


class OGPostDAO(BaseDAO[OGPost]):
    model = OGPost

    async def get_for_repo(self, session: AsyncSession, repo_name: str) -> OGPost | None:
        return await self.get_by_field(session, repo_name=repo_name)

    async def list_all(self, session: AsyncSession) -> list[OGPost]:
        result = await session.execute(select(OGPost).order_by(OGPost.repo_name))
        return list(result.scalars().all())

    async def set_for_repo(self, session: AsyncSession, repo_name: str, tweet_id: str) -> None:
        stmt = insert(OGPost).values(repo_name=repo_name, tweet_id=tweet_id, created_at=utcnow())
        stmt = stmt.on_conflict_do_update(
            index_elements=[OGPost.__table__.c.repo_name],
            set_={"tweet_id": tweet_id},
        )
        await session.execute(stmt)

    async def delete_for_repo(self, session: AsyncSession, repo_name: str) -> int:
        result = await session.execute(delete(OGPost).where(OGPost.repo_name == repo_name))
        return result.rowcount
