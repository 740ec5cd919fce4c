"""RepoContextDAO — cached repository metadata."""

from typing import Any

from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from commitcaster.core.database import utcnow
from commitcaster.dao.base import BaseDAO
from commitcaster.models.repo_context import RepoContext


class RepoContextDAO(BaseDAO[RepoContext]):
    model = RepoContext

    async def get_for_repo(self, session: AsyncSession, repo_full_name: str) -> RepoContext | None:
        return await self.get_by_field(session, repo_full_name=repo_full_name)

    async def upsert(
        self,
        session: AsyncSession,
        repo_full_name: str,
        context: dict[str, Any],
        readme_content: str | None = None,
    ) -> None:
        now = utcnow()
        stmt = insert(RepoContext).values(
            repo_full_name=repo_full_name,
            context_json=context,
            readme_content=readme_content,
            last_updated=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[RepoContext.__table__.c.repo_full_name],
            set_={"context_json": context, "readme_content": readme_content, "last_updated": now},
        )
        await session.execute(stmt)
