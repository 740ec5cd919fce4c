"""PromptTemplateDAO — per-tenant prompt templates."""

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from commitcaster.core.database import utcnow
from commitcaster.dao.base import BaseDAO
from commitcaster.models.prompt_template import PromptTemplate


class PromptTemplateDAO(BaseDAO[PromptTemplate]):
    model = PromptTemplate

    async def get(
        self, session: AsyncSession, user_id: str, template_id: str
    ) -> PromptTemplate | None:
        return await self.get_by_field(session, user_id=user_id, template_id=template_id)

    async def get_active(self, session: AsyncSession, user_id: str) -> PromptTemplate | None:
        stmt = (
            select(PromptTemplate)
            .where(PromptTemplate.user_id == user_id, PromptTemplate.is_active.is_(True))
            .order_by(PromptTemplate.updated_at.desc(), PromptTemplate.id.desc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def list_for_user(self, session: AsyncSession, user_id: str) -> list[PromptTemplate]:
        stmt = (
            select(PromptTemplate)
            .where(PromptTemplate.user_id == user_id)
            .order_by(PromptTemplate.created_at, PromptTemplate.id)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def upsert(
        self,
        session: AsyncSession,
        user_id: str,
        template_id: str,
        template_name: str,
        template_content: str,
    ) -> PromptTemplate:
        table = PromptTemplate.__table__
        stmt = insert(PromptTemplate).values(
            user_id=user_id,
            template_id=template_id,
            template_name=template_name,
            template_content=template_content,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.template_id],
            set_={
                "template_name": template_name,
                "template_content": template_content,
                "updated_at": utcnow(),
            },
        )
        await session.execute(stmt)
        row = await self.get(session, user_id, template_id)
        assert row is not None
        await session.refresh(row)
        return row

    async def activate(self, session: AsyncSession, user_id: str, template_id: str) -> bool:
        """Make *template_id* the only active template for *user_id*."""
        await self.deactivate_all(session, user_id)
        result = await session.execute(
            update(PromptTemplate)
            .where(PromptTemplate.user_id == user_id, PromptTemplate.template_id == template_id)
            .values(is_active=True, updated_at=utcnow())
        )
        return result.rowcount == 1

    async def deactivate_all(self, session: AsyncSession, user_id: str) -> None:
        await session.execute(
            update(PromptTemplate)
            .where(PromptTemplate.user_id == user_id, PromptTemplate.is_active.is_(True))
            .values(is_active=False)
        )

    async def remove(self, session: AsyncSession, user_id: str, template_id: str) -> int:
        result = await session.execute(
            delete(PromptTemplate).where(
                PromptTemplate.user_id == user_id, PromptTemplate.template_id == template_id
            )
        )
        return result.rowcount
