"""Token DAOs — social-net (oauth_tokens) and code-host (github_tokens) credentials."""

from typing import Any

from sqlalchemy import delete, func
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from commitcaster.core.database import utcnow
from commitcaster.dao.base import BaseDAO
from commitcaster.models.github_token import GithubToken
from commitcaster.models.oauth_token import OAuthToken


class OAuthTokenDAO(BaseDAO[OAuthToken]):
    model = OAuthToken

    async def get_for_user(self, session: AsyncSession, user_id: str) -> OAuthToken | None:
        return await self.get_by_field(session, user_id=user_id)

    async def upsert(
        self,
        session: AsyncSession,
        user_id: str,
        *,
        access_token: str,
        refresh_token: str | None,
        token_type: str | None,
        scope: str | None,
        expires_at: float | None,
    ) -> None:
        values: dict[str, Any] = {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_type": token_type,
            "scope": scope,
            "expires_at": expires_at,
        }
        stmt = insert(OAuthToken).values(user_id=user_id, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[OAuthToken.__table__.c.user_id],
            set_={**values, "updated_at": utcnow()},
        )
        await session.execute(stmt)

    async def delete_for_user(self, session: AsyncSession, user_id: str) -> int:
        result = await session.execute(delete(OAuthToken).where(OAuthToken.user_id == user_id))
        return result.rowcount


class GithubTokenDAO(BaseDAO[GithubToken]):
    model = GithubToken

    async def get_for_user(self, session: AsyncSession, github_user_id: str) -> GithubToken | None:
        return await self.get_by_field(session, github_user_id=github_user_id)

    async def upsert(
        self,
        session: AsyncSession,
        github_user_id: str,
        *,
        access_token: str,
        refresh_token: str | None,
        scope: str | None,
        user_json: dict[str, Any],
        expires_at: float | None,
    ) -> None:
        values: dict[str, Any] = {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "scope": scope,
            "user_json": user_json,
            "expires_at": expires_at,
        }
        stmt = insert(GithubToken).values(github_user_id=github_user_id, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[GithubToken.__table__.c.github_user_id],
            set_={
                **values,
                "refresh_token": func.coalesce(
                    stmt.excluded.refresh_token, GithubToken.__table__.c.refresh_token
                ),
                "updated_at": utcnow(),
            },
        )
        await session.execute(stmt)

    async def delete_for_user(self, session: AsyncSession, github_user_id: str) -> int:
        result = await session.execute(
            delete(GithubToken).where(GithubToken.github_user_id == github_user_id)
        )
        return result.rowcount
