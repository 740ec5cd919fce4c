"""TenantService — tenants, repository enrollments and routing lookups."""

from __future__ import annotations

import re

from sqlalchemy.ext.asyncio import AsyncSession

from commitcaster.core.config import Settings
from commitcaster.dao.user_dao import UserDAO
from commitcaster.dao.user_repo_dao import UserRepoDAO
from commitcaster.models.user import TIERS, User
from commitcaster.models.user_repo import UserRepo
from commitcaster.services import NotFoundError, ValidationError

DEFAULT_TENANT = "default"

_REPO_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


def codehost_tenant_id(external_user_id: str | int) -> str:
    """Canonical tenant id for a code-host account."""
    return f"codehost:{external_user_id}"


def codehost_subject(tenant_id: str) -> str | None:
    """External code-host user id behind *tenant_id*, or None for other tenants."""
    prefix, sep, external_id = tenant_id.partition(":")
    if sep and prefix == "codehost" and external_id:
        return external_id
    return None


def validate_repo_name(repo_full_name: str) -> str:
    name = (repo_full_name or "").strip()
    if not _REPO_NAME_RE.match(name):
        raise ValidationError(f"invalid repository name: {repo_full_name!r} (expected owner/repo)")
    return name


class TenantService:
    """Stateless service over users and user_repos."""

    def __init__(self, user_dao: UserDAO, user_repo_dao: UserRepoDAO, settings: Settings) -> None:
        self._user_dao = user_dao
        self._repo_dao = user_repo_dao
        self._settings = settings

    # ── tenants ───────────────────────────────────────────────────────────

    async def ensure_tenant(
        self,
        session: AsyncSession,
        tenant_id: str,
        *,
        github_username: str | None = None,
        display_name: str | None = None,
        email: str | None = None,
    ) -> User:
        return await self._user_dao.upsert(
            session,
            tenant_id,
            github_username=github_username,
            display_name=display_name,
            email=email,
            api_quota_limit=self._settings.user_quota_limit,
        )

    async def get_tenant(self, session: AsyncSession, tenant_id: str) -> User:
        user = await self._user_dao.get_by_user_id(session, tenant_id)
        if user is None:
            raise NotFoundError(f"tenant not found: {tenant_id}")
        return user

    async def find_tenant(self, session: AsyncSession, tenant_id: str) -> User | None:
        return await self._user_dao.get_by_user_id(session, tenant_id)

    async def list_tenants(self, session: AsyncSession) -> list[User]:
        return await self._user_dao.list_all(session)

    async def set_tier(
        self,
        session: AsyncSession,
        tenant_id: str,
        tier: str,
        api_quota_limit: int | None = None,
    ) -> User:
        if tier not in TIERS:
            raise ValidationError(f"unknown tier {tier!r}; expected one of {', '.join(TIERS)}")
        if api_quota_limit is not None and api_quota_limit < 0:
            raise ValidationError("api_quota_limit must be >= 0")
        user = await self.get_tenant(session, tenant_id)
        return await self._user_dao.set_tier(session, user, tier, api_quota_limit)

    # ── enrollments ───────────────────────────────────────────────────────

    async def enroll_repo(
        self,
        session: AsyncSession,
        tenant_id: str,
        repo_full_name: str,
        webhook_secret: str | None = None,
    ) -> UserRepo:
        name = validate_repo_name(repo_full_name)
        await self.get_tenant(session, tenant_id)
        return await self._repo_dao.enroll(session, tenant_id, name, webhook_secret)

    async def list_repos(self, session: AsyncSession, tenant_id: str) -> list[UserRepo]:
        return await self._repo_dao.list_for_user(session, tenant_id)

    async def get_repo(self, session: AsyncSession, tenant_id: str, repo_full_name: str) -> UserRepo:
        row = await self._repo_dao.get(session, tenant_id, repo_full_name)
        if row is None:
            raise NotFoundError(f"{repo_full_name} is not enrolled for {tenant_id}")
        return row

    async def set_repo_enabled(
        self, session: AsyncSession, tenant_id: str, repo_full_name: str, enabled: bool
    ) -> UserRepo:
        row = await self.get_repo(session, tenant_id, repo_full_name)
        await self._repo_dao.update_fields(session, row, is_active=enabled)
        return row

    async def set_repo_secret(
        self, session: AsyncSession, tenant_id: str, repo_full_name: str, secret: str | None
    ) -> UserRepo:
        row = await self.get_repo(session, tenant_id, repo_full_name)
        await self._repo_dao.update_fields(session, row, webhook_secret=secret)
        return row

    # ── routing ───────────────────────────────────────────────────────────

    async def user_by_repo(self, session: AsyncSession, repo_full_name: str) -> str | None:
        """Tenant owning the active enrollment of *repo_full_name*, if any."""
        row = await self._repo_dao.find_active_owner(session, repo_full_name)
        return row.user_id if row else None

    async def repo_is_enabled(self, session: AsyncSession, repo_full_name: str) -> bool:
        return await self._repo_dao.find_active_owner(session, repo_full_name) is not None

    def is_allow_listed(self, repo_full_name: str) -> bool:
        return repo_full_name in self._settings.allowed_repos

    async def is_repo_allowed(self, session: AsyncSession, repo_full_name: str) -> bool:
        if self.is_allow_listed(repo_full_name):
            return True
        return await self.repo_is_enabled(session, repo_full_name)

    async def webhook_secret_for(self, session: AsyncSession, repo_full_name: str | None) -> str | None:
        """Per-repo secret when one is stored, else the global secret."""
        if repo_full_name:
            row = await self._repo_dao.find_any(session, repo_full_name)
            if row is not None and row.webhook_secret:
                return row.webhook_secret
        return self._settings.webhook_secret
