"""CredentialVault — per-tenant OAuth tokens for the code host and the social net.

Tokens live in ``oauth_tokens`` (social net, keyed by tenant id) and
``github_tokens`` (code host, keyed by external user id). A JSON file store
takes over when the vault has no session factory, or when a SQL call fails
and a file store is attached.

Refreshes are serialized per (provider, subject) so concurrent callers do
not spend the same refresh token twice.
"""

from __future__ import annotations

import asyncio
import json
import os
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Union

import structlog
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from commitcaster.dao.oauth_token_dao import GithubTokenDAO, OAuthTokenDAO
from commitcaster.oauth.providers import OAuthProvider
from commitcaster.services import (
    NoCredentialError,
    RefreshUnavailableError,
    ValidationError,
)

log = structlog.get_logger("commitcaster.vault")


class Provider(str, Enum):
    CODEHOST = "codehost"
    SOCIALNET = "socialnet"


@dataclass
class CodeHostToken:
    access_token: str
    refresh_token: str | None = None
    scope: str | None = None
    expires_at: float | None = None
    user: dict[str, Any] = field(default_factory=dict)

    provider: ClassVar[Provider] = Provider.CODEHOST


@dataclass
class SocialNetToken:
    access_token: str
    refresh_token: str | None = None
    token_type: str | None = "bearer"
    scope: str | None = None
    expires_at: float | None = None

    provider: ClassVar[Provider] = Provider.SOCIALNET


TokenMaterial = Union[CodeHostToken, SocialNetToken]

_TOKEN_TYPES: dict[Provider, type] = {
    Provider.CODEHOST: CodeHostToken,
    Provider.SOCIALNET: SocialNetToken,
}


def is_expired(token: TokenMaterial, now: float | None = None) -> bool:
    if token.expires_at is None:
        return False
    return token.expires_at <= (now if now is not None else time.time())


def credential_state(token: TokenMaterial | None, now: float | None = None) -> str:
    """``absent`` | ``active`` | ``expired`` (refreshable) | ``revoked``."""
    if token is None:
        return "absent"
    if not is_expired(token, now):
        return "active"
    return "expired" if token.refresh_token else "revoked"


# ---------------------------------------------------------------------------
# File-backed fallback
# ---------------------------------------------------------------------------


class FileTokenStore:
    """JSON file keyed by ``<provider>:<subject>``."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self._path = Path(directory) / "tokens.json"

    def _load(self) -> dict[str, dict[str, Any]]:
        if not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def _dump(self, data: dict[str, dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp, self._path)
        os.chmod(self._path, 0o600)

    def get(self, provider: Provider, subject: str) -> dict[str, Any] | None:
        return self._load().get(f"{provider.value}:{subject}")

    def put(self, provider: Provider, subject: str, material: dict[str, Any]) -> None:
        data = self._load()
        data[f"{provider.value}:{subject}"] = material
        self._dump(data)

    def delete(self, provider: Provider, subject: str) -> bool:
        data = self._load()
        removed = data.pop(f"{provider.value}:{subject}", None) is not None
        if removed:
            self._dump(data)
        return removed


# ---------------------------------------------------------------------------
# Vault
# ---------------------------------------------------------------------------


class CredentialVault:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None,
        providers: dict[Provider, OAuthProvider] | None = None,
        *,
        file_store: FileTokenStore | None = None,
        oauth_token_dao: OAuthTokenDAO | None = None,
        github_token_dao: GithubTokenDAO | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session_factory = session_factory
        self._providers = dict(providers or {})
        self._file_store = file_store
        self._oauth_dao = oauth_token_dao or OAuthTokenDAO()
        self._github_dao = github_token_dao or GithubTokenDAO()
        self._clock = clock
        self._locks: dict[tuple[Provider, str], asyncio.Lock] = {}

        if session_factory is None and file_store is None:
            raise ValueError("CredentialVault needs a session factory or a file store")

    # ── storage ───────────────────────────────────────────────────────────

    async def put(self, provider: Provider, subject: str, token: TokenMaterial) -> None:
        """Store *token*, overwriting whatever was there."""
        if not isinstance(token, _TOKEN_TYPES[provider]):
            raise ValidationError(f"{type(token).__name__} cannot be stored under {provider.value}")

        if self._session_factory is not None:
            try:
                await self._sql_put(token, subject)
                return
            except DBAPIError as exc:
                self._store_unavailable("put", provider, exc)
        self._file_store.put(provider, subject, asdict(token))

    async def get(self, provider: Provider, subject: str) -> TokenMaterial | None:
        if self._session_factory is not None:
            try:
                return await self._sql_get(provider, subject)
            except DBAPIError as exc:
                self._store_unavailable("get", provider, exc)
        raw = self._file_store.get(provider, subject)
        return _TOKEN_TYPES[provider](**raw) if raw else None

    async def delete(self, provider: Provider, subject: str) -> bool:
        """Remove the credential. The subject must re-authorize afterwards."""
        removed: bool | None = None
        if self._session_factory is not None:
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        dao = self._oauth_dao if provider is Provider.SOCIALNET else self._github_dao
                        removed = await dao.delete_for_user(session, subject) > 0
            except DBAPIError as exc:
                self._store_unavailable("delete", provider, exc)
        if removed is None:
            removed = self._file_store.delete(provider, subject)
        if removed:
            log.info("vault.deleted", provider=provider.value, subject=subject)
        return removed

    def _store_unavailable(self, op: str, provider: Provider, exc: DBAPIError) -> None:
        """Log a failed SQL call and re-raise it unless a file store can take over."""
        if self._file_store is None:
            raise exc
        log.error(
            "vault.store_unavailable",
            op=op,
            provider=provider.value,
            fallback="file",
            error=str(exc.orig or exc),
        )

    async def _sql_put(self, token: TokenMaterial, subject: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                if isinstance(token, SocialNetToken):
                    await self._oauth_dao.upsert(
                        session,
                        subject,
                        access_token=token.access_token,
                        refresh_token=token.refresh_token,
                        token_type=token.token_type,
                        scope=token.scope,
                        expires_at=token.expires_at,
                    )
                else:
                    await self._github_dao.upsert(
                        session,
                        subject,
                        access_token=token.access_token,
                        refresh_token=token.refresh_token,
                        scope=token.scope,
                        user_json=token.user,
                        expires_at=token.expires_at,
                    )

    async def _sql_get(self, provider: Provider, subject: str) -> TokenMaterial | None:
        async with self._session_factory() as session:
            if provider is Provider.SOCIALNET:
                row = await self._oauth_dao.get_for_user(session, subject)
                if row is None:
                    return None
                return SocialNetToken(
                    access_token=row.access_token,
                    refresh_token=row.refresh_token,
                    token_type=row.token_type,
                    scope=row.scope,
                    expires_at=row.expires_at,
                )
            row = await self._github_dao.get_for_user(session, subject)
            if row is None:
                return None
            return CodeHostToken(
                access_token=row.access_token,
                refresh_token=row.refresh_token,
                scope=row.scope,
                expires_at=row.expires_at,
                user=dict(row.user_json or {}),
            )

    # ── lifecycle ─────────────────────────────────────────────────────────

    async def is_valid(self, provider: Provider, subject: str) -> bool:
        token = await self.get(provider, subject)
        return token is not None and not is_expired(token, self._clock())

    async def state(self, provider: Provider, subject: str) -> str:
        return credential_state(await self.get(provider, subject), self._clock())

    async def refresh_token(self, provider: Provider, subject: str, *, force: bool = True) -> str:
        """Run the provider refresh grant and store the result.

        With ``force=False`` a token that another caller already refreshed
        is returned as-is. Raises :class:`NoCredentialError`,
        :class:`RefreshUnavailableError`, ``RefreshRejectedError`` or
        ``TransportError``.
        """
        lock = self._locks.setdefault((provider, subject), asyncio.Lock())
        async with lock:
            token = await self.get(provider, subject)
            if token is None:
                raise NoCredentialError(f"no {provider.value} credential for {subject}")
            if not force and not is_expired(token, self._clock()):
                return token.access_token
            if not token.refresh_token:
                raise RefreshUnavailableError(
                    f"{provider.value} credential for {subject} has no refresh token"
                )
            client = self._providers.get(provider)
            if client is None:
                raise RefreshUnavailableError(f"{provider.value} OAuth is not configured")

            grant = await client.refresh(token.refresh_token)
            updated = replace(
                token,
                access_token=grant.access_token,
                refresh_token=grant.refresh_token or token.refresh_token,
                expires_at=grant.expires_at,
                scope=grant.scope or token.scope,
            )
            await self.put(provider, subject, updated)
            log.info(
                "vault.refreshed",
                provider=provider.value,
                subject=subject,
                expires_at=updated.expires_at,
            )
            return updated.access_token

    async def get_valid_access_token(self, provider: Provider, subject: str) -> str:
        """Current access token, refreshed first when it has expired."""
        token = await self.get(provider, subject)
        if token is None:
            raise NoCredentialError(f"no {provider.value} credential for {subject}")
        if not is_expired(token, self._clock()):
            return token.access_token
        return await self.refresh_token(provider, subject, force=False)
