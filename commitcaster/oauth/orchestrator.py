"""OAuthOrchestrator — drives both authorization flows and stores the results in the vault."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from commitcaster.engines.diff_fetcher.github_client import GitHubClient
from commitcaster.oauth.pkce import generate_pkce_pair, generate_state
from commitcaster.oauth.providers import CodeHostOAuth, SocialNetOAuth
from commitcaster.oauth.state_store import PendingAuthStore
from commitcaster.services import AuthenticationError, ValidationError
from commitcaster.services.credential_vault import (
    CodeHostToken,
    CredentialVault,
    Provider,
    SocialNetToken,
)
from commitcaster.services.tenant_service import TenantService, codehost_subject, codehost_tenant_id

log = structlog.get_logger("commitcaster.oauth")


@dataclass
class AuthorizationResult:
    tenant_id: str
    provider: str
    username: str | None = None
    expires_at: float | None = None


class OAuthOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        vault: CredentialVault,
        pending: PendingAuthStore,
        *,
        codehost: CodeHostOAuth,
        socialnet: SocialNetOAuth,
        github_client: GitHubClient,
        tenant_service: TenantService,
    ) -> None:
        self._session_factory = session_factory
        self._vault = vault
        self._pending = pending
        self._codehost = codehost
        self._socialnet = socialnet
        self._github = github_client
        self._tenants = tenant_service

    # ------------------------------------------------------------------
    # Code host (classical authorization code)
    # ------------------------------------------------------------------

    def start_codehost(self) -> str:
        """Authorization URL for the code host; the state is remembered until callback."""
        if not self._codehost.configured:
            raise ValidationError("code-host OAuth is not configured")
        state = generate_state()
        self._pending.put(state, Provider.CODEHOST.value)
        return self._codehost.authorize_url(state)

    async def complete_codehost(self, code: str | None, state: str | None) -> AuthorizationResult:
        """Exchange *code*, load the profile, upsert the tenant and store the token."""
        if self._pending.pop(state, Provider.CODEHOST.value) is None:
            raise AuthenticationError("invalid or expired OAuth state")
        if not code:
            raise AuthenticationError("authorization code missing from callback")

        grant = await self._codehost.exchange(code)
        user = await self._github.get_authenticated_user(grant.access_token)
        external_id = str(user["id"])
        tenant_id = codehost_tenant_id(external_id)

        async with self._session_factory() as session:
            async with session.begin():
                await self._tenants.ensure_tenant(
                    session,
                    tenant_id,
                    github_username=user.get("login"),
                    display_name=user.get("name"),
                    email=user.get("email"),
                )
        await self._vault.put(
            Provider.CODEHOST,
            external_id,
            CodeHostToken(
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                scope=grant.scope,
                expires_at=grant.expires_at,
                user=user,
            ),
        )
        log.info("oauth.codehost.connected", tenant_id=tenant_id, login=user.get("login"))
        return AuthorizationResult(
            tenant_id=tenant_id,
            provider=Provider.CODEHOST.value,
            username=user.get("login"),
            expires_at=grant.expires_at,
        )

    # ------------------------------------------------------------------
    # Social net (PKCE)
    # ------------------------------------------------------------------

    def start_socialnet(self, tenant_id: str) -> str:
        """Authorization URL with an S256 challenge; the verifier is kept by state."""
        if not self._socialnet.configured:
            raise ValidationError("social-net OAuth is not configured")
        if not tenant_id:
            raise ValidationError("tenant_id is required")
        pair = generate_pkce_pair()
        state = generate_state()
        self._pending.put(state, Provider.SOCIALNET.value, code_verifier=pair.verifier, tenant_id=tenant_id)
        return self._socialnet.authorize_url(state, code_challenge=pair.challenge)

    async def complete_socialnet(self, code: str | None, state: str | None) -> AuthorizationResult:
        pending = self._pending.pop(state, Provider.SOCIALNET.value)
        if pending is None or not pending.code_verifier or not pending.tenant_id:
            raise AuthenticationError("invalid or expired OAuth state")
        if not code:
            raise AuthenticationError("authorization code missing from callback")

        grant = await self._socialnet.exchange(code, code_verifier=pending.code_verifier)
        await self._vault.put(
            Provider.SOCIALNET,
            pending.tenant_id,
            SocialNetToken(
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                token_type=grant.token_type or "bearer",
                scope=grant.scope,
                expires_at=grant.expires_at,
            ),
        )
        log.info(
            "oauth.socialnet.connected",
            tenant_id=pending.tenant_id,
            has_refresh_token=grant.refresh_token is not None,
            expires_at=grant.expires_at,
        )
        return AuthorizationResult(
            tenant_id=pending.tenant_id,
            provider=Provider.SOCIALNET.value,
            expires_at=grant.expires_at,
        )

    # ------------------------------------------------------------------
    # Webhook installation
    # ------------------------------------------------------------------

    async def install_webhook(
        self, tenant_id: str, repo_full_name: str, *, url: str, secret: str | None
    ) -> dict[str, Any]:
        """Create the push hook on *repo_full_name* unless one already points at *url*."""
        subject = codehost_subject(tenant_id)
        if subject is None:
            raise ValidationError(f"{tenant_id} is not a code-host tenant")
        token = await self._vault.get_valid_access_token(Provider.CODEHOST, subject)

        for hook in await self._github.list_hooks(repo_full_name, token):
            if (hook.get("config") or {}).get("url") == url:
                log.info("oauth.webhook_exists", repo=repo_full_name, hook_id=hook.get("id"))
                return {"hook_id": hook.get("id"), "created": False}

        hook = await self._github.create_hook(repo_full_name, token, url=url, secret=secret)
        log.info("oauth.webhook_installed", repo=repo_full_name, hook_id=hook.get("id"))
        return {"hook_id": hook.get("id"), "created": True}
