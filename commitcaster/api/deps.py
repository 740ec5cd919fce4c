"""Dependency injection — session, admin gate, and the runtime object graph."""

from __future__ import annotations

import hmac
from collections.abc import AsyncGenerator
from dataclasses import dataclass

import httpx
from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from commitcaster.agent.llm_client import LLMClient
from commitcaster.core.config import Settings, get_settings
from commitcaster.core.database import create_engine
from commitcaster.dao.api_usage_dao import ApiUsageDAO
from commitcaster.dao.oauth_token_dao import GithubTokenDAO, OAuthTokenDAO
from commitcaster.dao.posted_commit_dao import OGPostDAO, PostedCommitDAO
from commitcaster.dao.prompt_template_dao import PromptTemplateDAO
from commitcaster.dao.queue_item_dao import QueueItemDAO
from commitcaster.dao.repo_context_dao import RepoContextDAO
from commitcaster.dao.user_dao import UserDAO
from commitcaster.dao.user_repo_dao import UserRepoDAO
from commitcaster.engines.ai_transformer.transformer import AITransformer
from commitcaster.engines.diff_fetcher.fetcher import DiffFetcher
from commitcaster.engines.diff_fetcher.github_client import GitHubClient
from commitcaster.engines.pipeline.tasks import CommitPipeline
from commitcaster.engines.poster.poster import Poster
from commitcaster.engines.work_queue.queue import QueueConfig, WorkQueue
from commitcaster.oauth.orchestrator import OAuthOrchestrator
from commitcaster.oauth.providers import CodeHostOAuth, SocialNetOAuth
from commitcaster.oauth.state_store import PendingAuthStore
from commitcaster.services import AuthenticationError, ForbiddenError
from commitcaster.services.credential_vault import CredentialVault, FileTokenStore, Provider
from commitcaster.services.repo_context_service import RepoContextService
from commitcaster.services.stats_service import StatsService
from commitcaster.services.template_engine import TemplateService
from commitcaster.services.tenant_service import TenantService
from commitcaster.services.usage_service import UsageService
from commitcaster.services.webhook_service import WebhookService

# ---------------------------------------------------------------------------
# DAO singletons
# ---------------------------------------------------------------------------
_user_dao = UserDAO()
_user_repo_dao = UserRepoDAO()
_oauth_token_dao = OAuthTokenDAO()
_github_token_dao = GithubTokenDAO()
_repo_context_dao = RepoContextDAO()
_posted_commit_dao = PostedCommitDAO()
_og_post_dao = OGPostDAO()
_api_usage_dao = ApiUsageDAO()
_prompt_template_dao = PromptTemplateDAO()
_queue_item_dao = QueueItemDAO()

# ---------------------------------------------------------------------------
# Runtime (built by the app lifespan, or by tests)
# ---------------------------------------------------------------------------


@dataclass
class Runtime:
    """Every long-lived object the request handlers and the scheduler share."""

    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    queue: WorkQueue
    vault: CredentialVault
    pending_auth: PendingAuthStore
    github_client: GitHubClient
    codehost_oauth: CodeHostOAuth
    socialnet_oauth: SocialNetOAuth
    poster: Poster
    transformer: AITransformer
    tenant_service: TenantService
    usage_service: UsageService
    template_service: TemplateService
    repo_context_service: RepoContextService
    stats_service: StatsService
    pipeline: CommitPipeline
    webhook_service: WebhookService
    orchestrator: OAuthOrchestrator

    async def close(self) -> None:
        await self.queue.close()
        await self.github_client.close()
        await self.poster.close()
        await self.codehost_oauth.close()
        await self.socialnet_oauth.close()


def build_runtime(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    github_client: GitHubClient | None = None,
    poster_http: httpx.AsyncClient | None = None,
    oauth_http: httpx.AsyncClient | None = None,
    llm: LLMClient | None = None,
) -> Runtime:
    """Wire the object graph for *settings*.

    The keyword arguments replace the outbound clients, which is how tests
    point the runtime at mock transports.
    """
    queue = WorkQueue(
        session_factory,
        QueueConfig(
            max_requests_per_minute=settings.queue_max_rpm,
            max_retries=settings.queue_max_retries,
            base_retry_delay_ms=settings.queue_base_retry_delay_ms,
            max_retry_delay_ms=settings.queue_max_retry_delay_ms,
            user_quota_limit=settings.user_quota_limit,
        ),
        queue_item_dao=_queue_item_dao,
    )

    codehost_oauth = CodeHostOAuth(
        settings.codehost_client_id,
        settings.codehost_client_secret,
        settings.callback_url(Provider.CODEHOST.value),
        http_client=oauth_http,
    )
    socialnet_oauth = SocialNetOAuth(
        settings.socialnet_client_id,
        settings.socialnet_client_secret,
        settings.callback_url(Provider.SOCIALNET.value),
        http_client=oauth_http,
    )
    vault = CredentialVault(
        session_factory,
        {Provider.CODEHOST: codehost_oauth, Provider.SOCIALNET: socialnet_oauth},
        file_store=FileTokenStore(settings.token_store_dir),
        oauth_token_dao=_oauth_token_dao,
        github_token_dao=_github_token_dao,
    )

    github = github_client or GitHubClient()
    poster = Poster(vault, http_client=poster_http)
    transformer = AITransformer(llm or LLMClient(api_key=settings.ai_api_key, default_model=settings.ai_model))
    pending_auth = PendingAuthStore(ttl_seconds=settings.pkce_ttl_seconds)

    tenant_service = TenantService(_user_dao, _user_repo_dao, settings)
    usage_service = UsageService(_api_usage_dao, _user_dao, settings)
    template_service = TemplateService(_prompt_template_dao)
    repo_context_service = RepoContextService(_repo_context_dao, settings.repo_context_ttl_hours)
    stats_service = StatsService(queue, _posted_commit_dao, _queue_item_dao, _user_dao)

    pipeline = CommitPipeline(
        session_factory,
        queue,
        fetcher=DiffFetcher(github),
        transformer=transformer,
        poster=poster,
        vault=vault,
        template_service=template_service,
        usage_service=usage_service,
        settings=settings,
        posted_commit_dao=_posted_commit_dao,
        og_post_dao=_og_post_dao,
    )
    webhook_service = WebhookService(session_factory, pipeline, tenant_service, repo_context_service)
    orchestrator = OAuthOrchestrator(
        session_factory,
        vault,
        pending_auth,
        codehost=codehost_oauth,
        socialnet=socialnet_oauth,
        github_client=github,
        tenant_service=tenant_service,
    )

    return Runtime(
        settings=settings,
        session_factory=session_factory,
        queue=queue,
        vault=vault,
        pending_auth=pending_auth,
        github_client=github,
        codehost_oauth=codehost_oauth,
        socialnet_oauth=socialnet_oauth,
        poster=poster,
        transformer=transformer,
        tenant_service=tenant_service,
        usage_service=usage_service,
        template_service=template_service,
        repo_context_service=repo_context_service,
        stats_service=stats_service,
        pipeline=pipeline,
        webhook_service=webhook_service,
        orchestrator=orchestrator,
    )


_runtime: Runtime | None = None


def set_runtime(runtime: Runtime | None) -> None:
    """Install the runtime used by request handlers (also used by tests)."""
    global _runtime  # noqa: PLW0603
    _runtime = runtime


def get_runtime() -> Runtime:
    if _runtime is None:
        raise RuntimeError("runtime not initialised; the app lifespan has not run")
    return _runtime


# ---------------------------------------------------------------------------
# Engine / session factory (initialised by app lifespan)
# ---------------------------------------------------------------------------
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_session_factory(database_url: str | None = None) -> async_sessionmaker[AsyncSession]:
    """Create the async engine and session factory. Called once at startup."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = create_engine(database_url or get_settings().database_url)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _session_factory


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("call init_session_factory() first")
    return _engine


async def dispose_engine() -> None:
    """Dispose the async engine, closing all pooled connections."""
    global _engine  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None


def set_session_factory(factory: async_sessionmaker[AsyncSession]) -> None:
    """Override session factory (for testing)."""
    global _session_factory  # noqa: PLW0603
    _session_factory = factory


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a per-request session with automatic commit/rollback."""
    if _session_factory is None:
        raise RuntimeError("call init_session_factory() before handling requests")
    async with _session_factory() as session:
        async with session.begin():
            yield session


# ---------------------------------------------------------------------------
# Admin gate
# ---------------------------------------------------------------------------


def get_app_settings() -> Settings:
    return get_runtime().settings


async def require_admin(
    x_admin_key: str | None = Header(default=None),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """Check ``X-Admin-Key`` against the configured key.

    Without a configured key the API is open in development and closed
    otherwise.
    """
    expected = settings.admin_api_key
    if not expected:
        if settings.is_development:
            return
        raise ForbiddenError("admin API key is not configured")
    if not x_admin_key or not hmac.compare_digest(x_admin_key, expected):
        raise AuthenticationError("invalid or missing X-Admin-Key")


# ---------------------------------------------------------------------------
# Service getters (for Depends())
# ---------------------------------------------------------------------------


def get_queue() -> WorkQueue:
    return get_runtime().queue


def get_vault() -> CredentialVault:
    return get_runtime().vault


def get_tenant_service() -> TenantService:
    return get_runtime().tenant_service


def get_usage_service() -> UsageService:
    return get_runtime().usage_service


def get_template_service() -> TemplateService:
    return get_runtime().template_service


def get_repo_context_service() -> RepoContextService:
    return get_runtime().repo_context_service


def get_stats_service() -> StatsService:
    return get_runtime().stats_service


def get_webhook_service() -> WebhookService:
    return get_runtime().webhook_service


def get_orchestrator() -> OAuthOrchestrator:
    return get_runtime().orchestrator


def get_posted_commit_dao() -> PostedCommitDAO:
    return _posted_commit_dao


def get_og_post_dao() -> OGPostDAO:
    return _og_post_dao


def get_queue_item_dao() -> QueueItemDAO:
    return _queue_item_dao
