"""Users router — tenants, enrollments, quota and credential inspection."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from commitcaster.api.deps import (
    Runtime,
    get_posted_commit_dao,
    get_queue_item_dao,
    get_runtime,
    get_session,
    get_tenant_service,
)
from commitcaster.api.schemas.tenant import (
    CredentialStates,
    QuotaInfo,
    RepoEnrollRequest,
    RepoResponse,
    RepoUpdate,
    TenantCreate,
    TenantDetail,
    TenantResponse,
    TenantUpdate,
    WebhookInstallResponse,
)
from commitcaster.dao.posted_commit_dao import PostedCommitDAO
from commitcaster.dao.queue_item_dao import QueueItemDAO
from commitcaster.services.credential_vault import Provider
from commitcaster.services.tenant_service import TenantService, codehost_subject

router = APIRouter()


@router.get("/", response_model=list[TenantResponse])
async def list_users(
    session: AsyncSession = Depends(get_session),
    svc: TenantService = Depends(get_tenant_service),
) -> list[TenantResponse]:
    return [TenantResponse.model_validate(u) for u in await svc.list_tenants(session)]


@router.post("/", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: TenantCreate,
    session: AsyncSession = Depends(get_session),
    svc: TenantService = Depends(get_tenant_service),
) -> TenantResponse:
    user = await svc.ensure_tenant(
        session,
        body.user_id,
        github_username=body.github_username,
        display_name=body.display_name,
        email=body.email,
    )
    return TenantResponse.model_validate(user)


@router.get("/{user_id}", response_model=TenantDetail)
async def get_user(
    user_id: str,
    runtime: Runtime = Depends(get_runtime),
    posted_dao: PostedCommitDAO = Depends(get_posted_commit_dao),
    queue_item_dao: QueueItemDAO = Depends(get_queue_item_dao),
) -> TenantDetail:
    async with runtime.session_factory() as session:
        user = await runtime.tenant_service.get_tenant(session, user_id)
        quota = await runtime.usage_service.summary(session, user_id)
        repos = await runtime.tenant_service.list_repos(session, user_id)
        posts_total = await posted_dao.count_for_user(session, user_id)
        queue_counts = await queue_item_dao.count_by_status(session, user_id)

    subject = codehost_subject(user_id)
    credentials = CredentialStates(
        codehost=await runtime.vault.state(Provider.CODEHOST, subject) if subject else None,
        socialnet=await runtime.vault.state(Provider.SOCIALNET, user_id),
    )
    base = TenantResponse.model_validate(user)
    return TenantDetail(
        **base.model_dump(),
        quota=QuotaInfo(
            **quota,
            queue_remaining=runtime.queue.quota_remaining(user_id, quota["limit"]),
        ),
        credentials=credentials,
        repos=[RepoResponse.from_row(r) for r in repos],
        posts_total=posts_total,
        queue=queue_counts,
    )


@router.patch("/{user_id}", response_model=TenantResponse)
async def update_user(
    user_id: str,
    body: TenantUpdate,
    session: AsyncSession = Depends(get_session),
    svc: TenantService = Depends(get_tenant_service),
) -> TenantResponse:
    user = await svc.set_tier(session, user_id, body.tier, body.api_quota_limit)
    return TenantResponse.model_validate(user)


# ── enrollments ───────────────────────────────────────────────────────────


@router.get("/{user_id}/repos", response_model=list[RepoResponse])
async def list_user_repos(
    user_id: str,
    session: AsyncSession = Depends(get_session),
    svc: TenantService = Depends(get_tenant_service),
) -> list[RepoResponse]:
    await svc.get_tenant(session, user_id)
    return [RepoResponse.from_row(r) for r in await svc.list_repos(session, user_id)]


@router.post("/{user_id}/repos", response_model=RepoResponse, status_code=status.HTTP_201_CREATED)
async def enroll_repo(
    user_id: str,
    body: RepoEnrollRequest,
    session: AsyncSession = Depends(get_session),
    svc: TenantService = Depends(get_tenant_service),
) -> RepoResponse:
    row = await svc.enroll_repo(session, user_id, body.repo_full_name, body.webhook_secret)
    return RepoResponse.from_row(row)


@router.put("/{user_id}/repos/{owner}/{repo}", response_model=RepoResponse)
async def update_repo(
    user_id: str,
    owner: str,
    repo: str,
    body: RepoUpdate,
    session: AsyncSession = Depends(get_session),
    svc: TenantService = Depends(get_tenant_service),
) -> RepoResponse:
    full_name = f"{owner}/{repo}"
    row = await svc.get_repo(session, user_id, full_name)
    if body.enabled is not None:
        row = await svc.set_repo_enabled(session, user_id, full_name, body.enabled)
    if body.webhook_secret is not None:
        row = await svc.set_repo_secret(session, user_id, full_name, body.webhook_secret or None)
    return RepoResponse.from_row(row)


@router.post("/{user_id}/repos/{owner}/{repo}/webhook", response_model=WebhookInstallResponse)
async def install_webhook(
    user_id: str,
    owner: str,
    repo: str,
    runtime: Runtime = Depends(get_runtime),
) -> WebhookInstallResponse:
    full_name = f"{owner}/{repo}"
    async with runtime.session_factory() as session:
        row = await runtime.tenant_service.get_repo(session, user_id, full_name)
        secret = row.webhook_secret or runtime.settings.webhook_secret

    url = runtime.settings.webhook_url
    result = await runtime.orchestrator.install_webhook(user_id, full_name, url=url, secret=secret)
    return WebhookInstallResponse(repo_full_name=full_name, url=url, **result)
