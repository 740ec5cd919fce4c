"""Repos router — OG post, cached context and the posted-commit ledger."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from commitcaster.api.deps import (
    get_og_post_dao,
    get_posted_commit_dao,
    get_repo_context_service,
    get_session,
)
from commitcaster.api.schemas.common import DeletedResponse, PageMeta, PaginatedResponse
from commitcaster.api.schemas.repo import (
    OGPostRequest,
    OGPostResponse,
    PostedCommitItem,
    RepoContextResponse,
)
from commitcaster.dao.posted_commit_dao import OGPostDAO, PostedCommitDAO
from commitcaster.services import NotFoundError
from commitcaster.services.repo_context_service import RepoContextService
from commitcaster.services.tenant_service import validate_repo_name

router = APIRouter()


@router.get("/{owner}/{repo}/og-post", response_model=OGPostResponse)
async def get_og_post(
    owner: str,
    repo: str,
    session: AsyncSession = Depends(get_session),
    dao: OGPostDAO = Depends(get_og_post_dao),
) -> OGPostResponse:
    name = f"{owner}/{repo}"
    row = await dao.get_for_repo(session, name)
    if row is None:
        return OGPostResponse(repo_name=name, post_id=None)
    return OGPostResponse(repo_name=name, post_id=row.tweet_id, created_at=row.created_at)


@router.put("/{owner}/{repo}/og-post", response_model=OGPostResponse)
async def set_og_post(
    owner: str,
    repo: str,
    body: OGPostRequest,
    session: AsyncSession = Depends(get_session),
    dao: OGPostDAO = Depends(get_og_post_dao),
) -> OGPostResponse:
    name = validate_repo_name(f"{owner}/{repo}")
    await dao.set_for_repo(session, name, body.post_id.strip())
    row = await dao.get_for_repo(session, name)
    assert row is not None
    return OGPostResponse(repo_name=name, post_id=row.tweet_id, created_at=row.created_at)


@router.delete("/{owner}/{repo}/og-post", response_model=DeletedResponse)
async def delete_og_post(
    owner: str,
    repo: str,
    session: AsyncSession = Depends(get_session),
    dao: OGPostDAO = Depends(get_og_post_dao),
) -> DeletedResponse:
    return DeletedResponse(deleted=await dao.delete_for_repo(session, f"{owner}/{repo}") > 0)


@router.get("/{owner}/{repo}/context", response_model=RepoContextResponse)
async def get_context(
    owner: str,
    repo: str,
    session: AsyncSession = Depends(get_session),
    svc: RepoContextService = Depends(get_repo_context_service),
) -> RepoContextResponse:
    name = f"{owner}/{repo}"
    context = await svc.get(session, name)
    if context is None:
        raise NotFoundError(f"no context cached for {name}")
    last_updated = context.pop("last_updated", None)
    return RepoContextResponse(repo_name=name, context=context, last_updated=last_updated)


@router.get("/{owner}/{repo}/posts", response_model=PaginatedResponse[PostedCommitItem])
async def list_posts(
    owner: str,
    repo: str,
    cursor: str | None = Query(None),
    page_size: int = Query(20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    dao: PostedCommitDAO = Depends(get_posted_commit_dao),
) -> PaginatedResponse[PostedCommitItem]:
    page = await dao.list_paginated(
        session, repo_name=f"{owner}/{repo}", cursor=cursor, page_size=page_size
    )
    return PaginatedResponse(
        data=[PostedCommitItem.model_validate(row) for row in page.data],
        meta=PageMeta(next_cursor=page.next_cursor, has_more=page.has_more),
    )
