"""Tenant and enrollment request/response schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from commitcaster.models.user_repo import UserRepo


class TenantCreate(BaseModel):
    user_id: str = Field(min_length=1)
    github_username: str | None = None
    display_name: str | None = None
    email: str | None = None


class TenantUpdate(BaseModel):
    tier: str
    api_quota_limit: int | None = Field(default=None, ge=0)


class TenantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    github_username: str | None
    display_name: str | None
    email: str | None
    tier: str
    api_quota_limit: int
    created_at: datetime


class QuotaInfo(BaseModel):
    limit: int
    used: int
    remaining: int
    queue_remaining: int


class CredentialStates(BaseModel):
    codehost: str | None = None
    socialnet: str


class TenantDetail(TenantResponse):
    quota: QuotaInfo
    credentials: CredentialStates
    repos: list[RepoResponse]
    posts_total: int
    queue: dict[str, int]


class RepoEnrollRequest(BaseModel):
    repo_full_name: str
    webhook_secret: str | None = None


class RepoUpdate(BaseModel):
    enabled: bool | None = None
    webhook_secret: str | None = None


class RepoResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    repo_full_name: str
    is_active: bool
    has_webhook_secret: bool = False
    created_at: datetime

    @classmethod
    def from_row(cls, row: UserRepo) -> RepoResponse:
        return cls(
            repo_full_name=row.repo_full_name,
            is_active=row.is_active,
            has_webhook_secret=bool(row.webhook_secret),
            created_at=row.created_at,
        )


class WebhookInstallResponse(BaseModel):
    repo_full_name: str
    hook_id: int | None
    created: bool
    url: str


TenantDetail.model_rebuild()
