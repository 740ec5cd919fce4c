"""Per-repository schemas: OG post, context, posted-commit ledger."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OGPostRequest(BaseModel):
    post_id: str = Field(min_length=1)


class OGPostResponse(BaseModel):
    repo_name: str
    post_id: str | None
    created_at: datetime | None = None


class RepoContextResponse(BaseModel):
    repo_name: str
    context: dict[str, Any]
    last_updated: datetime | None = None


class PostedCommitItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    commit_sha: str
    repo_name: str
    user_id: str
    post_id: str = Field(validation_alias="tweet_id")
    created_at: datetime
