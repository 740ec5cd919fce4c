"""SQLAlchemy ORM models — one file per table."""

from commitcaster.models.api_usage import ApiUsage
from commitcaster.models.github_token import GithubToken
from commitcaster.models.oauth_token import OAuthToken
from commitcaster.models.og_post import OGPost
from commitcaster.models.posted_commit import PostedCommit
from commitcaster.models.prompt_template import PromptTemplate
from commitcaster.models.queue_item import QueueItem
from commitcaster.models.repo_context import RepoContext
from commitcaster.models.user import User
from commitcaster.models.user_repo import UserRepo

__all__ = [
    "User",
    "UserRepo",
    "OAuthToken",
    "GithubToken",
    "RepoContext",
    "PostedCommit",
    "OGPost",
    "ApiUsage",
    "PromptTemplate",
    "QueueItem",
]
