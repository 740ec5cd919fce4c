"""RepoContextService — lightweight repository context inferred from push payloads."""

from __future__ import annotations

import posixpath
from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from commitcaster.core.database import utcnow
from commitcaster.dao.repo_context_dao import RepoContextDAO

log = structlog.get_logger("commitcaster.repo_context")

LANGUAGE_MAP: dict[str, str] = {
    ".js": "JavaScript",
    ".jsx": "JavaScript",
    ".ts": "TypeScript",
    ".tsx": "TypeScript",
    ".py": "Python",
    ".java": "Java",
    ".go": "Go",
    ".rs": "Rust",
    ".rb": "Ruby",
    ".php": "PHP",
    ".c": "C",
    ".cpp": "C++",
    ".cs": "C#",
    ".swift": "Swift",
    ".kt": "Kotlin",
    ".dart": "Dart",
    ".vue": "Vue",
    ".svelte": "Svelte",
}

MAX_LANGUAGES = 5


def generate_context_from_webhook(
    repository: dict[str, Any], commits: list[dict[str, Any]] | None = None
) -> dict[str, Any]:
    """Infer languages from the file extensions touched by *commits*."""
    languages: list[str] = []
    for commit in commits or []:
        files = [*(commit.get("added") or []), *(commit.get("modified") or []), *(commit.get("removed") or [])]
        for path in files:
            ext = posixpath.splitext(path)[1].lower()
            lang = LANGUAGE_MAP.get(ext)
            if lang and lang not in languages:
                languages.append(lang)

    return {
        "repo_name": repository.get("name"),
        "full_name": repository.get("full_name"),
        "description": repository.get("description") or "No description",
        "languages": languages[:MAX_LANGUAGES],
        "frameworks": [],
        "key_directories": [],
        "default_branch": repository.get("default_branch"),
        "is_private": repository.get("private"),
        "html_url": repository.get("html_url"),
        "generated_at": utcnow().isoformat(),
        "source": "webhook",
    }


def format_project_context(context: dict[str, Any] | None, repo_name: str | None = None) -> str:
    """Render the ``=== PROJECT CONTEXT ===`` block embedded in prompts."""
    if not context:
        return ""
    parts = ["", "=== PROJECT CONTEXT ===", f"Project: {context.get('repo_name') or repo_name}"]
    if context.get("languages"):
        parts.append(f"Tech Stack: {', '.join(context['languages'])}")
    if context.get("frameworks"):
        parts.append(f"Frameworks: {', '.join(context['frameworks'])}")
    if context.get("key_directories"):
        parts.append(f"Key Directories: {', '.join(context['key_directories'][:5])}")
    readme = context.get("readme") or {}
    if readme.get("summary"):
        parts.append(f"\nProject Description: {readme['summary']}")
    elif context.get("description"):
        parts.append(f"\nProject Description: {context['description']}")
    parts.append("======================\n")
    return "\n".join(parts)


class RepoContextService:
    def __init__(self, repo_context_dao: RepoContextDAO, ttl_hours: int = 24) -> None:
        self._dao = repo_context_dao
        self._ttl = timedelta(hours=ttl_hours)

    async def get(self, session: AsyncSession, repo_full_name: str) -> dict[str, Any] | None:
        row = await self._dao.get_for_repo(session, repo_full_name)
        if row is None:
            return None
        return {**row.context_json, "last_updated": row.last_updated}

    async def get_or_refresh(
        self,
        session: AsyncSession,
        repository: dict[str, Any],
        commits: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Cached context for the repository; regenerated when older than the TTL."""
        full_name = repository["full_name"]
        row = await self._dao.get_for_repo(session, full_name)
        if row is not None and utcnow() - row.last_updated < self._ttl:
            return dict(row.context_json)

        context = generate_context_from_webhook(repository, commits)
        if row is not None:
            # keep languages seen in earlier pushes
            merged = list(context["languages"])
            for lang in row.context_json.get("languages") or []:
                if lang not in merged:
                    merged.append(lang)
            context["languages"] = merged[:MAX_LANGUAGES]
        await self._dao.upsert(session, full_name, context)
        log.info("repo_context.refreshed", repo=full_name, languages=context["languages"])
        return context
