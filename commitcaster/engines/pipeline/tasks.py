"""CommitPipeline — the queued diff-analysis → render → post chain for one commit.

Each stage is its own queue item (``<kind>-<full sha>``) and enqueues the
next one when it succeeds, so a retry only repeats the failed stage. Stage
payloads are plain JSON and survive a restart through ``queue_items``.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from commitcaster.agent.postprocess import sanitize_post_text
from commitcaster.core.config import Settings
from commitcaster.dao.posted_commit_dao import OGPostDAO, PostedCommitDAO
from commitcaster.engines.ai_transformer.transformer import AITransformer
from commitcaster.engines.diff_fetcher.fetcher import DiffFetcher
from commitcaster.engines.diff_fetcher.summary import (
    build_file_based_summary,
    should_skip_diff_analysis,
)
from commitcaster.engines.pipeline.commit_formatter import MAX_POST_LENGTH, fit_post_length
from commitcaster.engines.poster.poster import Poster
from commitcaster.engines.work_queue.queue import Priority, WorkQueue
from commitcaster.services import (
    CommitNotFoundError,
    NoCredentialError,
    QuotaExceededError,
    RateLimitedError,
    RefreshRejectedError,
    RefreshUnavailableError,
    TransportError,
)
from commitcaster.services.credential_vault import CredentialVault, Provider
from commitcaster.services.template_engine import PlanResult, TemplateService, finalize
from commitcaster.services.tenant_service import codehost_subject
from commitcaster.services.usage_service import UsageService

log = structlog.get_logger("commitcaster.pipeline")

DIFF_ANALYSIS = "diff_analysis"
CHANGELOG_RENDER = "changelog_render"
POST_DISPATCH = "post_dispatch"

TASK_TYPES = (DIFF_ANALYSIS, CHANGELOG_RENDER, POST_DISPATCH)


def queue_id_for(kind: str, commit_sha: str) -> str:
    return f"{kind}-{commit_sha}"


def polish_post_text(plan: PlanResult, text: str, fallback: str) -> str:
    """Final shaping of a post body.

    The default template is stripped of emojis and hashtags. Every post is
    bounded to the post length limit, and an empty body becomes *fallback*.
    """
    if plan.is_default:
        text = sanitize_post_text(text)
    text = text.strip()
    if not text:
        text = fallback
    return fit_post_length(text, MAX_POST_LENGTH)


class CommitPipeline:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        queue: WorkQueue,
        *,
        fetcher: DiffFetcher,
        transformer: AITransformer,
        poster: Poster,
        vault: CredentialVault,
        template_service: TemplateService,
        usage_service: UsageService,
        settings: Settings,
        posted_commit_dao: PostedCommitDAO | None = None,
        og_post_dao: OGPostDAO | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._queue = queue
        self._fetcher = fetcher
        self._transformer = transformer
        self._poster = poster
        self._vault = vault
        self._templates = template_service
        self._usage = usage_service
        self._settings = settings
        self._posted = posted_commit_dao or PostedCommitDAO()
        self._og_posts = og_post_dao or OGPostDAO()

    def register(self) -> None:
        """Bind the three task types on the queue. Must run before ``queue.restore()``."""
        self._queue.register(DIFF_ANALYSIS, self.run_diff_analysis, rate_limited=True)
        self._queue.register(CHANGELOG_RENDER, self.run_changelog_render, rate_limited=True)
        self._queue.register(POST_DISPATCH, self.run_post_dispatch, rate_limited=False)

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def submit_commit(
        self,
        tenant_id: str,
        commit: dict[str, Any],
        repository: dict[str, Any],
        project_context: str = "",
    ) -> asyncio.Future[Any] | None:
        """Enqueue the first stage for a formatted commit.

        Returns None when the commit is already in the ledger. Raises
        :class:`QuotaExceededError` when the tenant has no AI calls left and
        the commit would need one.
        """
        sha = commit["full_sha"]
        async with self._session_factory() as session:
            if await self._posted.exists(session, sha):
                log.info("pipeline.already_posted", sha=sha[:7], repo=repository.get("full_name"))
                return None
            plan = await self._templates.process(session, tenant_id, commit, repository, project_context)
            needs_ai = plan.needs_ai and self._transformer.available
            # the default template is a one-shot render fed by the file-based summary
            wants_analysis = (
                not plan.is_default
                and plan.uses_diff_analysis
                and self._transformer.available
                and not should_skip_diff_analysis(commit)
            )
            quota_limit = None
            if needs_ai or wants_analysis:
                quota_limit = await self._usage.quota_limit(session, tenant_id)
                if await self._usage.used(session, tenant_id) >= quota_limit:
                    log.warning("pipeline.quota_exceeded", tenant_id=tenant_id, limit=quota_limit)
                    raise QuotaExceededError(tenant_id, quota_limit)

        payload = {
            "tenant_id": tenant_id,
            "commit": dict(commit),
            "repository": _slim_repository(repository),
            "project_context": project_context,
            "quota_limit": quota_limit,
        }

        if wants_analysis:
            kind = DIFF_ANALYSIS
        else:
            payload["commit"]["diff_analysis"] = build_file_based_summary(commit)
            kind = CHANGELOG_RENDER if needs_ai else POST_DISPATCH

        if kind == POST_DISPATCH:
            async with self._session_factory() as session:
                plan = await self._templates.process(
                    session, tenant_id, payload["commit"], repository, project_context
                )
            payload["text"] = polish_post_text(plan, finalize(plan, None), commit.get("subject") or "")

        log.info("pipeline.submitted", sha=sha[:7], first_stage=kind, tenant_id=tenant_id)
        return await self._enqueue(kind, payload)

    async def _enqueue(self, kind: str, payload: dict[str, Any]) -> asyncio.Future[Any]:
        priority = Priority.HIGH if kind == POST_DISPATCH else Priority.NORMAL
        return await self._queue.enqueue(
            queue_id_for(kind, payload["commit"]["full_sha"]),
            kind,
            payload["tenant_id"],
            payload,
            priority=priority,
            quota_limit=payload.get("quota_limit"),
        )

    # ------------------------------------------------------------------
    # Stage A: diff analysis
    # ------------------------------------------------------------------

    async def run_diff_analysis(self, payload: dict[str, Any]) -> dict[str, Any]:
        tenant_id = payload["tenant_id"]
        commit = payload["commit"]
        repo_full_name = payload["repository"]["full_name"]

        token = await self._codehost_token(tenant_id)
        summary: str | None = None
        try:
            diff = await self._fetcher.fetch(repo_full_name, commit["full_sha"], token)
        except (CommitNotFoundError, RateLimitedError, TransportError) as exc:
            log.warning(
                "pipeline.diff_unavailable",
                sha=commit["sha"],
                repo=repo_full_name,
                reason=type(exc).__name__,
            )
        else:
            if diff.diff.strip():
                try:
                    summary = await self._transformer.analyze_diff(
                        diff, commit.get("message") or "", repo_full_name
                    )
                except RateLimitedError:
                    if self._queue.retries_left(queue_id_for(DIFF_ANALYSIS, commit["full_sha"])) > 0:
                        raise
                    log.warning("pipeline.diff_analysis_throttled", sha=commit["sha"], repo=repo_full_name)
                else:
                    await self._track_ai_call(tenant_id)

        if not summary:
            summary = build_file_based_summary(commit)
        commit["diff_analysis"] = summary

        async with self._session_factory() as session:
            plan = await self._templates.process(
                session, tenant_id, commit, payload["repository"], payload.get("project_context") or ""
            )
        if plan.needs_ai and self._transformer.available:
            await self._enqueue(CHANGELOG_RENDER, payload)
        else:
            payload["text"] = polish_post_text(plan, finalize(plan, None), commit.get("subject") or "")
            await self._enqueue(POST_DISPATCH, payload)
        return {"diff_analysis": summary}

    async def _codehost_token(self, tenant_id: str) -> str | None:
        """Tenant's code-host token, or None to fetch anonymously."""
        subject = codehost_subject(tenant_id)
        if subject is None:
            return None
        try:
            return await self._vault.get_valid_access_token(Provider.CODEHOST, subject)
        except (NoCredentialError, RefreshUnavailableError, RefreshRejectedError, TransportError):
            return None

    # ------------------------------------------------------------------
    # Stage B: changelog render
    # ------------------------------------------------------------------

    async def run_changelog_render(self, payload: dict[str, Any]) -> dict[str, Any]:
        tenant_id = payload["tenant_id"]
        commit = payload["commit"]

        async with self._session_factory() as session:
            plan = await self._templates.process(
                session, tenant_id, commit, payload["repository"], payload.get("project_context") or ""
            )
            if plan.needs_ai:
                await self._usage.check_quota(session, tenant_id)

        ai_text: str | None = None
        if plan.needs_ai and self._transformer.available:
            ai_text = await self._transformer.render_changelog(plan.prompt)
            await self._track_ai_call(tenant_id)

        text = polish_post_text(plan, finalize(plan, ai_text), commit.get("subject") or "")
        payload["text"] = text
        await self._enqueue(POST_DISPATCH, payload)
        return {"text": text}

    async def _track_ai_call(self, tenant_id: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await self._usage.track(session, tenant_id)

    # ------------------------------------------------------------------
    # Post dispatch
    # ------------------------------------------------------------------

    async def run_post_dispatch(self, payload: dict[str, Any]) -> dict[str, Any]:
        tenant_id = payload["tenant_id"]
        commit = payload["commit"]
        sha = commit["full_sha"]
        repo_full_name = payload["repository"]["full_name"]

        async with self._session_factory() as session:
            existing = await self._posted.get_by_sha(session, sha)
            if existing is not None:
                log.info("pipeline.duplicate_suppressed", sha=sha[:7], post_id=existing.tweet_id)
                return {"duplicate": True, "post_id": existing.tweet_id}
            og_post = await self._og_posts.get_for_repo(session, repo_full_name)
            previous = None
            if self._settings.thread_replies:
                previous = await self._posted.latest_for_repo(session, repo_full_name)

        post_id = await self._poster.post(
            payload["text"],
            tenant_id,
            quote_post_id=og_post.tweet_id if og_post else None,
            reply_to_post_id=previous.tweet_id if previous else None,
        )

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    recorded = await self._posted.record(
                        session,
                        user_id=tenant_id,
                        repo_name=repo_full_name,
                        commit_sha=sha,
                        tweet_id=post_id,
                    )
        except SQLAlchemyError as exc:
            # the post is live; this item must not be retried
            log.error("pipeline.ledger_write_failed", sha=sha[:7], post_id=post_id, error=str(exc))
            recorded = True
        if not recorded:
            log.warning("pipeline.ledger_conflict", sha=sha[:7], post_id=post_id)
        log.info("pipeline.posted", sha=sha[:7], repo=repo_full_name, post_id=post_id)
        return {"duplicate": False, "post_id": post_id}


def _slim_repository(repository: dict[str, Any]) -> dict[str, Any]:
    keys = ("name", "full_name", "html_url", "description", "default_branch", "private")
    return {key: repository.get(key) for key in keys}
