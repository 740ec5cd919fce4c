"""WebhookService — push-event ingress: verify, route to a tenant, enqueue commits."""

from __future__ import annotations

import hashlib
import hmac
import json
import re
from typing import Any
from urllib.parse import parse_qs

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from commitcaster.engines.pipeline.commit_formatter import branch_from_ref, format_commit
from commitcaster.engines.pipeline.tasks import CommitPipeline
from commitcaster.services import SignatureMismatchError, ValidationError
from commitcaster.services.repo_context_service import RepoContextService, format_project_context
from commitcaster.services.tenant_service import DEFAULT_TENANT, TenantService

log = structlog.get_logger("commitcaster.webhook")

_MERGE_PATTERNS = (
    re.compile(r"^Merge branch", re.IGNORECASE),
    re.compile(r"^Merge pull request", re.IGNORECASE),
    re.compile(r"^Merge .+ into", re.IGNORECASE),
    re.compile(r"^Merged .+ into", re.IGNORECASE),
)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def compute_signature(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """Constant-time check of a ``sha256=<hex>`` header against *body*."""
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(secret, body), signature.strip())


def parse_payload(body: bytes, content_type: str | None = None) -> dict[str, Any]:
    """Decode a JSON body or a form body carrying ``payload=<json>``.

    Raises :class:`ValidationError` when neither yields a JSON object.
    """
    ctype = (content_type or "").split(";")[0].strip().lower()
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ValidationError("webhook body is not valid UTF-8") from exc

    raw: str | None = text
    if ctype == "application/x-www-form-urlencoded" or (not ctype and text.startswith("payload=")):
        values = parse_qs(text).get("payload")
        raw = values[0] if values else None
    if not raw:
        raise ValidationError("webhook body is empty")

    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise ValidationError("webhook body is not valid JSON") from exc
    if not isinstance(data, dict):
        raise ValidationError("webhook body must be a JSON object")
    return data


def is_merge_commit(commit: dict[str, Any]) -> bool:
    message = commit.get("message") or ""
    return any(pattern.search(message) for pattern in _MERGE_PATTERNS)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class WebhookService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        pipeline: CommitPipeline,
        tenant_service: TenantService,
        repo_context_service: RepoContextService,
    ) -> None:
        self._session_factory = session_factory
        self._pipeline = pipeline
        self._tenants = tenant_service
        self._contexts = repo_context_service

    async def handle_push(
        self,
        body: bytes,
        *,
        event: str | None,
        signature: str | None,
        content_type: str | None = None,
    ) -> dict[str, Any]:
        """Process one delivery and return the response summary.

        Raises :class:`ValidationError` for a malformed body and
        :class:`SignatureMismatchError` for a bad signature. Every later
        failure is logged and folded into the summary.
        """
        payload = parse_payload(body, content_type)
        repository = payload.get("repository") or {}
        repo_full_name = repository.get("full_name") if isinstance(repository, dict) else None

        async with self._session_factory() as session:
            secret = await self._tenants.webhook_secret_for(session, repo_full_name)
        if secret is None:
            log.warning("webhook.no_secret", repo=repo_full_name)
        elif not verify_signature(secret, body, signature):
            log.warning("webhook.signature_mismatch", repo=repo_full_name, event_kind=event)
            raise SignatureMismatchError("invalid webhook signature")

        if event != "push":
            log.info("webhook.ignored_event", event_kind=event, repo=repo_full_name)
            return {"status": "ignored", "event": event, "processed": 0, "total": 0, "tenant_id": None}

        if not repo_full_name:
            raise ValidationError("push payload has no repository.full_name")

        summary: dict[str, Any] = {"processed": 0, "total": 0, "tenant_id": None}
        try:
            await self._process_push(payload, repository, summary)
        except Exception:
            log.exception("webhook.processing_failed", repo=repo_full_name)
            summary["status"] = "error"
        return summary

    async def _process_push(
        self, payload: dict[str, Any], repository: dict[str, Any], summary: dict[str, Any]
    ) -> None:
        repo_full_name = repository["full_name"]
        commits = [c for c in payload.get("commits") or [] if isinstance(c, dict)]

        async with self._session_factory() as session:
            async with session.begin():
                if not await self._tenants.is_repo_allowed(session, repo_full_name):
                    log.info("webhook.repo_not_allowed", repo=repo_full_name)
                    summary["status"] = "not allowed"
                    return
                tenant_id = await self._tenants.user_by_repo(session, repo_full_name) or DEFAULT_TENANT
                context = await self._contexts.get_or_refresh(session, repository, commits)

        summary["tenant_id"] = tenant_id
        project_context = format_project_context(context, repository.get("name"))

        survivors = [c for c in commits if not is_merge_commit(c)]
        skipped = len(commits) - len(survivors)
        if skipped:
            log.info("webhook.merge_commits_skipped", repo=repo_full_name, skipped=skipped)
        summary["total"] = len(survivors)

        branch = branch_from_ref(payload.get("ref"))
        pusher = payload.get("pusher") or {}
        for raw in survivors:
            if not raw.get("id"):
                log.warning("webhook.commit_without_id", repo=repo_full_name)
                continue
            commit = format_commit({**raw, "branch": branch}, repository, pusher)
            try:
                future = await self._pipeline.submit_commit(tenant_id, commit, repository, project_context)
            except Exception as exc:
                log.warning(
                    "webhook.commit_rejected",
                    repo=repo_full_name,
                    sha=commit["sha"],
                    error=str(exc) or type(exc).__name__,
                )
                continue
            if future is not None:
                summary["processed"] += 1

        log.info(
            "webhook.push_processed",
            repo=repo_full_name,
            tenant_id=tenant_id,
            processed=summary["processed"],
            total=summary["total"],
            sender=(payload.get("sender") or {}).get("login"),
        )
