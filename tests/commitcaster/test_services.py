"""Tests for TenantService, UsageService, RepoContextService and StatsService."""

from __future__ import annotations

from datetime import timedelta

import pytest

from commitcaster.core.database import utcnow
from commitcaster.dao.api_usage_dao import ApiUsageDAO
from commitcaster.dao.posted_commit_dao import PostedCommitDAO
from commitcaster.dao.repo_context_dao import RepoContextDAO
from commitcaster.dao.user_dao import UserDAO
from commitcaster.dao.user_repo_dao import UserRepoDAO
from commitcaster.services import NotFoundError, QuotaExceededError, ValidationError
from commitcaster.services.repo_context_service import (
    RepoContextService,
    format_project_context,
    generate_context_from_webhook,
)
from commitcaster.services.tenant_service import (
    TenantService,
    codehost_subject,
    codehost_tenant_id,
    validate_repo_name,
)
from commitcaster.services.usage_service import UsageService, hour_bucket

TENANT = "codehost:42"
REPOSITORY = {"name": "widgets", "full_name": "octo/widgets", "description": "Widget factory"}


@pytest.fixture
def tenants(settings):
    return TenantService(UserDAO(), UserRepoDAO(), settings)


@pytest.fixture
def make_usage():
    def _make(settings_):
        return UsageService(ApiUsageDAO(), UserDAO(), settings_)

    return _make


# ── tenant ids ────────────────────────────────────────────────────────────


class TestTenantIds:
    def test_codehost_round_trip(self):
        assert codehost_tenant_id(42) == TENANT
        assert codehost_subject(TENANT) == "42"

    @pytest.mark.parametrize("tenant_id", ["default", "socialnet:7", "codehost:", ""])
    def test_non_codehost_subject(self, tenant_id):
        assert codehost_subject(tenant_id) is None

    @pytest.mark.parametrize("name", ["octo/widgets", " octo/widgets ", "a.b/c-d_e"])
    def test_valid_repo_names(self, name):
        assert validate_repo_name(name) == name.strip()

    @pytest.mark.parametrize("name", ["", "widgets", "octo/widgets/extra", "octo/wid gets", None])
    def test_invalid_repo_names(self, name):
        with pytest.raises(ValidationError):
            validate_repo_name(name)


# ── tenants and enrollments ───────────────────────────────────────────────


class TestTenantService:
    @pytest.mark.asyncio
    async def test_ensure_tenant_is_idempotent(self, session, tenants):
        first = await tenants.ensure_tenant(session, TENANT, github_username="octocat", email="o@example.com")
        second = await tenants.ensure_tenant(session, TENANT, display_name="Octo Cat")

        assert first.id == second.id
        assert second.github_username == "octocat"
        assert second.email == "o@example.com"
        assert second.display_name == "Octo Cat"
        assert second.tier == "free"
        assert len(await tenants.list_tenants(session)) == 1

    @pytest.mark.asyncio
    async def test_get_missing_tenant(self, session, tenants):
        with pytest.raises(NotFoundError):
            await tenants.get_tenant(session, "codehost:404")
        assert await tenants.find_tenant(session, "codehost:404") is None

    @pytest.mark.asyncio
    async def test_set_tier(self, session, tenants):
        await tenants.ensure_tenant(session, TENANT)
        user = await tenants.set_tier(session, TENANT, "pro", api_quota_limit=250)
        assert (user.tier, user.api_quota_limit) == ("pro", 250)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tier, limit", [("platinum", None), ("pro", -1)])
    async def test_set_tier_rejects_bad_input(self, session, tenants, tier, limit):
        await tenants.ensure_tenant(session, TENANT)
        with pytest.raises(ValidationError):
            await tenants.set_tier(session, TENANT, tier, api_quota_limit=limit)

    @pytest.mark.asyncio
    async def test_enroll_requires_tenant(self, session, tenants):
        with pytest.raises(NotFoundError):
            await tenants.enroll_repo(session, TENANT, "octo/widgets")

    @pytest.mark.asyncio
    async def test_enroll_and_list(self, session, tenants):
        await tenants.ensure_tenant(session, TENANT)
        await tenants.enroll_repo(session, TENANT, "octo/zeta")
        row = await tenants.enroll_repo(session, TENANT, "octo/alpha", webhook_secret="s1")

        assert row.is_active and row.webhook_secret == "s1"
        assert [r.repo_full_name for r in await tenants.list_repos(session, TENANT)] == ["octo/alpha", "octo/zeta"]

    @pytest.mark.asyncio
    async def test_reenroll_reactivates_and_keeps_secret(self, session, tenants):
        await tenants.ensure_tenant(session, TENANT)
        await tenants.enroll_repo(session, TENANT, "octo/widgets", webhook_secret="s1")
        await tenants.set_repo_enabled(session, TENANT, "octo/widgets", False)
        assert not await tenants.repo_is_enabled(session, "octo/widgets")

        row = await tenants.enroll_repo(session, TENANT, "octo/widgets")
        assert row.is_active
        assert row.webhook_secret == "s1"

    @pytest.mark.asyncio
    async def test_missing_enrollment(self, session, tenants):
        await tenants.ensure_tenant(session, TENANT)
        with pytest.raises(NotFoundError):
            await tenants.set_repo_enabled(session, TENANT, "octo/widgets", True)

    @pytest.mark.asyncio
    async def test_routing_prefers_earliest_active_enrollment(self, session, tenants):
        for tenant_id in ("codehost:1", "codehost:2"):
            await tenants.ensure_tenant(session, tenant_id)
            await tenants.enroll_repo(session, tenant_id, "octo/widgets")
        assert await tenants.user_by_repo(session, "octo/widgets") == "codehost:1"

        await tenants.set_repo_enabled(session, "codehost:1", "octo/widgets", False)
        assert await tenants.user_by_repo(session, "octo/widgets") == "codehost:2"
        assert await tenants.user_by_repo(session, "octo/other") is None

    @pytest.mark.asyncio
    async def test_allow_list(self, session, make_settings):
        tenants = TenantService(UserDAO(), UserRepoDAO(), make_settings(allowed_repos=("octo/widgets",)))
        assert await tenants.is_repo_allowed(session, "octo/widgets")
        assert not await tenants.is_repo_allowed(session, "octo/other")

    @pytest.mark.asyncio
    async def test_webhook_secret_selection(self, session, tenants, settings):
        await tenants.ensure_tenant(session, TENANT)
        await tenants.enroll_repo(session, TENANT, "octo/plain")
        await tenants.enroll_repo(session, TENANT, "octo/secret", webhook_secret="repo-secret")
        await tenants.set_repo_enabled(session, TENANT, "octo/secret", False)

        assert await tenants.webhook_secret_for(session, "octo/secret") == "repo-secret"
        assert await tenants.webhook_secret_for(session, "octo/plain") == settings.webhook_secret
        assert await tenants.webhook_secret_for(session, None) == settings.webhook_secret


# ── usage and quota ───────────────────────────────────────────────────────


class TestUsageService:
    def test_hour_bucket(self):
        now = utcnow().replace(minute=37, second=12)
        start, end = hour_bucket(now)
        assert (start.minute, start.second, start.microsecond) == (0, 0, 0)
        assert end - start == timedelta(hours=1)
        assert start <= now < end

    @pytest.mark.asyncio
    async def test_limit_precedence(self, session, tenants, make_usage, make_settings):
        usage = make_usage(make_settings(user_quota_limit=7, tier_quotas={"pro": 500}))
        assert await usage.quota_limit(session, "codehost:unknown") == 7

        await tenants.ensure_tenant(session, TENANT)
        await tenants.set_tier(session, TENANT, "free", api_quota_limit=3)
        assert await usage.quota_limit(session, TENANT) == 3

        await tenants.set_tier(session, TENANT, "pro")
        assert await usage.quota_limit(session, TENANT) == 500

    @pytest.mark.asyncio
    async def test_track_and_summary(self, session, make_usage, make_settings):
        usage = make_usage(make_settings(user_quota_limit=2, tier_quotas={}))
        await usage.track(session, TENANT)
        await usage.track(session, TENANT, endpoint="other")

        assert await usage.used(session, TENANT) == 1
        assert await usage.summary(session, TENANT) == {"limit": 2, "used": 1, "remaining": 1}
        assert not await usage.is_over_quota(session, TENANT)

    @pytest.mark.asyncio
    async def test_check_quota_raises_when_used_up(self, session, make_usage, make_settings):
        usage = make_usage(make_settings(user_quota_limit=2, tier_quotas={}))
        await usage.check_quota(session, TENANT)
        await usage.track(session, TENANT)
        await usage.track(session, TENANT)

        with pytest.raises(QuotaExceededError) as exc_info:
            await usage.check_quota(session, TENANT)
        assert exc_info.value.limit == 2
        assert await usage.remaining(session, TENANT) == 0

    @pytest.mark.asyncio
    async def test_previous_hour_does_not_count(self, session, make_usage, make_settings):
        usage = make_usage(make_settings(user_quota_limit=1, tier_quotas={}))
        start, end = hour_bucket(utcnow() - timedelta(hours=1))
        await ApiUsageDAO().increment(session, TENANT, "ai", start, end)
        assert await usage.used(session, TENANT) == 0


# ── repository context ────────────────────────────────────────────────────


class TestRepoContext:
    def test_languages_from_touched_files(self):
        commits = [
            {"added": ["web/App.tsx", "README.md"], "modified": ["api/main.go"]},
            {"removed": ["old.py"], "modified": ["web/index.ts"]},
        ]
        context = generate_context_from_webhook(REPOSITORY, commits)
        assert context["languages"] == ["TypeScript", "Go", "Python"]
        assert context["source"] == "webhook"

    def test_languages_capped(self):
        files = ["a.py", "b.go", "c.rs", "d.rb", "e.php", "f.java"]
        context = generate_context_from_webhook(REPOSITORY, [{"added": files}])
        assert context["languages"] == ["Python", "Go", "Rust", "Ruby", "PHP"]

    def test_missing_description(self):
        context = generate_context_from_webhook({"name": "w", "full_name": "o/w"})
        assert context["description"] == "No description"

    def test_format(self):
        block = format_project_context(
            {"repo_name": "widgets", "languages": ["Python"], "description": "Widget factory"}
        )
        assert "=== PROJECT CONTEXT ===" in block
        assert "Project: widgets" in block
        assert "Tech Stack: Python" in block
        assert "Project Description: Widget factory" in block

    def test_format_prefers_readme_summary(self):
        block = format_project_context({"description": "short", "readme": {"summary": "long form"}}, "widgets")
        assert "Project: widgets" in block
        assert "Project Description: long form" in block
        assert "short" not in block

    def test_format_empty(self):
        assert format_project_context(None) == ""
        assert format_project_context({}) == ""

    @pytest.mark.asyncio
    async def test_cached_within_ttl(self, session):
        service = RepoContextService(RepoContextDAO(), ttl_hours=24)
        await service.get_or_refresh(session, REPOSITORY, [{"added": ["a.py"]}])
        again = await service.get_or_refresh(session, REPOSITORY, [{"added": ["b.go"]}])
        assert again["languages"] == ["Python"]

    @pytest.mark.asyncio
    async def test_stale_context_regenerated_and_merged(self, session):
        dao = RepoContextDAO()
        service = RepoContextService(dao, ttl_hours=24)
        await service.get_or_refresh(session, REPOSITORY, [{"added": ["a.py"]}])

        row = await dao.get_for_repo(session, "octo/widgets")
        await dao.update_fields(session, row, last_updated=utcnow() - timedelta(hours=25))

        refreshed = await service.get_or_refresh(session, REPOSITORY, [{"added": ["b.go"]}])
        assert refreshed["languages"] == ["Go", "Python"]
        session.expire_all()
        stored = await service.get(session, "octo/widgets")
        assert stored["languages"] == ["Go", "Python"]
        assert stored["last_updated"] > utcnow() - timedelta(minutes=1)

    @pytest.mark.asyncio
    async def test_get_unknown(self, session):
        assert await RepoContextService(RepoContextDAO()).get(session, "octo/none") is None


# ── stats ─────────────────────────────────────────────────────────────────


class TestStatsService:
    @pytest.mark.asyncio
    async def test_aggregates(self, make_runtime):
        runtime = make_runtime()
        dao = PostedCommitDAO()
        async with runtime.session_factory() as session:
            async with session.begin():
                await runtime.tenant_service.ensure_tenant(session, TENANT)
                await dao.record(session, user_id=TENANT, repo_name="octo/a", commit_sha="s1", tweet_id="1")
                await dao.record(session, user_id=TENANT, repo_name="octo/a", commit_sha="s2", tweet_id="2")
                await dao.record(session, user_id=TENANT, repo_name="octo/b", commit_sha="s3", tweet_id="3")

        async with runtime.session_factory() as session:
            stats = await runtime.stats_service.get_stats(session)

        assert stats["posts_total"] == 3
        assert stats["posts_last_24h"] == 3
        assert stats["posts_by_repo"] == {"octo/a": 2, "octo/b": 1}
        assert stats["tenants"] == 1
        assert stats["stored_queue_items"] == {}
        assert stats["queue"]["current_queue_length"] == 0
        assert stats["queue"]["max_requests_per_minute"] == 15
