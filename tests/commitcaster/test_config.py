"""Tests for environment-driven settings."""

import os

import pytest

from commitcaster.core.config import (
    Settings,
    database_url_from_path,
    load_settings,
    parse_tier_quotas,
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No COMMITCASTER_* variables in the environment."""
    for key in list(os.environ):
        if key.startswith("COMMITCASTER_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


class TestLoadSettings:
    def test_defaults(self, clean_env):
        settings = load_settings()
        assert settings.environment == "development"
        assert settings.is_development
        assert settings.queue_max_rpm == 15
        assert settings.queue_max_retries == 3
        assert settings.pkce_ttl_seconds == 600
        assert settings.tier_quotas == {"free": 100, "pro": 500, "enterprise": 2000}
        assert settings.thread_replies is True
        assert settings.allowed_repos == ()
        assert settings.webhook_secret is None

    def test_environment_overrides(self, clean_env):
        clean_env.setenv("COMMITCASTER_ENVIRONMENT", "production")
        clean_env.setenv("COMMITCASTER_WEBHOOK_SECRET", "s3cret")
        clean_env.setenv("COMMITCASTER_ALLOWED_REPOS", "octo/a, octo/b,,")
        clean_env.setenv("COMMITCASTER_QUEUE_MAX_RPM", "30")
        clean_env.setenv("COMMITCASTER_THREAD_REPLIES", "off")
        clean_env.setenv("COMMITCASTER_TIER_QUOTAS", "free:5")

        settings = load_settings()
        assert not settings.is_development
        assert settings.webhook_secret == "s3cret"
        assert settings.allowed_repos == ("octo/a", "octo/b")
        assert settings.queue_max_rpm == 30
        assert settings.thread_replies is False
        assert settings.quota_for_tier("free") == 5
        assert settings.quota_for_tier("pro") is None

    def test_empty_value_falls_back_to_default(self, clean_env):
        clean_env.setenv("COMMITCASTER_QUEUE_MAX_RETRIES", "")
        assert load_settings().queue_max_retries == 3


class TestTierQuotas:
    def test_parse(self):
        assert parse_tier_quotas("free:1, pro:2") == {"free": 1, "pro": 2}
        assert parse_tier_quotas("") == {}
        assert parse_tier_quotas(None) == {}

    @pytest.mark.parametrize("raw", ["free", ":10", "free:lots"])
    def test_malformed(self, raw):
        with pytest.raises(ValueError):
            parse_tier_quotas(raw)

    def test_unknown_or_missing_tier(self):
        assert Settings().quota_for_tier(None) is None
        assert Settings().quota_for_tier("platinum") is None


class TestUrls:
    def test_callback_url(self):
        settings = Settings(public_base_url="https://cc.example.com/")
        assert settings.callback_url("codehost") == "https://cc.example.com/auth/codehost/callback"

    def test_callback_override(self):
        settings = Settings(oauth_callback_url="https://tunnel.example.com")
        assert settings.callback_url("socialnet") == "https://tunnel.example.com/auth/socialnet/callback"

    def test_webhook_url(self):
        assert Settings(public_base_url="https://cc.example.com").webhook_url == "https://cc.example.com/webhook/codehost"

    @pytest.mark.parametrize(
        "path, url",
        [
            ("./cc.db", "sqlite+aiosqlite:///./cc.db"),
            (":memory:", "sqlite+aiosqlite://"),
            ("sqlite+aiosqlite:////var/cc.db", "sqlite+aiosqlite:////var/cc.db"),
        ],
    )
    def test_database_url(self, path, url):
        assert database_url_from_path(path) == url
        assert Settings(database_path=path).database_url == url
