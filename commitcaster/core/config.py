"""Runtime configuration — environment variables (optionally from .env)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache

from dotenv import load_dotenv

_PREFIX = "COMMITCASTER_"

DEFAULT_TIER_QUOTAS = "free:100,pro:500,enterprise:2000"


def _env(key: str, default: str | None = None) -> str | None:
    value = os.environ.get(_PREFIX + key.upper())
    if value is None or value == "":
        return default
    return value


def _env_int(key: str, default: int) -> int:
    return int(_env(key, str(default)))  # type: ignore[arg-type]


def _env_bool(key: str, default: bool) -> bool:
    raw = _env(key)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _split_csv(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def parse_tier_quotas(raw: str | None) -> dict[str, int]:
    """Parse ``free:100,pro:500`` into ``{"free": 100, "pro": 500}``.

    Malformed pairs raise ``ValueError`` so a bad deployment fails at startup.
    """
    quotas: dict[str, int] = {}
    for pair in _split_csv(raw):
        tier, sep, limit = pair.partition(":")
        if not sep or not tier.strip():
            raise ValueError(f"invalid tier quota entry: {pair!r}")
        quotas[tier.strip()] = int(limit)
    return quotas


def database_url_from_path(database_path: str) -> str:
    """Map a filesystem path (or a full SQLAlchemy URL) to an async engine URL."""
    if "://" in database_path:
        return database_path
    if database_path == ":memory:":
        return "sqlite+aiosqlite://"
    return f"sqlite+aiosqlite:///{database_path}"


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    public_base_url: str = "http://localhost:8000"
    cors_origins: tuple[str, ...] = ("http://localhost:3000",)

    # webhook ingress
    webhook_secret: str | None = None
    allowed_repos: tuple[str, ...] = ()

    # OAuth providers
    codehost_client_id: str | None = None
    codehost_client_secret: str | None = None
    socialnet_client_id: str | None = None
    socialnet_client_secret: str | None = None
    oauth_callback_url: str | None = None
    pkce_ttl_seconds: int = 600

    # persistence
    database_path: str = "./commitcaster.db"
    token_store_dir: str = "./.tokens"

    # AI stage
    ai_api_key: str | None = None
    ai_model: str = "gemini/gemini-1.5-flash"

    # work queue
    queue_max_rpm: int = 15
    queue_max_retries: int = 3
    queue_base_retry_delay_ms: int = 2000
    queue_max_retry_delay_ms: int = 60000
    queue_processing_interval_ms: int = 1000
    queue_cleanup_interval_s: int = 3600
    queue_retention_hours: int = 24

    # tenants
    user_quota_limit: int = 100
    tier_quotas: dict[str, int] = field(default_factory=lambda: parse_tier_quotas(DEFAULT_TIER_QUOTAS))
    repo_context_ttl_hours: int = 24
    thread_replies: bool = True

    admin_api_key: str | None = None

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def database_url(self) -> str:
        return database_url_from_path(self.database_path)

    def callback_url(self, provider: str) -> str:
        """Redirect URI for *provider* (``codehost`` | ``socialnet``).

        ``oauth_callback_url`` overrides the base URL; the provider path
        segment is always appended.
        """
        base = (self.oauth_callback_url or self.public_base_url).rstrip("/")
        return f"{base}/auth/{provider}/callback"

    @property
    def webhook_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/webhook/codehost"

    def quota_for_tier(self, tier: str | None) -> int | None:
        if tier is None:
            return None
        return self.tier_quotas.get(tier)


def load_settings() -> Settings:
    """Build :class:`Settings` from the process environment."""
    load_dotenv()
    return Settings(
        environment=_env("environment", "development"),  # type: ignore[arg-type]
        public_base_url=_env("public_base_url", "http://localhost:8000"),  # type: ignore[arg-type]
        cors_origins=_split_csv(_env("cors_origins", "http://localhost:3000")),
        webhook_secret=_env("webhook_secret"),
        allowed_repos=_split_csv(_env("allowed_repos")),
        codehost_client_id=_env("codehost_client_id"),
        codehost_client_secret=_env("codehost_client_secret"),
        socialnet_client_id=_env("socialnet_client_id"),
        socialnet_client_secret=_env("socialnet_client_secret"),
        oauth_callback_url=_env("oauth_callback_url"),
        pkce_ttl_seconds=_env_int("pkce_ttl_seconds", 600),
        database_path=_env("database_path", "./commitcaster.db"),  # type: ignore[arg-type]
        token_store_dir=_env("token_store_dir", "./.tokens"),  # type: ignore[arg-type]
        ai_api_key=_env("ai_api_key"),
        ai_model=_env("ai_model", "gemini/gemini-1.5-flash"),  # type: ignore[arg-type]
        queue_max_rpm=_env_int("queue_max_rpm", 15),
        queue_max_retries=_env_int("queue_max_retries", 3),
        queue_base_retry_delay_ms=_env_int("queue_base_retry_delay_ms", 2000),
        queue_max_retry_delay_ms=_env_int("queue_max_retry_delay_ms", 60000),
        queue_processing_interval_ms=_env_int("queue_processing_interval_ms", 1000),
        queue_cleanup_interval_s=_env_int("queue_cleanup_interval_s", 3600),
        queue_retention_hours=_env_int("queue_retention_hours", 24),
        user_quota_limit=_env_int("user_quota_limit", 100),
        tier_quotas=parse_tier_quotas(_env("tier_quotas", DEFAULT_TIER_QUOTAS)),
        repo_context_ttl_hours=_env_int("repo_context_ttl_hours", 24),
        thread_replies=_env_bool("thread_replies", True),
        admin_api_key=_env("admin_api_key"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return load_settings()
