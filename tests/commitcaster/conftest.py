"""Shared fixtures for commitcaster tests.

Every test gets a fresh SQLite file under pytest's ``tmp_path`` with the full
schema, so tests never share state and need no external database.
"""

from __future__ import annotations

import json
from dataclasses import replace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker

from commitcaster.agent.llm_client import LLMClient, LLMResponse
from commitcaster.api.deps import build_runtime
from commitcaster.core.config import Settings
from commitcaster.core.database import create_engine, create_schema
from commitcaster.engines.diff_fetcher.github_client import GitHubClient
from commitcaster.services.webhook_service import compute_signature

WEBHOOK_SECRET = "test-webhook-secret"
REPO = {
    "name": "widgets",
    "full_name": "octo/widgets",
    "html_url": "https://github.com/octo/widgets",
    "description": "Widget factory",
    "default_branch": "main",
    "private": False,
}


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'commitcaster.db'}")
    await create_schema(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    """A session inside an open transaction, rolled back after the test."""
    async with session_factory() as sess:
        async with sess.begin():
            yield sess
            await sess.rollback()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        environment="test",
        database_path=str(tmp_path / "commitcaster.db"),
        token_store_dir=str(tmp_path / "tokens"),
        webhook_secret=WEBHOOK_SECRET,
        socialnet_client_id="sn-client",
        codehost_client_id="ch-client",
        codehost_client_secret="ch-secret",
        admin_api_key="admin-key",
        queue_base_retry_delay_ms=1,
        queue_max_retry_delay_ms=5,
    )


@pytest.fixture
def make_settings(settings):
    def _make(**overrides: Any) -> Settings:
        return replace(settings, **overrides)

    return _make


# ── fakes ─────────────────────────────────────────────────────────────────


@pytest.fixture
def make_llm():
    """LLMClient stand-in; ``configured`` toggles whether the AI stages run."""

    def _make(content: str = "update:\n- fixed null check", *, configured: bool = True, side_effect=None):
        llm = MagicMock(spec=LLMClient)
        llm.configured = configured
        llm.create = AsyncMock(return_value=LLMResponse(content=content, latency_ms=5), side_effect=side_effect)
        return llm

    return _make


class SocialNetStub:
    """MockTransport handler for the post endpoint; records every request."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.requests: list[httpx.Request] = []
        self._responses = list(responses)
        self._next_id = 1000

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self._responses:
            return self._responses.pop(0)
        self._next_id += 1
        return httpx.Response(201, json={"data": {"id": str(self._next_id), "text": "ok"}})

    @property
    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self), base_url="https://api.x.com/2")


@pytest.fixture
def socialnet():
    return SocialNetStub()


@pytest.fixture
def make_socialnet():
    """``make_socialnet(*responses)`` answers with *responses* first, then 201s."""
    return SocialNetStub


# ── payload helpers ───────────────────────────────────────────────────────


def _commit(sha: str = "abc1234", message: str = "fix: null check", **extra: Any) -> dict[str, Any]:
    full_sha = sha.ljust(40, "0")
    commit = {
        "id": full_sha,
        "message": message,
        "timestamp": "2026-01-15T12:00:00Z",
        "url": f"https://github.com/octo/widgets/commit/{full_sha}",
        "author": {"name": "Octo Cat", "email": "octo@example.com", "username": "octocat"},
        "added": [],
        "modified": ["src/app.py"],
        "removed": [],
    }
    commit.update(extra)
    return commit


def _push(commits: list[dict[str, Any]] | None = None, repository: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "ref": "refs/heads/main",
        "repository": repository or dict(REPO),
        "pusher": {"name": "octocat"},
        "sender": {"login": "octocat"},
        "commits": [_commit()] if commits is None else commits,
    }


def _encode(payload: dict[str, Any], secret: str = WEBHOOK_SECRET) -> tuple[bytes, str]:
    body = json.dumps(payload).encode()
    return body, compute_signature(secret, body)


@pytest.fixture
def make_commit():
    return _commit


@pytest.fixture
def make_push():
    return _push


@pytest.fixture
def encode_push():
    """``(body, signature)`` for a push payload, signed with the global secret by default."""
    return _encode


# ── runtime ───────────────────────────────────────────────────────────────


def _not_found(request: httpx.Request) -> httpx.Response:
    return httpx.Response(404, json={"message": "Not Found"})


@pytest_asyncio.fixture
async def make_runtime(session_factory, settings, make_llm, socialnet):
    """Build the full object graph on mock transports; the pipeline is registered.

    The social-net post endpoint is the ``socialnet`` fixture, so tests can
    inspect what was posted.
    """
    built = []

    def _make(*, settings_: Settings | None = None, llm=None, github_handler=None, oauth_handler=None):
        github = GitHubClient(
            httpx.AsyncClient(
                transport=httpx.MockTransport(github_handler or _not_found), base_url="https://api.github.com"
            ),
            retry_base_delay=0,
        )
        runtime = build_runtime(
            settings_ or settings,
            session_factory,
            github_client=github,
            poster_http=socialnet.client(),
            oauth_http=httpx.AsyncClient(transport=httpx.MockTransport(oauth_handler or _not_found)),
            llm=llm or make_llm(),
        )
        runtime.pipeline.register()
        built.append(runtime)
        return runtime

    yield _make
    for runtime in built:
        await runtime.queue.close()
