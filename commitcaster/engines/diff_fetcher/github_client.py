"""Async code-host REST client with per-call bearer tokens and error classification."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
import structlog

from commitcaster.services import CommitNotFoundError, RateLimitedError, TransportError

log = structlog.get_logger("commitcaster.engine")

GITHUB_API_URL = "https://api.github.com"

_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0  # seconds


class GitHubClient:
    """Thin async wrapper around the code-host REST API.

    The client is shared across tenants, so the bearer token is passed per
    call instead of being baked into the default headers.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        base_url: str = GITHUB_API_URL,
        retry_base_delay: float = _RETRY_BASE_DELAY,
    ) -> None:
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "commitcaster/1.0",
            },
            timeout=30.0,
        )
        self._retry_base_delay = retry_base_delay

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── public ─────────────────────────────────────────────────────────────

    async def get_commit(self, repo_full_name: str, sha: str, token: str | None = None) -> dict[str, Any]:
        """Commit detail including per-file ``patch`` hunks.

        Raises :class:`CommitNotFoundError`, :class:`RateLimitedError` or
        :class:`TransportError`.
        """
        resp = await self._request("GET", f"/repos/{repo_full_name}/commits/{sha}", token=token)
        if resp.status_code in (404, 422):
            raise CommitNotFoundError(f"commit {sha[:7]} not found in {repo_full_name}")
        self._raise_for_status(resp)
        return resp.json()

    async def get_authenticated_user(self, token: str) -> dict[str, Any]:
        resp = await self._request("GET", "/user", token=token)
        self._raise_for_status(resp)
        return resp.json()

    async def list_hooks(self, repo_full_name: str, token: str) -> list[dict[str, Any]]:
        resp = await self._request("GET", f"/repos/{repo_full_name}/hooks", token=token)
        self._raise_for_status(resp)
        return list(resp.json())

    async def create_hook(
        self,
        repo_full_name: str,
        token: str,
        *,
        url: str,
        secret: str | None,
        events: list[str] | None = None,
    ) -> dict[str, Any]:
        config: dict[str, Any] = {"url": url, "content_type": "json", "insecure_ssl": "0"}
        if secret:
            config["secret"] = secret
        body = {"name": "web", "active": True, "events": events or ["push"], "config": config}
        resp = await self._request("POST", f"/repos/{repo_full_name}/hooks", token=token, json=body)
        self._raise_for_status(resp)
        return resp.json()

    # ── internal ───────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        url: str,
        *,
        token: str | None = None,
        json: Any = None,
    ) -> httpx.Response:
        """Send with exponential backoff on 5xx and timeouts.

        A rate-limited response is returned to the caller's queue instead of
        being slept on here.
        """
        headers = {"Authorization": f"Bearer {token}"} if token else None
        last_exc: Exception | None = None
        for attempt in range(_MAX_RETRIES):
            try:
                resp = await self._client.request(method, url, headers=headers, json=json)

                if resp.status_code in (403, 429) and self._is_rate_limited(resp):
                    wait = self._get_rate_limit_wait(resp)
                    log.warning("github.rate_limit", url=url, wait_seconds=wait)
                    raise RateLimitedError(f"code host rate limit exceeded, retry after {wait}s", wait)

                if resp.status_code < 500:
                    return resp

                log.warning(
                    "github.server_error",
                    url=url,
                    status=resp.status_code,
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                )
                last_exc = TransportError(f"code host returned {resp.status_code}")
            except httpx.TransportError as exc:
                log.warning(
                    "github.transport_error",
                    url=url,
                    error=type(exc).__name__,
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                )
                last_exc = TransportError(f"code host request failed: {type(exc).__name__}")

            if attempt < _MAX_RETRIES - 1:
                await asyncio.sleep(self._retry_base_delay * (2**attempt))

        assert last_exc is not None
        raise last_exc

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        if resp.status_code >= 400:
            raise TransportError(f"code host returned {resp.status_code} for {resp.request.url.path}")

    @staticmethod
    def _is_rate_limited(response: httpx.Response) -> bool:
        """Check if a 403/429 response is due to rate limiting."""
        if response.status_code == 429:
            return True
        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining is not None:
            try:
                return int(remaining) == 0
            except (ValueError, TypeError):
                pass
        # secondary rate limits only send Retry-After
        return "Retry-After" in response.headers

    @staticmethod
    def _get_rate_limit_wait(response: httpx.Response) -> int:
        """Calculate how long to wait based on rate-limit headers."""
        retry_after = response.headers.get("Retry-After")
        if retry_after is not None:
            try:
                return max(int(retry_after), 1)
            except (ValueError, TypeError):
                pass
        reset_ts = response.headers.get("X-RateLimit-Reset")
        if reset_ts is not None:
            try:
                return max(int(reset_ts) - int(time.time()), 1)
            except (ValueError, TypeError):
                pass
        return 60
