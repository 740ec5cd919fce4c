"""Poster — publishes rendered text to the social net on behalf of a tenant."""

from __future__ import annotations

import time
from typing import Any

import httpx
import structlog

from commitcaster.services import (
    AuthFailedError,
    InvalidPostError,
    NoCredentialError,
    PermissionsInsufficientError,
    RateLimitedError,
    ReauthRequiredError,
    RefreshRejectedError,
    RefreshUnavailableError,
    TransportError,
)
from commitcaster.services.credential_vault import CredentialVault, Provider

log = structlog.get_logger("commitcaster.poster")

SOCIALNET_API_URL = "https://api.x.com/2"

PERMISSIONS_GUIDANCE = (
    "The social-net app lacks write permission. Enable 'Read and write' in the app's "
    "user authentication settings, then reconnect the account so the new scope is granted."
)

_REAUTH_ERRORS = (NoCredentialError, RefreshUnavailableError, RefreshRejectedError)


def _error_detail(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200]
    if not isinstance(data, dict):
        return str(data)[:200]
    if data.get("detail"):
        return str(data["detail"])
    errors = data.get("errors") or []
    if errors and isinstance(errors[0], dict):
        return str(errors[0].get("message") or errors[0].get("detail") or errors[0])
    return str(data.get("title") or data)[:200]


def build_post_payload(
    text: str, *, quote_post_id: str | None = None, reply_to_post_id: str | None = None
) -> dict[str, Any]:
    payload: dict[str, Any] = {"text": text}
    if reply_to_post_id:
        payload["reply"] = {"in_reply_to_tweet_id": reply_to_post_id}
    if quote_post_id:
        payload["quote_tweet_id"] = quote_post_id
    return payload


class Poster:
    def __init__(
        self,
        vault: CredentialVault,
        http_client: httpx.AsyncClient | None = None,
        *,
        base_url: str = SOCIALNET_API_URL,
    ) -> None:
        self._vault = vault
        self._client = http_client or httpx.AsyncClient(base_url=base_url, timeout=30.0)

    async def close(self) -> None:
        await self._client.aclose()

    async def post(
        self,
        text: str,
        tenant_id: str,
        *,
        quote_post_id: str | None = None,
        reply_to_post_id: str | None = None,
    ) -> str:
        """Publish *text* and return the external post id.

        An expired token is refreshed first. A 401 forces one refresh and one
        retry. Missing or unusable refresh tokens surface as
        :class:`ReauthRequiredError`.
        """
        payload = build_post_payload(text, quote_post_id=quote_post_id, reply_to_post_id=reply_to_post_id)

        try:
            token = await self._vault.get_valid_access_token(Provider.SOCIALNET, tenant_id)
        except _REAUTH_ERRORS as exc:
            log.warning("poster.reauth_required", tenant_id=tenant_id, reason=type(exc).__name__)
            raise ReauthRequiredError(f"social-net credential for {tenant_id} needs re-authorization: {exc}") from exc

        resp = await self._send(payload, token)
        if resp.status_code == 401:
            log.info("poster.token_rejected", tenant_id=tenant_id)
            try:
                token = await self._vault.refresh_token(Provider.SOCIALNET, tenant_id, force=True)
            except _REAUTH_ERRORS as exc:
                raise ReauthRequiredError(
                    f"social-net credential for {tenant_id} needs re-authorization: {exc}"
                ) from exc
            resp = await self._send(payload, token)

        post_id = self._parse(resp)
        log.info(
            "poster.posted",
            tenant_id=tenant_id,
            post_id=post_id,
            quoted=quote_post_id is not None,
            replied=reply_to_post_id is not None,
            chars=len(text),
        )
        return post_id

    async def _send(self, payload: dict[str, Any], token: str) -> httpx.Response:
        try:
            return await self._client.post(
                "/tweets",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TransportError as exc:
            raise TransportError(f"social-net request failed: {type(exc).__name__}") from exc

    @staticmethod
    def _parse(resp: httpx.Response) -> str:
        status = resp.status_code
        if status in (200, 201):
            data = resp.json().get("data") or {}
            if not data.get("id"):
                raise InvalidPostError("social net accepted the post but returned no id")
            return str(data["id"])

        detail = _error_detail(resp)
        if status == 401:
            raise AuthFailedError(f"social net rejected the access token: {detail}")
        if status == 403:
            lowered = detail.lower()
            if "oauth" in lowered or "permissions" in lowered:
                raise PermissionsInsufficientError(f"{detail}. {PERMISSIONS_GUIDANCE}")
            raise AuthFailedError(f"social net refused the request: {detail}")
        if status == 429:
            reset = resp.headers.get("x-rate-limit-reset")
            retry_after = max(int(reset) - time.time(), 1.0) if reset and reset.isdigit() else None
            raise RateLimitedError("rate limit exceeded", retry_after)
        if status >= 500:
            raise TransportError(f"social net returned {status}: {detail}")
        raise InvalidPostError(f"social net refused the post ({status}): {detail}")
