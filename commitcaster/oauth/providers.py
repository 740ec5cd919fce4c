"""OAuth provider clients — code-host (classical code grant) and social-net (PKCE)."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import urlencode

import httpx
import structlog

from commitcaster.services import AuthenticationError, RefreshRejectedError, TransportError

log = structlog.get_logger("commitcaster.oauth")

CODEHOST_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
CODEHOST_TOKEN_URL = "https://github.com/login/oauth/access_token"
CODEHOST_SCOPES = "read:user repo admin:repo_hook"

SOCIALNET_AUTHORIZE_URL = "https://twitter.com/i/oauth2/authorize"
SOCIALNET_TOKEN_URL = "https://api.x.com/2/oauth2/token"
SOCIALNET_SCOPES = "tweet.read tweet.write users.read offline.access"
SOCIALNET_DEFAULT_EXPIRES_IN = 7200

_HTTP_TIMEOUT = 30.0


@dataclass
class TokenGrant:
    """Normalized token endpoint response."""

    access_token: str
    refresh_token: str | None = None
    expires_at: float | None = None
    scope: str | None = None
    token_type: str | None = None


class OAuthProvider(Protocol):
    """What the credential vault needs from a provider."""

    def authorize_url(self, state: str, **params: str) -> str: ...

    async def exchange(self, code: str, **params: str) -> TokenGrant: ...

    async def refresh(self, refresh_token: str) -> TokenGrant: ...


def _error_text(data: dict[str, Any]) -> str:
    error = data.get("error") or "oauth_error"
    description = data.get("error_description") or data.get("message") or ""
    return f"{error}: {description}" if description else str(error)


class _BaseOAuth:
    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self._client = http_client or httpx.AsyncClient(timeout=_HTTP_TIMEOUT)

    async def close(self) -> None:
        await self._client.aclose()

    async def _post(self, url: str, **kwargs: Any) -> tuple[int, dict[str, Any]]:
        try:
            resp = await self._client.post(url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"token endpoint unreachable: {exc}") from exc
        if resp.status_code >= 500:
            raise TransportError(f"token endpoint returned {resp.status_code}")
        try:
            data = resp.json()
        except ValueError:
            data = {"error": "invalid_response", "error_description": resp.text[:200]}
        if not isinstance(data, dict):
            data = {"error": "invalid_response"}
        return resp.status_code, data


class CodeHostOAuth(_BaseOAuth):
    """Classical authorization-code grant against the code host."""

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        redirect_uri: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(http_client)
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def authorize_url(self, state: str, **params: str) -> str:
        query = {
            "client_id": self.client_id or "",
            "redirect_uri": self.redirect_uri,
            "scope": CODEHOST_SCOPES,
            "state": state,
            **params,
        }
        return f"{CODEHOST_AUTHORIZE_URL}?{urlencode(query)}"

    async def exchange(self, code: str, **params: str) -> TokenGrant:
        status, data = await self._post(
            CODEHOST_TOKEN_URL,
            json={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": self.redirect_uri,
            },
            headers={"Accept": "application/json"},
        )
        if status >= 400 or data.get("error") or not data.get("access_token"):
            log.warning("oauth.codehost.exchange_failed", status=status, error=data.get("error"))
            raise AuthenticationError(_error_text(data))
        return self._grant(data, previous_refresh=None)

    async def refresh(self, refresh_token: str) -> TokenGrant:
        status, data = await self._post(
            CODEHOST_TOKEN_URL,
            json={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
            headers={"Accept": "application/json"},
        )
        if status >= 400 or data.get("error") or not data.get("access_token"):
            log.warning("oauth.codehost.refresh_failed", status=status, error=data.get("error"))
            raise RefreshRejectedError(_error_text(data))
        return self._grant(data, previous_refresh=refresh_token)

    @staticmethod
    def _grant(data: dict[str, Any], previous_refresh: str | None) -> TokenGrant:
        expires_in = data.get("expires_in")
        return TokenGrant(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or previous_refresh,
            expires_at=time.time() + float(expires_in) if expires_in else None,
            scope=data.get("scope"),
            token_type=data.get("token_type"),
        )


class SocialNetOAuth(_BaseOAuth):
    """OAuth 2.0 + PKCE against the social network.

    Public client when no secret is configured; confidential (HTTP Basic)
    otherwise. ``client_id`` is always sent in the form body.
    """

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        redirect_uri: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(http_client)
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri

    @property
    def configured(self) -> bool:
        return bool(self.client_id)

    def authorize_url(self, state: str, **params: str) -> str:
        query = {
            "response_type": "code",
            "client_id": self.client_id or "",
            "redirect_uri": self.redirect_uri,
            "scope": SOCIALNET_SCOPES,
            "state": state,
            "code_challenge_method": "S256",
            **params,
        }
        return f"{SOCIALNET_AUTHORIZE_URL}?{urlencode(query)}"

    async def exchange(self, code: str, **params: str) -> TokenGrant:
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "code_verifier": params["code_verifier"],
        }
        status, data = await self._token_request(form)
        if status >= 400 or data.get("error") or not data.get("access_token"):
            log.warning("oauth.socialnet.exchange_failed", status=status, error=data.get("error"))
            raise AuthenticationError(_error_text(data))
        return self._grant(data, previous_refresh=None)

    async def refresh(self, refresh_token: str) -> TokenGrant:
        form = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        status, data = await self._token_request(form)
        if status >= 400 or data.get("error") or not data.get("access_token"):
            log.warning("oauth.socialnet.refresh_failed", status=status, error=data.get("error"))
            raise RefreshRejectedError(_error_text(data))
        return self._grant(data, previous_refresh=refresh_token)

    async def _token_request(self, form: dict[str, str]) -> tuple[int, dict[str, Any]]:
        body = {**form, "client_id": self.client_id or ""}
        auth = None
        if self.client_secret:
            auth = httpx.BasicAuth(self.client_id or "", self.client_secret)
        return await self._post(
            SOCIALNET_TOKEN_URL,
            data=body,
            auth=auth,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

    @staticmethod
    def _grant(data: dict[str, Any], previous_refresh: str | None) -> TokenGrant:
        expires_in = data.get("expires_in") or SOCIALNET_DEFAULT_EXPIRES_IN
        return TokenGrant(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or previous_refresh,
            expires_at=time.time() + float(expires_in),
            scope=data.get("scope"),
            token_type=data.get("token_type"),
        )
