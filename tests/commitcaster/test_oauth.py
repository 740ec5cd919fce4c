"""Tests for PKCE helpers, the pending-authorization store, provider clients and the orchestrator."""

from __future__ import annotations

import base64
import json
import time
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from commitcaster.dao.user_dao import UserDAO
from commitcaster.dao.user_repo_dao import UserRepoDAO
from commitcaster.engines.diff_fetcher.github_client import GitHubClient
from commitcaster.oauth.orchestrator import OAuthOrchestrator
from commitcaster.oauth.pkce import (
    UNRESERVED_CHARS,
    base64url_encode,
    generate_code_challenge,
    generate_code_verifier,
    generate_pkce_pair,
    generate_state,
    is_valid_code_verifier,
)
from commitcaster.oauth.providers import (
    CODEHOST_TOKEN_URL,
    SOCIALNET_TOKEN_URL,
    CodeHostOAuth,
    SocialNetOAuth,
)
from commitcaster.oauth.state_store import PendingAuthStore
from commitcaster.services import (
    AuthenticationError,
    RefreshRejectedError,
    TransportError,
    ValidationError,
)
from commitcaster.services.credential_vault import CredentialVault, Provider
from commitcaster.services.tenant_service import TenantService

REDIRECT = "http://localhost:8000/auth/socialnet/callback"


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


class TokenEndpoint:
    """MockTransport handler answering token requests with canned responses."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.requests: list[httpx.Request] = []
        self._responses = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responses.pop(0)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def form(self, index: int = 0) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(self.requests[index].content.decode()).items()}


# ── PKCE ──────────────────────────────────────────────────────────────────


class TestPKCE:
    def test_rfc7636_vector(self):
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert generate_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    @pytest.mark.parametrize("length", [43, 64, 128])
    def test_verifier_length_and_alphabet(self, length):
        verifier = generate_code_verifier(length)
        assert len(verifier) == length
        assert set(verifier) <= set(UNRESERVED_CHARS)
        assert is_valid_code_verifier(verifier)

    @pytest.mark.parametrize("length", [42, 129])
    def test_verifier_length_out_of_range(self, length):
        with pytest.raises(ValueError):
            generate_code_verifier(length)

    def test_pair_challenge_matches_verifier(self):
        pair = generate_pkce_pair()
        assert pair.method == "S256"
        assert pair.challenge == generate_code_challenge(pair.verifier)
        assert "=" not in pair.challenge

    def test_base64url_has_no_padding(self):
        assert base64url_encode(b"\xff\xfe") == "__4"
        assert base64url_encode(b"\xff\xfe") == base64.urlsafe_b64encode(b"\xff\xfe").decode().rstrip("=")

    def test_invalid_verifiers(self):
        assert not is_valid_code_verifier(None)
        assert not is_valid_code_verifier("short")
        assert not is_valid_code_verifier("a" * 42 + "!")

    def test_states_are_unique(self):
        assert generate_state() != generate_state()


# ── pending authorizations ────────────────────────────────────────────────


class TestPendingAuthStore:
    def test_pop_once(self):
        store = PendingAuthStore()
        store.put("s1", "socialnet", code_verifier="v", tenant_id="t1")
        entry = store.pop("s1", "socialnet")
        assert entry.code_verifier == "v"
        assert entry.tenant_id == "t1"
        assert store.pop("s1", "socialnet") is None

    def test_provider_mismatch_consumes_state(self):
        store = PendingAuthStore()
        store.put("s1", "codehost")
        assert store.pop("s1", "socialnet") is None
        assert store.pop("s1", "codehost") is None

    def test_missing_state(self):
        assert PendingAuthStore().pop(None, "codehost") is None
        assert PendingAuthStore().pop("unknown", "codehost") is None

    def test_expiry_and_sweep(self):
        now = [0.0]
        store = PendingAuthStore(ttl_seconds=600, clock=lambda: now[0])
        store.put("old", "codehost")
        now[0] = 500.0
        store.put("young", "codehost")

        now[0] = 601.0
        assert store.pop("old", "codehost") is None

        store.put("old2", "codehost")
        now[0] = 1200.0
        assert store.sweep() == 1
        assert len(store) == 1
        assert store.pop("old2", "codehost") is not None


# ── provider clients ──────────────────────────────────────────────────────


class TestCodeHostOAuth:
    def test_configured_needs_id_and_secret(self):
        assert CodeHostOAuth("id", "secret", "http://cb").configured
        assert not CodeHostOAuth("id", None, "http://cb").configured

    def test_authorize_url(self):
        url = CodeHostOAuth("cid", "sec", "http://cb").authorize_url("state-1")
        query = _query(url)
        assert url.startswith("https://github.com/login/oauth/authorize?")
        assert query["client_id"] == "cid"
        assert query["state"] == "state-1"
        assert query["redirect_uri"] == "http://cb"
        assert "admin:repo_hook" in query["scope"]

    @pytest.mark.asyncio
    async def test_exchange_json_post(self):
        endpoint = TokenEndpoint(
            httpx.Response(200, json={"access_token": "gho_x", "scope": "repo", "token_type": "bearer"})
        )
        client = CodeHostOAuth("cid", "sec", "http://cb", http_client=endpoint.client())
        grant = await client.exchange("code-1")

        assert grant.access_token == "gho_x"
        assert grant.expires_at is None
        request = endpoint.requests[0]
        assert str(request.url) == CODEHOST_TOKEN_URL
        assert request.headers["accept"] == "application/json"
        assert json.loads(request.content) == {
            "client_id": "cid",
            "client_secret": "sec",
            "code": "code-1",
            "redirect_uri": "http://cb",
        }

    @pytest.mark.asyncio
    async def test_exchange_error_field(self):
        endpoint = TokenEndpoint(
            httpx.Response(200, json={"error": "bad_verification_code", "error_description": "expired"})
        )
        client = CodeHostOAuth("cid", "sec", "http://cb", http_client=endpoint.client())
        with pytest.raises(AuthenticationError, match="bad_verification_code: expired"):
            await client.exchange("code-1")

    @pytest.mark.asyncio
    async def test_refresh_keeps_previous_refresh_token(self):
        endpoint = TokenEndpoint(httpx.Response(200, json={"access_token": "gho_new", "expires_in": 28800}))
        client = CodeHostOAuth("cid", "sec", "http://cb", http_client=endpoint.client())
        before = time.time()
        grant = await client.refresh("ghr_old")

        assert grant.refresh_token == "ghr_old"
        assert grant.expires_at >= before + 28800
        assert json.loads(endpoint.requests[0].content)["grant_type"] == "refresh_token"

    @pytest.mark.asyncio
    async def test_refresh_rejected(self):
        endpoint = TokenEndpoint(httpx.Response(400, json={"error": "invalid_grant"}))
        client = CodeHostOAuth("cid", "sec", "http://cb", http_client=endpoint.client())
        with pytest.raises(RefreshRejectedError):
            await client.refresh("ghr_old")

    @pytest.mark.asyncio
    async def test_server_error_is_transport(self):
        endpoint = TokenEndpoint(httpx.Response(503, text="unavailable"))
        client = CodeHostOAuth("cid", "sec", "http://cb", http_client=endpoint.client())
        with pytest.raises(TransportError):
            await client.exchange("code-1")


class TestSocialNetOAuth:
    def test_configured_needs_only_id(self):
        assert SocialNetOAuth("id", None, REDIRECT).configured
        assert not SocialNetOAuth(None, None, REDIRECT).configured

    def test_authorize_url_carries_challenge(self):
        url = SocialNetOAuth("cid", None, REDIRECT).authorize_url("st", code_challenge="chal")
        query = _query(url)
        assert query["response_type"] == "code"
        assert query["code_challenge"] == "chal"
        assert query["code_challenge_method"] == "S256"
        assert "offline.access" in query["scope"]

    @pytest.mark.asyncio
    async def test_public_client_exchange(self):
        endpoint = TokenEndpoint(
            httpx.Response(200, json={"access_token": "sn-acc", "refresh_token": "sn-ref", "token_type": "bearer"})
        )
        client = SocialNetOAuth("cid", None, REDIRECT, http_client=endpoint.client())
        before = time.time()
        grant = await client.exchange("code-1", code_verifier="v" * 43)

        request = endpoint.requests[0]
        assert str(request.url) == SOCIALNET_TOKEN_URL
        assert "authorization" not in request.headers
        assert endpoint.form() == {
            "grant_type": "authorization_code",
            "code": "code-1",
            "redirect_uri": REDIRECT,
            "code_verifier": "v" * 43,
            "client_id": "cid",
        }
        assert grant.refresh_token == "sn-ref"
        # no expires_in in the response: two-hour default
        assert before + 7200 <= grant.expires_at <= time.time() + 7200

    @pytest.mark.asyncio
    async def test_confidential_client_uses_basic_auth(self):
        endpoint = TokenEndpoint(httpx.Response(200, json={"access_token": "sn-acc", "expires_in": 60}))
        client = SocialNetOAuth("cid", "csecret", REDIRECT, http_client=endpoint.client())
        await client.refresh("sn-ref")

        expected = "Basic " + base64.b64encode(b"cid:csecret").decode()
        assert endpoint.requests[0].headers["authorization"] == expected
        assert endpoint.form()["client_id"] == "cid"
        assert endpoint.form()["grant_type"] == "refresh_token"

    @pytest.mark.asyncio
    async def test_refresh_rejected(self):
        endpoint = TokenEndpoint(
            httpx.Response(400, json={"error": "invalid_request", "error_description": "token revoked"})
        )
        client = SocialNetOAuth("cid", None, REDIRECT, http_client=endpoint.client())
        with pytest.raises(RefreshRejectedError, match="token revoked"):
            await client.refresh("sn-ref")


# ── orchestrator ──────────────────────────────────────────────────────────


class CodeHostAPI:
    """MockTransport handler for /user and the hooks endpoints."""

    def __init__(self, hooks: list[dict] | None = None) -> None:
        self.hooks = hooks or []
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/user":
            return httpx.Response(200, json={"id": 42, "login": "octocat", "name": "Octo Cat", "email": None})
        if path.endswith("/hooks") and request.method == "GET":
            return httpx.Response(200, json=self.hooks)
        if path.endswith("/hooks") and request.method == "POST":
            return httpx.Response(201, json={"id": 99, **json.loads(request.content)})
        return httpx.Response(404, json={"message": "Not Found"})

    def client(self) -> GitHubClient:
        return GitHubClient(
            httpx.AsyncClient(transport=httpx.MockTransport(self), base_url="https://api.github.com"),
            retry_base_delay=0,
        )


@pytest.fixture
def build_orchestrator(session_factory, settings):
    def _build(token_endpoint: TokenEndpoint | None = None, api: CodeHostAPI | None = None, **oauth):
        http = (token_endpoint or TokenEndpoint()).client()
        codehost = CodeHostOAuth(
            oauth.get("codehost_id", "ch-client"), oauth.get("codehost_secret", "ch-secret"), "http://cb/codehost", http
        )
        socialnet = SocialNetOAuth(oauth.get("socialnet_id", "sn-client"), None, REDIRECT, http)
        vault = CredentialVault(session_factory, {Provider.CODEHOST: codehost, Provider.SOCIALNET: socialnet})
        orchestrator = OAuthOrchestrator(
            session_factory,
            vault,
            PendingAuthStore(),
            codehost=codehost,
            socialnet=socialnet,
            github_client=(api or CodeHostAPI()).client(),
            tenant_service=TenantService(UserDAO(), UserRepoDAO(), settings),
        )
        return orchestrator, vault

    return _build


class TestOrchestrator:
    def test_start_requires_configuration(self, build_orchestrator):
        orchestrator, _ = build_orchestrator(codehost_secret=None, socialnet_id=None)
        with pytest.raises(ValidationError):
            orchestrator.start_codehost()
        with pytest.raises(ValidationError):
            orchestrator.start_socialnet("codehost:42")

    def test_socialnet_start_needs_tenant(self, build_orchestrator):
        orchestrator, _ = build_orchestrator()
        with pytest.raises(ValidationError):
            orchestrator.start_socialnet("")

    @pytest.mark.asyncio
    async def test_codehost_flow_creates_tenant_and_token(self, build_orchestrator, session_factory):
        endpoint = TokenEndpoint(httpx.Response(200, json={"access_token": "gho_abc", "scope": "repo"}))
        orchestrator, vault = build_orchestrator(endpoint)

        state = _query(orchestrator.start_codehost())["state"]
        result = await orchestrator.complete_codehost("code-1", state)

        assert result.tenant_id == "codehost:42"
        assert result.username == "octocat"
        token = await vault.get(Provider.CODEHOST, "42")
        assert token.access_token == "gho_abc"
        assert token.user["login"] == "octocat"
        async with session_factory() as session:
            user = await UserDAO().get_by_user_id(session, "codehost:42")
        assert user.github_username == "octocat"
        assert user.display_name == "Octo Cat"

    @pytest.mark.asyncio
    async def test_codehost_state_is_single_use(self, build_orchestrator):
        endpoint = TokenEndpoint(httpx.Response(200, json={"access_token": "gho_abc"}))
        orchestrator, _ = build_orchestrator(endpoint)
        state = _query(orchestrator.start_codehost())["state"]
        await orchestrator.complete_codehost("code-1", state)
        with pytest.raises(AuthenticationError, match="state"):
            await orchestrator.complete_codehost("code-1", state)

    @pytest.mark.asyncio
    async def test_codehost_unknown_state(self, build_orchestrator):
        orchestrator, _ = build_orchestrator()
        with pytest.raises(AuthenticationError):
            await orchestrator.complete_codehost("code-1", "forged")

    @pytest.mark.asyncio
    async def test_socialnet_flow_sends_matching_verifier(self, build_orchestrator):
        endpoint = TokenEndpoint(
            httpx.Response(200, json={"access_token": "sn-acc", "refresh_token": "sn-ref", "expires_in": 7200})
        )
        orchestrator, vault = build_orchestrator(endpoint)

        query = _query(orchestrator.start_socialnet("codehost:42"))
        result = await orchestrator.complete_socialnet("code-9", query["state"])

        assert result.tenant_id == "codehost:42"
        verifier = endpoint.form()["code_verifier"]
        assert generate_code_challenge(verifier) == query["code_challenge"]
        token = await vault.get(Provider.SOCIALNET, "codehost:42")
        assert token.access_token == "sn-acc"
        assert token.refresh_token == "sn-ref"

    @pytest.mark.asyncio
    async def test_socialnet_state_from_codehost_flow_rejected(self, build_orchestrator):
        orchestrator, _ = build_orchestrator()
        state = _query(orchestrator.start_codehost())["state"]
        with pytest.raises(AuthenticationError):
            await orchestrator.complete_socialnet("code", state)

    @pytest.mark.asyncio
    async def test_missing_code(self, build_orchestrator):
        orchestrator, _ = build_orchestrator()
        state = _query(orchestrator.start_socialnet("t1"))["state"]
        with pytest.raises(AuthenticationError, match="code"):
            await orchestrator.complete_socialnet(None, state)


class TestInstallWebhook:
    @pytest.mark.asyncio
    async def test_creates_hook_with_secret(self, build_orchestrator):
        api = CodeHostAPI()
        orchestrator, vault = build_orchestrator(api=api)
        from commitcaster.services.credential_vault import CodeHostToken

        await vault.put(Provider.CODEHOST, "42", CodeHostToken(access_token="gho_abc"))
        result = await orchestrator.install_webhook(
            "codehost:42", "octo/widgets", url="https://cc.test/webhook/codehost", secret="s3"
        )

        assert result == {"hook_id": 99, "created": True}
        post = api.requests[-1]
        assert post.headers["authorization"] == "Bearer gho_abc"
        body = json.loads(post.content)
        assert body["events"] == ["push"]
        assert body["config"] == {
            "url": "https://cc.test/webhook/codehost",
            "content_type": "json",
            "insecure_ssl": "0",
            "secret": "s3",
        }

    @pytest.mark.asyncio
    async def test_existing_hook_is_reused(self, build_orchestrator):
        api = CodeHostAPI(hooks=[{"id": 7, "config": {"url": "https://cc.test/webhook/codehost"}}])
        orchestrator, vault = build_orchestrator(api=api)
        from commitcaster.services.credential_vault import CodeHostToken

        await vault.put(Provider.CODEHOST, "42", CodeHostToken(access_token="gho_abc"))
        result = await orchestrator.install_webhook(
            "codehost:42", "octo/widgets", url="https://cc.test/webhook/codehost", secret=None
        )

        assert result == {"hook_id": 7, "created": False}
        assert all(r.method == "GET" for r in api.requests)

    @pytest.mark.asyncio
    async def test_requires_codehost_tenant(self, build_orchestrator):
        orchestrator, _ = build_orchestrator()
        with pytest.raises(ValidationError):
            await orchestrator.install_webhook("default", "octo/widgets", url="u", secret=None)
