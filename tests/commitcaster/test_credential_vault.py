"""Tests for CredentialVault — storage backends, lifecycle states and refresh."""

from __future__ import annotations

import asyncio
import os
import stat

import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker

from commitcaster.core.database import create_engine
from commitcaster.oauth.providers import TokenGrant
from commitcaster.services import (
    NoCredentialError,
    RefreshRejectedError,
    RefreshUnavailableError,
    ValidationError,
)
from commitcaster.services.credential_vault import (
    CodeHostToken,
    CredentialVault,
    FileTokenStore,
    Provider,
    SocialNetToken,
    credential_state,
)

NOW = 1_800_000_000.0


class FakeProvider:
    def __init__(self, grant: TokenGrant | None = None, error: Exception | None = None) -> None:
        self.grant = grant or TokenGrant(access_token="new-access", expires_at=NOW + 7200)
        self.error = error
        self.calls: list[str] = []

    def authorize_url(self, state: str, **params: str) -> str:
        return f"https://provider.test/authorize?state={state}"

    async def exchange(self, code: str, **params: str) -> TokenGrant:
        return self.grant

    async def refresh(self, refresh_token: str) -> TokenGrant:
        self.calls.append(refresh_token)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.grant


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def vault(session_factory, provider):
    return CredentialVault(session_factory, {Provider.SOCIALNET: provider}, clock=lambda: NOW)


@pytest.fixture
def file_vault(tmp_path, provider):
    return CredentialVault(
        None,
        {Provider.SOCIALNET: provider},
        file_store=FileTokenStore(tmp_path / "tokens"),
        clock=lambda: NOW,
    )


# ── storage ───────────────────────────────────────────────────────────────


class TestStorage:
    @pytest.mark.asyncio
    async def test_socialnet_round_trip(self, vault):
        token = SocialNetToken(
            access_token="acc-1", refresh_token="ref-1", token_type="bearer", scope="tweet.write", expires_at=NOW + 60
        )
        await vault.put(Provider.SOCIALNET, "codehost:42", token)
        assert await vault.get(Provider.SOCIALNET, "codehost:42") == token

    @pytest.mark.asyncio
    async def test_codehost_round_trip_keeps_profile(self, vault):
        token = CodeHostToken(access_token="gho_1", scope="repo", user={"id": 42, "login": "octocat"})
        await vault.put(Provider.CODEHOST, "42", token)
        assert await vault.get(Provider.CODEHOST, "42") == token

    @pytest.mark.asyncio
    async def test_put_overwrites(self, vault):
        await vault.put(Provider.SOCIALNET, "t1", SocialNetToken(access_token="a", refresh_token="r"))
        await vault.put(Provider.SOCIALNET, "t1", SocialNetToken(access_token="b"))
        stored = await vault.get(Provider.SOCIALNET, "t1")
        assert stored.access_token == "b"
        assert stored.refresh_token is None

    @pytest.mark.asyncio
    async def test_codehost_refresh_token_survives_upsert_without_one(self, vault):
        await vault.put(Provider.CODEHOST, "42", CodeHostToken(access_token="a", refresh_token="keep-me"))
        await vault.put(Provider.CODEHOST, "42", CodeHostToken(access_token="b"))
        stored = await vault.get(Provider.CODEHOST, "42")
        assert stored.access_token == "b"
        assert stored.refresh_token == "keep-me"

    @pytest.mark.asyncio
    async def test_wrong_token_type_rejected(self, vault):
        with pytest.raises(ValidationError):
            await vault.put(Provider.CODEHOST, "42", SocialNetToken(access_token="a"))

    @pytest.mark.asyncio
    async def test_missing_returns_none(self, vault):
        assert await vault.get(Provider.SOCIALNET, "nobody") is None

    @pytest.mark.asyncio
    async def test_delete(self, vault):
        await vault.put(Provider.SOCIALNET, "t1", SocialNetToken(access_token="a"))
        assert await vault.delete(Provider.SOCIALNET, "t1") is True
        assert await vault.get(Provider.SOCIALNET, "t1") is None
        assert await vault.delete(Provider.SOCIALNET, "t1") is False

    def test_needs_a_backend(self):
        with pytest.raises(ValueError):
            CredentialVault(None)


class TestFileStore:
    @pytest.mark.asyncio
    async def test_round_trip_and_delete(self, file_vault, tmp_path):
        token = SocialNetToken(access_token="acc", refresh_token="ref", expires_at=NOW + 60)
        await file_vault.put(Provider.SOCIALNET, "t1", token)
        assert await file_vault.get(Provider.SOCIALNET, "t1") == token

        path = tmp_path / "tokens" / "tokens.json"
        assert path.exists()
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

        assert await file_vault.delete(Provider.SOCIALNET, "t1") is True
        assert await file_vault.get(Provider.SOCIALNET, "t1") is None

    @pytest.mark.asyncio
    async def test_providers_are_separate_keys(self, file_vault):
        await file_vault.put(Provider.SOCIALNET, "42", SocialNetToken(access_token="sn"))
        await file_vault.put(Provider.CODEHOST, "42", CodeHostToken(access_token="ch", user={"login": "o"}))
        assert (await file_vault.get(Provider.SOCIALNET, "42")).access_token == "sn"
        assert (await file_vault.get(Provider.CODEHOST, "42")).user == {"login": "o"}

    @pytest.mark.asyncio
    async def test_refresh_through_file_store(self, file_vault, provider):
        await file_vault.put(
            Provider.SOCIALNET, "t1", SocialNetToken(access_token="old", refresh_token="r", expires_at=NOW - 10)
        )
        assert await file_vault.get_valid_access_token(Provider.SOCIALNET, "t1") == "new-access"
        assert provider.calls == ["r"]


class TestStoreUnavailable:
    @pytest_asyncio.fixture
    async def bare_factory(self, tmp_path):
        # a database whose tables were never created
        eng = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'bare.db'}")
        yield async_sessionmaker(eng, expire_on_commit=False)
        await eng.dispose()

    @pytest.mark.asyncio
    async def test_falls_back_to_file_store(self, bare_factory, provider, tmp_path):
        vault = CredentialVault(
            bare_factory,
            {Provider.SOCIALNET: provider},
            file_store=FileTokenStore(tmp_path / "tokens"),
            clock=lambda: NOW,
        )
        token = SocialNetToken(access_token="acc", refresh_token="ref", expires_at=NOW + 60)
        await vault.put(Provider.SOCIALNET, "codehost:42", token)

        assert (tmp_path / "tokens" / "tokens.json").exists()
        assert await vault.get(Provider.SOCIALNET, "codehost:42") == token
        assert await vault.state(Provider.SOCIALNET, "codehost:42") == "active"
        assert await vault.delete(Provider.SOCIALNET, "codehost:42") is True
        assert await vault.get(Provider.SOCIALNET, "codehost:42") is None

    @pytest.mark.asyncio
    async def test_without_file_store_the_error_propagates(self, bare_factory):
        vault = CredentialVault(bare_factory, clock=lambda: NOW)
        with pytest.raises(OperationalError):
            await vault.put(Provider.SOCIALNET, "codehost:42", SocialNetToken(access_token="acc"))


# ── lifecycle ─────────────────────────────────────────────────────────────


class TestState:
    def test_states(self):
        assert credential_state(None, NOW) == "absent"
        assert credential_state(SocialNetToken(access_token="a"), NOW) == "active"
        assert credential_state(SocialNetToken(access_token="a", expires_at=NOW + 1), NOW) == "active"
        assert credential_state(SocialNetToken(access_token="a", refresh_token="r", expires_at=NOW), NOW) == "expired"
        assert credential_state(SocialNetToken(access_token="a", expires_at=NOW - 1), NOW) == "revoked"

    @pytest.mark.asyncio
    async def test_vault_state_and_validity(self, vault):
        assert await vault.state(Provider.SOCIALNET, "t1") == "absent"
        await vault.put(Provider.SOCIALNET, "t1", SocialNetToken(access_token="a", expires_at=NOW + 5))
        assert await vault.state(Provider.SOCIALNET, "t1") == "active"
        assert await vault.is_valid(Provider.SOCIALNET, "t1") is True


class TestRefresh:
    @pytest.mark.asyncio
    async def test_valid_token_returned_without_refresh(self, vault, provider):
        await vault.put(Provider.SOCIALNET, "t1", SocialNetToken(access_token="live", expires_at=NOW + 60))
        assert await vault.get_valid_access_token(Provider.SOCIALNET, "t1") == "live"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_expired_token_refreshed_and_stored(self, vault, provider):
        await vault.put(
            Provider.SOCIALNET,
            "t1",
            SocialNetToken(access_token="old", refresh_token="ref-1", scope="tweet.write", expires_at=NOW - 10),
        )
        assert await vault.get_valid_access_token(Provider.SOCIALNET, "t1") == "new-access"
        assert provider.calls == ["ref-1"]

        stored = await vault.get(Provider.SOCIALNET, "t1")
        assert stored.access_token == "new-access"
        assert stored.expires_at == NOW + 7200
        # the provider sent no new refresh token or scope
        assert stored.refresh_token == "ref-1"
        assert stored.scope == "tweet.write"

    @pytest.mark.asyncio
    async def test_rotated_refresh_token_stored(self, vault, provider):
        provider.grant = TokenGrant(access_token="new", refresh_token="ref-2", expires_at=NOW + 100)
        await vault.put(
            Provider.SOCIALNET, "t1", SocialNetToken(access_token="old", refresh_token="ref-1", expires_at=NOW - 1)
        )
        await vault.refresh_token(Provider.SOCIALNET, "t1")
        assert (await vault.get(Provider.SOCIALNET, "t1")).refresh_token == "ref-2"

    @pytest.mark.asyncio
    async def test_no_credential(self, vault):
        with pytest.raises(NoCredentialError):
            await vault.get_valid_access_token(Provider.SOCIALNET, "ghost")

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token(self, vault, provider):
        await vault.put(Provider.SOCIALNET, "t1", SocialNetToken(access_token="old", expires_at=NOW - 10))
        with pytest.raises(RefreshUnavailableError):
            await vault.get_valid_access_token(Provider.SOCIALNET, "t1")
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_provider_not_registered(self, vault):
        await vault.put(
            Provider.CODEHOST, "42", CodeHostToken(access_token="old", refresh_token="r", expires_at=NOW - 10)
        )
        with pytest.raises(RefreshUnavailableError, match="not configured"):
            await vault.get_valid_access_token(Provider.CODEHOST, "42")

    @pytest.mark.asyncio
    async def test_refresh_rejected_leaves_token(self, vault, provider):
        provider.error = RefreshRejectedError("invalid_grant")
        await vault.put(
            Provider.SOCIALNET, "t1", SocialNetToken(access_token="old", refresh_token="r", expires_at=NOW - 10)
        )
        with pytest.raises(RefreshRejectedError):
            await vault.get_valid_access_token(Provider.SOCIALNET, "t1")
        assert (await vault.get(Provider.SOCIALNET, "t1")).access_token == "old"

    @pytest.mark.asyncio
    async def test_concurrent_callers_refresh_once(self, vault, provider):
        await vault.put(
            Provider.SOCIALNET, "t1", SocialNetToken(access_token="old", refresh_token="r", expires_at=NOW - 10)
        )
        tokens = await asyncio.gather(
            vault.get_valid_access_token(Provider.SOCIALNET, "t1"),
            vault.get_valid_access_token(Provider.SOCIALNET, "t1"),
            vault.get_valid_access_token(Provider.SOCIALNET, "t1"),
        )
        assert tokens == ["new-access"] * 3
        assert provider.calls == ["r"]

    @pytest.mark.asyncio
    async def test_forced_refresh_of_valid_token(self, vault, provider):
        await vault.put(
            Provider.SOCIALNET, "t1", SocialNetToken(access_token="live", refresh_token="r", expires_at=NOW + 999)
        )
        assert await vault.refresh_token(Provider.SOCIALNET, "t1", force=True) == "new-access"
        assert provider.calls == ["r"]
