"""Tests for integration storage, refresh-on-read and disconnect."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import AsyncMock, patch

from connectors import token_manager
from connectors.errors import IntegrationNotFoundError, ReauthorizationRequired
from connectors.figma import FigmaConnector
from connectors.github import GitHubConnector
from connectors.google import GoogleConnector
from connectors.slack import SlackConnector
from database.models import Integration, User
from utils.schemas import MergeAccount, RefreshedToken, TokenGrant


def _in(seconds):
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


async def _user(session):
    user = User(user_id=uuid.uuid4(), email=f"{uuid.uuid4().hex}@example.com", password_hash="x")
    session.add(user)
    await session.flush()
    return str(user.user_id)


class TestNeedsRefresh:
    def test_no_expiry_never_refreshes(self):
        assert not token_manager.needs_refresh(None)

    def test_inside_leeway(self):
        assert token_manager.needs_refresh(_in(60))

    def test_outside_leeway(self):
        assert not token_manager.needs_refresh(_in(600))

    def test_naive_timestamps_treated_as_utc(self):
        naive = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(seconds=5)
        assert token_manager.needs_refresh(naive)


class TestStoreGrant:
    @pytest.mark.asyncio
    async def test_tokens_encrypted_at_rest(self, session):
        user_id = await _user(session)
        grant = TokenGrant(access_token="plain-access", refresh_token="plain-refresh", expires_at=_in(3600))
        row = await token_manager.store_grant(session, user_id, "google", grant)

        assert row.access_token != "plain-access"
        assert row.refresh_token != "plain-refresh"

        creds = await token_manager.load_credentials(session, user_id, GoogleConnector())
        assert creds.access_token == "plain-access"
        assert creds.refresh_token == "plain-refresh"

    @pytest.mark.asyncio
    async def test_reconnect_upserts_and_keeps_refresh_token(self, session):
        user_id = await _user(session)
        await token_manager.store_grant(
            session, user_id, "google",
            TokenGrant(access_token="a1", refresh_token="r1", expires_at=_in(3600), account_label="ada@x"),
        )
        await token_manager.store_grant(
            session, user_id, "google", TokenGrant(access_token="a2", expires_at=_in(3600)),
        )

        rows = await token_manager.list_integrations(session, user_id)
        assert len(rows) == 1
        assert rows[0].account_label == "ada@x"
        creds = await token_manager.load_credentials(session, user_id, GoogleConnector())
        assert (creds.access_token, creds.refresh_token) == ("a2", "r1")


class TestLoadCredentials:
    @pytest.mark.asyncio
    async def test_missing_integration(self, session):
        user_id = await _user(session)
        with pytest.raises(IntegrationNotFoundError, match="No Gmail integration found"):
            await token_manager.load_credentials(session, user_id, GoogleConnector())

    @pytest.mark.asyncio
    async def test_expiring_google_token_is_refreshed(self, session):
        user_id = await _user(session)
        await token_manager.store_grant(
            session, user_id, "google",
            TokenGrant(access_token="old", refresh_token="r1", expires_at=_in(30)),
        )
        refreshed = RefreshedToken(access_token="new", expires_at=_in(3600), refresh_token="r2")

        with patch.object(GoogleConnector, "refresh_access_token", AsyncMock(return_value=refreshed)) as refresh:
            creds = await token_manager.load_credentials(session, user_id, GoogleConnector())

        refresh.assert_awaited_once_with("r1")
        assert creds.access_token == "new"
        assert creds.refresh_token == "r2"

        again = await token_manager.load_credentials(session, user_id, GoogleConnector())
        assert again.access_token == "new"

    @pytest.mark.asyncio
    async def test_fresh_token_is_not_refreshed(self, session):
        user_id = await _user(session)
        await token_manager.store_grant(
            session, user_id, "google",
            TokenGrant(access_token="current", refresh_token="r1", expires_at=_in(3600)),
        )
        with patch.object(GoogleConnector, "refresh_access_token", AsyncMock()) as refresh:
            creds = await token_manager.load_credentials(session, user_id, GoogleConnector())
        refresh.assert_not_awaited()
        assert creds.access_token == "current"

    @pytest.mark.asyncio
    async def test_active_token_requires_access_token(self, session):
        user_id = await _user(session)
        await token_manager.store_merge_account(
            session, user_id, "slack", MergeAccount(account_token="acct"),
        )
        await token_manager.store_grant(session, user_id, "figma", TokenGrant(access_token="figd"))

        assert await token_manager.get_active_token(session, user_id, FigmaConnector()) == "figd"
        with pytest.raises(ReauthorizationRequired):
            await token_manager.get_active_token(session, user_id, SlackConnector())

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token(self, session):
        user_id = await _user(session)
        await token_manager.store_grant(
            session, user_id, "google", TokenGrant(access_token="old", expires_at=_in(-10)),
        )
        with pytest.raises(ReauthorizationRequired):
            await token_manager.load_credentials(session, user_id, GoogleConnector())

    @pytest.mark.asyncio
    async def test_expired_provider_without_refresh_support(self, session):
        user_id = await _user(session)
        await token_manager.store_grant(
            session, user_id, "github",
            TokenGrant(access_token="ghu", refresh_token="ghr", expires_at=_in(-10)),
        )
        with pytest.raises(ReauthorizationRequired, match="GitHub token expired"):
            await token_manager.load_credentials(session, user_id, GitHubConnector())


class TestManagement:
    @pytest.mark.asyncio
    async def test_merge_account_and_summary(self, session):
        user_id = await _user(session)
        await token_manager.store_merge_account(
            session, user_id, "slack", MergeAccount(account_token="acct", account_id="la-1"),
        )

        (summary,) = await token_manager.list_integrations(session, user_id)
        assert summary.provider == "slack"
        assert summary.connected is True
        assert summary.has_merge_account is True
        assert summary.merge_account_id == "la-1"
        assert "acct" not in summary.model_dump_json()

    @pytest.mark.asyncio
    async def test_webhook_creates_row(self, session):
        user_id = await _user(session)
        row = await token_manager.set_webhook_url(
            session, user_id, GitHubConnector(), "https://hooks.example.com/1"
        )
        summary = token_manager.summarize(row)
        assert summary.webhook_url == "https://hooks.example.com/1"
        assert summary.connected is False

    @pytest.mark.asyncio
    async def test_disconnect_revokes_then_deletes(self, session):
        user_id = await _user(session)
        await token_manager.store_grant(session, user_id, "github", TokenGrant(access_token="gho_1"))

        with patch.object(GitHubConnector, "revoke_token", AsyncMock(return_value=True)) as revoke:
            assert await token_manager.disconnect(session, user_id, GitHubConnector()) is True
        revoke.assert_awaited_once_with("gho_1")
        assert await token_manager.get_integration(session, user_id, "github") is None

    @pytest.mark.asyncio
    async def test_disconnect_missing(self, session):
        user_id = await _user(session)
        assert await token_manager.disconnect(session, user_id, GitHubConnector()) is False

    @pytest.mark.asyncio
    async def test_rows_are_per_user(self, session):
        alice, bob = await _user(session), await _user(session)
        await token_manager.store_grant(session, alice, "figma", TokenGrant(access_token="a"))
        assert await token_manager.list_integrations(session, bob) == []
        assert isinstance(await token_manager.get_integration(session, alice, "figma"), Integration)
