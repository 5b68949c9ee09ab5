"""Tests for the Google (Gmail) connector."""

import json
from urllib.parse import parse_qs

import httplib2
import httpx
import pytest
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import HttpMockSequence
from unittest.mock import MagicMock, patch

from config.settings import config
from connectors.base import ConfigContext, StoredCredentials
from connectors.errors import (
    OAuthExchangeError,
    ReauthorizationRequired,
    UpstreamAPIError,
)
from connectors.google import GoogleConnector, clean_access_token, format_message

GOOD_TOKEN = "ya29." + "a" * 60


# ── helpers ────────────────────────────────────────────────────────────────────


class _FakeRequest:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error

    def execute(self, num_retries=0):
        if self.error is not None:
            raise self.error
        return self.result


class _FakeBatch:
    def __init__(self, callback):
        self.callback = callback
        self.items = []

    def add(self, request, request_id):
        self.items.append((request_id, request))

    def execute(self):
        for request_id, request in self.items:
            try:
                self.callback(request_id, request.execute(), None)
            except HttpError as exc:
                self.callback(request_id, None, exc)


def _http_error(status):
    return HttpError(httplib2.Response({"status": status}), b'{"error": {"message": "nope"}}')


def _fake_service(messages, list_error=None, failing_ids=()):
    """A Gmail service double: ``users().messages().list/get`` plus batching."""
    service = MagicMock()
    msgs_api = service.users.return_value.messages.return_value
    msgs_api.list.return_value = _FakeRequest(
        result={"messages": [{"id": m["id"]} for m in messages]}, error=list_error
    )
    by_id = {m["id"]: m for m in messages}

    def _get(userId, id, format, metadataHeaders):
        assert format == "metadata"
        if id in failing_ids:
            return _FakeRequest(error=_http_error(500))
        return _FakeRequest(result=by_id[id])

    msgs_api.get.side_effect = _get
    service.new_batch_http_request.side_effect = lambda callback: _FakeBatch(callback)
    return service


def _message(msg_id, subject="Hello", sender="Ada <ada@example.com>"):
    return {
        "id": msg_id,
        "snippet": f"snippet {msg_id}",
        "payload": {
            "headers": [
                {"name": "Subject", "value": subject},
                {"name": "From", "value": sender},
                {"name": "Date", "value": "Mon, 1 Jan 2024 10:00:00 +0000"},
            ]
        },
    }


def _userinfo_ok(request):
    assert request.url.path == "/oauth2/v3/userinfo"
    return httpx.Response(200, json={"email": "ada@example.com"})


def _creds(token=GOOD_TOKEN):
    return StoredCredentials(user_id="u-1", provider="google", access_token=token)


# ── token hygiene & formatting ─────────────────────────────────────────────────


class TestTokenCleaning:
    def test_strips_bearer_prefix(self):
        assert clean_access_token(f"Bearer {GOOD_TOKEN}") == GOOD_TOKEN

    def test_short_token_rejected(self):
        with pytest.raises(ReauthorizationRequired, match="too short"):
            clean_access_token("ya29.short")


def test_format_message_defaults():
    record = format_message({"id": "m1", "payload": {"headers": []}})
    assert record["subject"] == "No Subject"
    assert record["from"] == "Unknown"
    assert record["snippet"] == ""


# ── config & exchange ──────────────────────────────────────────────────────────


class TestGoogleOAuth:
    @pytest.mark.asyncio
    async def test_config_uses_request_origin(self):
        cfg = await GoogleConnector().get_config(
            ConfigContext(origin=None, request_origin="http://testserver")
        )
        assert cfg["clientId"] == "google-id"
        assert cfg["redirectUri"] == "http://testserver/oauth/callback"
        assert "https://www.googleapis.com/auth/gmail.readonly" in cfg["scopes"].split(" ")

    @pytest.mark.asyncio
    async def test_exchange_validates_token(self, mock_upstream):
        def handler(request):
            if request.url.path == "/token":
                form = parse_qs(request.content.decode())
                assert form["grant_type"] == ["authorization_code"]
                assert form["redirect_uri"] == ["http://localhost/oauth/callback"]
                return httpx.Response(
                    200, json={"access_token": GOOD_TOKEN, "refresh_token": "1//r", "expires_in": 3599}
                )
            assert request.url.path == "/oauth2/v2/userinfo"
            return httpx.Response(200, json={"email": "ada@example.com"})

        mock_upstream(handler)
        grant = await GoogleConnector().exchange_code("code", "http://localhost/oauth/callback")
        assert grant.refresh_token == "1//r"
        assert grant.account_label == "ada@example.com"
        assert grant.expires_at is not None

    @pytest.mark.asyncio
    async def test_exchange_failure_includes_body(self, mock_upstream):
        mock_upstream(lambda r: httpx.Response(400, text='{"error": "invalid_grant"}'))
        with pytest.raises(OAuthExchangeError, match="Failed to exchange code for access token"):
            await GoogleConnector().exchange_code("code", "http://localhost/cb")

    @pytest.mark.asyncio
    async def test_invalid_token_from_google(self, mock_upstream):
        def handler(request):
            if request.url.path == "/token":
                return httpx.Response(200, json={"access_token": GOOD_TOKEN})
            return httpx.Response(401)

        mock_upstream(handler)
        with pytest.raises(OAuthExchangeError, match="Invalid access token received from Google"):
            await GoogleConnector().exchange_code("code", "http://localhost/cb")


class TestGoogleRefresh:
    @pytest.mark.asyncio
    async def test_refresh_returns_new_token(self, mock_upstream):
        def handler(request):
            form = parse_qs(request.content.decode())
            assert form["grant_type"] == ["refresh_token"]
            assert form["refresh_token"] == ["1//r"]
            return httpx.Response(200, json={"access_token": "ya29.new", "expires_in": 3600})

        mock_upstream(handler)
        refreshed = await GoogleConnector().refresh_access_token("1//r")
        assert refreshed.access_token == "ya29.new"
        assert refreshed.refresh_token is None

    @pytest.mark.asyncio
    async def test_revoked_refresh_token_requires_reconnect(self, mock_upstream):
        mock_upstream(lambda r: httpx.Response(400, json={"error": "invalid_grant"}))
        with pytest.raises(ReauthorizationRequired):
            await GoogleConnector().refresh_access_token("1//r")


# ── Gmail reads ────────────────────────────────────────────────────────────────


class TestGmailFetch:
    @pytest.mark.asyncio
    async def test_fetch_formats_messages_in_list_order(self, mock_upstream):
        mock_upstream(_userinfo_ok)
        service = _fake_service([_message("m1", "First"), _message("m2", "Second")])

        with patch("connectors.google.build", return_value=service) as build:
            data = await GoogleConnector().fetch_data(_creds())

        assert build.call_args.args[:2] == ("gmail", "v1")
        assert [e["subject"] for e in data["emails"]] == ["First", "Second"]
        assert data["emails"][0]["from"] == "Ada <ada@example.com>"
        assert data["emails"][0]["created_at"] == "Mon, 1 Jan 2024 10:00:00 +0000"

    @pytest.mark.asyncio
    async def test_failed_message_is_dropped(self, mock_upstream):
        mock_upstream(_userinfo_ok)
        service = _fake_service([_message("m1"), _message("m2")], failing_ids={"m1"})

        with patch("connectors.google.build", return_value=service):
            data = await GoogleConnector().fetch_data(_creds())

        assert [e["id"] for e in data["emails"]] == ["m2"]

    @pytest.mark.asyncio
    async def test_empty_mailbox(self, mock_upstream):
        mock_upstream(_userinfo_ok)
        with patch("connectors.google.build", return_value=_fake_service([])):
            data = await GoogleConnector().fetch_data(_creds())
        assert data == {"emails": []}

    @pytest.mark.asyncio
    async def test_access_denied(self, mock_upstream):
        mock_upstream(_userinfo_ok)
        service = _fake_service([], list_error=_http_error(403))
        with patch("connectors.google.build", return_value=service):
            with pytest.raises(UpstreamAPIError, match="Access denied") as exc_info:
                await GoogleConnector().fetch_data(_creds())
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_gmail_unauthorized(self, mock_upstream):
        mock_upstream(_userinfo_ok)
        service = _fake_service([], list_error=_http_error(401))
        with patch("connectors.google.build", return_value=service):
            with pytest.raises(ReauthorizationRequired, match="Authentication failed"):
                await GoogleConnector().fetch_data(_creds())

    @pytest.mark.asyncio
    async def test_token_rejected_by_userinfo(self, mock_upstream):
        mock_upstream(lambda r: httpx.Response(401, text="invalid"))
        with pytest.raises(ReauthorizationRequired, match="Token validation failed"):
            await GoogleConnector().fetch_data(_creds())


class TestGmailListRetries:
    def _service(self, responses):
        return build("gmail", "v1", http=HttpMockSequence(responses), static_discovery=True)

    def test_list_retries_server_error(self):
        service = self._service([
            ({"status": "503"}, b'{"error": {"message": "backend error"}}'),
            ({"status": "200"}, json.dumps({"messages": []}).encode()),
        ])
        with patch("googleapiclient.http.time.sleep"):
            assert GoogleConnector._list_and_get(service, 10) == []

    def test_list_gives_up_after_configured_retries(self, monkeypatch):
        monkeypatch.setattr(config, "default_max_retries", 1)
        service = self._service([
            ({"status": "503"}, b"{}"),
            ({"status": "503"}, b"{}"),
            ({"status": "200"}, json.dumps({"messages": []}).encode()),
        ])
        with patch("googleapiclient.http.time.sleep"):
            with pytest.raises(HttpError):
                GoogleConnector._list_and_get(service, 10)
