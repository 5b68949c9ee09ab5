"""
GoogleConnector — OAuth2 web flow for Gmail, with refresh and revocation.

The OAuth handshake talks to Google's token/userinfo endpoints over httpx.
Mailbox reads go through ``googleapiclient``; its calls are synchronous, so
they are offloaded with ``asyncio.to_thread()`` to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

import httpx
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from auth.tokens import create_state
from config.settings import config
from connectors.base import BaseConnector, ConfigContext, StoredCredentials
from connectors.errors import (
    OAuthExchangeError,
    ReauthorizationRequired,
    UpstreamAPIError,
)
from utils.retry import request_with_backoff
from utils.schemas import GmailMessage, RefreshedToken, TokenGrant

logger = logging.getLogger(__name__)

_GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
_GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
_GOOGLE_USERINFO_V2 = "https://www.googleapis.com/oauth2/v2/userinfo"
_GOOGLE_USERINFO_V3 = "https://www.googleapis.com/oauth2/v3/userinfo"

_RECONNECT_HINT = (
    "Please try disconnecting and reconnecting your Gmail account. "
    "Make sure to grant all required permissions."
)
_MIN_TOKEN_LENGTH = 50
_BEARER_PREFIX = re.compile(r"^bearer\s+", re.IGNORECASE)


def clean_access_token(token: str) -> str:
    """Strip a stray ``Bearer`` prefix and reject obviously truncated tokens."""
    cleaned = _BEARER_PREFIX.sub("", token.strip())
    if len(cleaned) < _MIN_TOKEN_LENGTH:
        raise ReauthorizationRequired(
            "Token appears invalid - too short", detail=_RECONNECT_HINT
        )
    return cleaned


def _header(headers: List[Dict[str, str]], name: str) -> Optional[str]:
    """Case-insensitive lookup in a Gmail ``payload.headers`` list."""
    wanted = name.lower()
    for h in headers:
        if h.get("name", "").lower() == wanted:
            return h.get("value")
    return None


def format_message(msg: Dict[str, Any]) -> Dict[str, Any]:
    """Reshape a Gmail message resource into a dashboard record."""
    headers = msg.get("payload", {}).get("headers", [])
    date = _header(headers, "date")
    record = GmailMessage(
        id=msg["id"],
        subject=_header(headers, "subject") or "No Subject",
        sender=_header(headers, "from") or "Unknown",
        date=date,
        snippet=msg.get("snippet", ""),
        created_at=date,
    )
    return record.model_dump(by_alias=True)


def _map_http_error(exc: HttpError) -> Exception:
    status = getattr(exc.resp, "status", None)
    if status == 401:
        return ReauthorizationRequired(
            "Authentication failed. Please reconnect your Gmail account.",
            detail=_RECONNECT_HINT,
        )
    if status == 403:
        return UpstreamAPIError(
            "Access denied. Please ensure Gmail access is enabled for your Google account.",
            detail=_RECONNECT_HINT,
            status_code=403,
        )
    return UpstreamAPIError("Failed to fetch Gmail messages", detail=_RECONNECT_HINT)


class GoogleConnector(BaseConnector):
    """OAuth2 connector for Google (Gmail)."""

    @property
    def provider_name(self) -> str:
        return "google"

    @property
    def display_name(self) -> str:
        return "Gmail"

    @property
    def scopes(self) -> List[str]:
        return [
            "https://www.googleapis.com/auth/gmail.readonly",
            "https://mail.google.com/",
            "email",
            "profile",
        ]

    @property
    def supports_refresh(self) -> bool:
        return True

    async def get_config(self, ctx: ConfigContext) -> Dict[str, Any]:
        client_id, _ = self.require_configured()
        base = (ctx.origin or ctx.request_origin).rstrip("/")
        return {
            "clientId": client_id,
            "scopes": " ".join(self.scopes),
            "redirectUri": f"{base}/oauth/callback",
            "state": create_state(self.provider_name),
        }

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        """Exchange the code, then confirm the token against userinfo."""
        client_id, client_secret = self.require_configured()

        async with self.http_client() as client:
            token_resp = await client.post(
                _GOOGLE_TOKEN_URL,
                data={
                    "code": code,
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "redirect_uri": redirect_uri,
                    "grant_type": "authorization_code",
                },
            )
            logger.info("Google token response status: %d", token_resp.status_code)
            if not token_resp.is_success:
                logger.error("Google token exchange failed: %s", token_resp.text[:500])
                raise OAuthExchangeError(
                    f"Failed to exchange code for access token: {token_resp.text}",
                    detail="Failed to complete Google authentication",
                )

            tokens = token_resp.json()
            access_token = tokens.get("access_token")
            if not access_token:
                raise OAuthExchangeError(
                    "No access token received from Google",
                    detail="Failed to complete Google authentication",
                )

            userinfo_resp = await client.get(
                _GOOGLE_USERINFO_V2,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            if not userinfo_resp.is_success:
                logger.error("Google token validation failed: %s", userinfo_resp.text[:500])
                raise OAuthExchangeError(
                    "Invalid access token received from Google",
                    detail="Failed to complete Google authentication",
                )
            userinfo = userinfo_resp.json()

        logger.info("Google token validated for %s", userinfo.get("email"))
        return TokenGrant(
            access_token=access_token,
            refresh_token=tokens.get("refresh_token"),
            expires_at=self.expires_at(tokens.get("expires_in", 3600)),
            account_label=userinfo.get("email"),
        )

    async def refresh_access_token(self, refresh_token: str) -> RefreshedToken:
        client_id, client_secret = self.require_configured()

        async with self.http_client() as client:
            resp = await request_with_backoff(
                client,
                "POST",
                _GOOGLE_TOKEN_URL,
                data={
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )

        if resp.status_code in (400, 401):
            # invalid_grant: the user revoked access or the refresh token aged out
            logger.warning("Google refresh rejected: %s", resp.text[:300])
            raise ReauthorizationRequired(
                "Authentication failed. Please reconnect your Gmail account.",
                detail=_RECONNECT_HINT,
            )
        if not resp.is_success:
            raise UpstreamAPIError(
                f"Google token refresh failed ({resp.status_code})", detail=_RECONNECT_HINT
            )

        data = resp.json()
        return RefreshedToken(
            access_token=data["access_token"],
            expires_at=self.expires_at(data.get("expires_in", 3600)),
            refresh_token=data.get("refresh_token"),
        )

    async def revoke_token(self, access_token: str) -> bool:
        try:
            async with self.http_client() as client:
                resp = await client.post(_GOOGLE_REVOKE_URL, params={"token": access_token})
                return resp.status_code == 200
        except httpx.HTTPError:
            logger.warning("Google token revocation failed", exc_info=True)
            return False

    # ── Gmail ───────────────────────────────────────────────────────────

    async def _validate_token(self, token: str) -> Dict[str, Any]:
        async with self.http_client() as client:
            resp = await request_with_backoff(
                client,
                "GET",
                _GOOGLE_USERINFO_V3,
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            )
        if resp.status_code == 401:
            raise ReauthorizationRequired(
                f"Token validation failed: {resp.text}", detail=_RECONNECT_HINT
            )
        if not resp.is_success:
            logger.error("Token validation failed: %d %s", resp.status_code, resp.text[:500])
            raise UpstreamAPIError(f"Token validation failed: {resp.text}", detail=_RECONNECT_HINT)
        return resp.json()

    @staticmethod
    def _list_and_get(service: Any, max_results: int) -> List[Dict[str, Any]]:
        """
        List recent message ids, then pull their metadata in one batch.

        Runs in a worker thread. The list call retries 429/5xx with
        googleapiclient's own backoff; a list call that still fails propagates
        as ``HttpError``. Individual message failures are logged and dropped.
        """
        listing = (
            service.users()
            .messages()
            .list(userId="me", maxResults=max_results)
            .execute(num_retries=config.default_max_retries)
        )
        ids = [m["id"] for m in listing.get("messages", []) or []]
        if not ids:
            return []

        fetched: Dict[str, Dict[str, Any]] = {}

        def _collect(request_id: str, response: Any, exception: Optional[Exception]) -> None:
            if exception is not None:
                logger.error("Error fetching message %s: %s", request_id, exception)
                return
            fetched[request_id] = response

        batch = service.new_batch_http_request(callback=_collect)
        for msg_id in ids:
            batch.add(
                service.users().messages().get(
                    userId="me",
                    id=msg_id,
                    format="metadata",
                    metadataHeaders=["Subject", "From", "Date"],
                ),
                request_id=msg_id,
            )
        batch.execute()

        return [fetched[msg_id] for msg_id in ids if msg_id in fetched]

    async def fetch_data(self, credentials: StoredCredentials) -> Dict[str, Any]:
        token = clean_access_token(self.require_access_token(credentials))
        userinfo = await self._validate_token(token)
        logger.info("Token validated for %s; fetching Gmail messages", userinfo.get("email"))

        creds = Credentials(token=token)
        try:
            service = await asyncio.to_thread(
                build, "gmail", "v1", credentials=creds, cache_discovery=False
            )
            messages = await asyncio.to_thread(
                self._list_and_get, service, config.gmail_max_results
            )
        except HttpError as exc:
            logger.error("Gmail API error: %s", exc)
            raise _map_http_error(exc) from exc

        emails = [format_message(m) for m in messages]
        logger.info("Processed %d emails for user %s", len(emails), credentials.user_id)
        return {"emails": emails}
