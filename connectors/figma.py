"""
FigmaConnector — OAuth2 plus recent files with their comments and thumbnails.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from auth.tokens import create_state
from config.settings import config
from connectors.base import BaseConnector, ConfigContext, StoredCredentials
from connectors.errors import (
    NotConfiguredError,
    OAuthExchangeError,
    ReauthorizationRequired,
    UpstreamAPIError,
)
from utils.retry import request_with_backoff
from utils.schemas import FigmaComment, FigmaFile, TokenGrant

logger = logging.getLogger(__name__)

_FIGMA_TOKEN_URL = "https://www.figma.com/api/oauth/token"
_FIGMA_API = "https://api.figma.com/v1"


def format_comment(comment: Dict[str, Any], file_key: str) -> FigmaComment:
    client_meta = comment.get("client_meta")
    return FigmaComment(
        id=str(comment["id"]),
        file_key=comment.get("file_key") or file_key,
        parent_id=comment.get("parent_id") or None,
        message=comment.get("message", ""),
        created_at=comment.get("created_at"),
        resolved=bool(comment.get("resolved") or comment.get("resolved_at")),
        client_meta=client_meta if isinstance(client_meta, dict) else {},
    )


class FigmaConnector(BaseConnector):
    """OAuth2 connector for Figma."""

    @property
    def provider_name(self) -> str:
        return "figma"

    @property
    def display_name(self) -> str:
        return "Figma"

    @property
    def scopes(self) -> List[str]:
        return ["files:read"]

    async def get_config(self, ctx: ConfigContext) -> Dict[str, Any]:
        if not config.figma_client_id:
            logger.error("Missing required Figma credentials")
            raise NotConfiguredError(
                "Figma credentials not properly configured",
                detail="Failed to retrieve Figma configuration.",
            )
        base = (ctx.origin or ctx.request_origin).rstrip("/")
        return {
            "clientId": config.figma_client_id,
            "scopes": ",".join(self.scopes),
            "redirectUri": f"{base}/oauth/callback",
            "state": create_state(self.provider_name),
        }

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        client_id, client_secret = self.require_configured()

        async with self.http_client() as client:
            resp = await client.post(
                _FIGMA_TOKEN_URL,
                json={
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "redirect_uri": redirect_uri,
                    "code": code,
                    "grant_type": "authorization_code",
                },
            )
        try:
            tokens = resp.json()
        except ValueError:
            tokens = {}

        logger.info("Figma token response status: %d", resp.status_code)
        if not resp.is_success or not tokens.get("access_token"):
            logger.error(
                "Figma token exchange failed: status=%d error=%s",
                resp.status_code, tokens.get("error"),
            )
            raise OAuthExchangeError(
                tokens.get("error_description") or "Failed to exchange code for access token",
                detail="Failed to complete Figma authentication.",
            )

        return TokenGrant(
            access_token=tokens["access_token"],
            refresh_token=tokens.get("refresh_token"),
            expires_at=self.expires_at(tokens.get("expires_in") or 3600),
            account_label=tokens.get("user_id_string") or None,
        )

    # ── Files & comments ────────────────────────────────────────────────

    async def _comments(
        self, client: httpx.AsyncClient, headers: Dict[str, str], file_key: str
    ) -> List[FigmaComment]:
        try:
            resp = await request_with_backoff(
                client, "GET", f"{_FIGMA_API}/files/{file_key}/comments", headers=headers
            )
        except httpx.HTTPError as exc:
            logger.error("Error fetching comments for file %s: %s", file_key, exc)
            return []
        if not resp.is_success:
            logger.error("Failed to fetch comments for file %s: %s", file_key, resp.text[:300])
            return []
        try:
            return [format_comment(c, file_key) for c in resp.json().get("comments") or []]
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.error("Unreadable comments for file %s: %s", file_key, exc)
            return []

    async def _thumbnail(
        self, client: httpx.AsyncClient, headers: Dict[str, str], file_key: str
    ) -> Optional[str]:
        try:
            resp = await request_with_backoff(
                client, "GET", f"{_FIGMA_API}/files/{file_key}/thumbnails", headers=headers
            )
        except httpx.HTTPError as exc:
            logger.error("Error fetching thumbnail for file %s: %s", file_key, exc)
            return None
        if not resp.is_success:
            return None
        try:
            return (resp.json().get("images") or {}).get(file_key)
        except (ValueError, AttributeError) as exc:
            logger.error("Unreadable thumbnails for file %s: %s", file_key, exc)
            return None

    async def _file_with_extras(
        self, client: httpx.AsyncClient, headers: Dict[str, str], raw: Dict[str, Any]
    ) -> FigmaFile:
        key = raw["key"]
        comments, thumbnail = await asyncio.gather(
            self._comments(client, headers, key),
            self._thumbnail(client, headers, key),
        )
        return FigmaFile(
            key=key,
            name=raw.get("name", ""),
            thumbnail_url=thumbnail or raw.get("thumbnail_url"),
            last_modified=raw.get("last_modified"),
            comments=comments,
        )

    async def fetch_data(self, credentials: StoredCredentials) -> Dict[str, Any]:
        token = self.require_access_token(credentials)
        headers = {"Authorization": f"Bearer {token}"}

        async with self.http_client() as client:
            resp = await request_with_backoff(client, "GET", f"{_FIGMA_API}/me/files", headers=headers)
            if resp.status_code in (401, 403):
                raise ReauthorizationRequired(
                    "Figma rejected the stored token",
                    detail="Please reconnect your Figma account.",
                )
            if not resp.is_success:
                logger.error("Failed to fetch Figma files: %s", resp.text[:500])
                raise UpstreamAPIError(
                    "Failed to fetch Figma files",
                    detail="Failed to fetch Figma data.",
                )

            files = resp.json().get("files") or []
            logger.info("Found %d Figma files", len(files))
            # comment/thumbnail lookups are rate limited, so only the newest few
            selected = files[: config.figma_file_limit]
            enriched = await asyncio.gather(
                *(self._file_with_extras(client, headers, f) for f in selected)
            )

        return {"files": [f.model_dump() for f in enriched]}
