"""
SlackConnector — Slack OAuth v2 plus message reads through Merge.dev.

Two ways in:
  • direct Slack OAuth (``exchange_code``) stores a bot/user token;
  • Merge.dev Link (``get_config`` → link token, then
    ``exchange_merge_public_token``) stores a Merge account token.

Messages and notifications are read through Merge.dev's unified API, so a
Merge account token is what ``fetch_data`` needs.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from auth.tokens import create_state
from config.settings import config
from connectors.base import BaseConnector, ConfigContext, StoredCredentials
from connectors.errors import (
    NotConfiguredError,
    OAuthExchangeError,
    ReauthorizationRequired,
    UpstreamAPIError,
)
from utils.llm_providers import BaseLLMProvider, get_llm_provider
from utils.retry import request_with_backoff
from utils.schemas import MergeAccount, SlackMessage, SlackNotification, TokenGrant

logger = logging.getLogger(__name__)

_SLACK_TOKEN_URL = "https://slack.com/api/oauth.v2.access"
_TRIAGE_CONCURRENCY = 5

_TRIAGE_PROMPT = """Analyze this Slack message and provide:
1. Urgency (Critical, High, Medium, Low)
2. Sentiment (Positive, Neutral, Negative)
3. Topic Summary (in 3-4 words)

Message: "{message}"
"""

_TRIAGE_SCHEMA = {
    "urgency": "Critical | High | Medium | Low",
    "sentiment": "Positive | Neutral | Negative",
    "topic": "string",
}


def _merge_url(path: str) -> str:
    return f"{config.merge_api_base.rstrip('/')}{path}"


def _iso_time(value: Any) -> str:
    """Normalise an upstream timestamp to ISO-8601 UTC; missing or bad → now."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()
        except (OverflowError, OSError, ValueError):
            logger.debug("Out-of-range epoch timestamp %r, using now", value)
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc).isoformat()
        except ValueError:
            logger.debug("Unparseable timestamp %r, using now", value)
    return datetime.now(timezone.utc).isoformat()


def format_message(msg: Dict[str, Any]) -> Dict[str, Any]:
    return SlackMessage(
        id=msg.get("remote_id"),
        text=msg.get("body") or "",
        user=msg.get("sender_name"),
        timestamp=msg.get("created_at"),
        channel=msg.get("channel_name") or "Unknown Channel",
        created_at=msg.get("created_at"),
    ).model_dump()


def format_notification(msg: Dict[str, Any]) -> SlackNotification:
    return SlackNotification(
        sender=msg.get("sender_name") or "Unknown",
        message=msg.get("message_content") or "",
        channel=msg.get("channel_name") or "General",
        time=_iso_time(msg.get("timestamp")),
    )


async def analyze_message(llm: BaseLLMProvider, message: str) -> Dict[str, str]:
    """Classify urgency / sentiment / topic; falls back to neutral defaults."""
    try:
        result = await llm.generate(
            _TRIAGE_PROMPT.format(message=message),
            temperature=config.notification_temperature,
            max_tokens=150,
            output_schema=_TRIAGE_SCHEMA,
        )
        if isinstance(result, str):
            result = json.loads(result)
        return {
            "urgency": str(result.get("urgency") or "Low"),
            "sentiment": str(result.get("sentiment") or "Neutral"),
            "topic": str(result.get("topic") or "No analysis"),
        }
    except Exception as exc:
        logger.warning("Message analysis failed: %s", exc)
        return {"urgency": "Low", "sentiment": "Neutral", "topic": "Analysis failed"}


class SlackConnector(BaseConnector):
    """Slack via direct OAuth v2 and Merge.dev."""

    @property
    def provider_name(self) -> str:
        return "slack"

    @property
    def display_name(self) -> str:
        return "Slack"

    @property
    def scopes(self) -> List[str]:
        return ["channels:history", "channels:read", "users:read"]

    def is_configured(self) -> bool:
        return super().is_configured() or bool(config.merge_api_key)

    def _require_merge_key(self) -> str:
        if not config.merge_api_key:
            logger.error("MERGE_API_KEY is not set")
            raise NotConfiguredError(
                "Missing Merge API configuration",
                detail="Missing API key configuration",
            )
        return config.merge_api_key

    # ── Merge.dev Link ──────────────────────────────────────────────────

    async def get_config(self, ctx: ConfigContext) -> Dict[str, Any]:
        """Create a Merge.dev link token for the Slack integration."""
        api_key = self._require_merge_key()

        async with self.http_client() as client:
            resp = await client.post(
                _merge_url("/api/ticketing/v1/link-token"),
                headers={"Authorization": f"Bearer {api_key}"},
                json={
                    "end_user_origin_id": ctx.user_id or "",
                    "end_user_organization_name": ctx.origin or ctx.request_origin,
                    "end_user_email_address": ctx.user_email or "user@example.com",
                    "categories": ["ticketing"],
                    "integration": "slack",
                },
            )

        try:
            data = resp.json()
        except ValueError:
            logger.error("Failed to parse Merge.dev response: %s", resp.text[:500])
            raise UpstreamAPIError(
                "Invalid response",
                detail="Received invalid response from authentication service",
            )

        if not resp.is_success:
            logger.error("Merge.dev link-token error: %s", data)
            raise UpstreamAPIError(
                "Configuration error",
                detail=(data.get("error") if isinstance(data, dict) else None)
                or "Failed to get Slack configuration from authentication service",
                status_code=400,
            )

        link_token = data.get("link_token") if isinstance(data, dict) else None
        if not link_token:
            logger.error("No link token in Merge.dev response")
            raise UpstreamAPIError(
                "Invalid response",
                detail="No authentication URL received from service",
            )

        return {"url": link_token, "state": create_state(self.provider_name)}

    async def exchange_merge_public_token(self, public_token: str) -> MergeAccount:
        """Trade the public token from Merge Link for a durable account token."""
        api_key = self._require_merge_key()

        async with self.http_client() as client:
            resp = await request_with_backoff(
                client,
                "GET",
                _merge_url(f"/api/integrations/account-token/{public_token}"),
                headers={"Authorization": f"Bearer {api_key}"},
            )

        if not resp.is_success:
            logger.error("Merge.dev account-token exchange failed: %d", resp.status_code)
            raise OAuthExchangeError(
                "Failed to link Slack account through Merge.dev",
                detail="Please try connecting Slack again.",
            )
        data = resp.json()
        if not data.get("account_token"):
            raise OAuthExchangeError("No account token received from Merge.dev")

        integration = data.get("integration") or {}
        return MergeAccount(
            account_token=data["account_token"],
            account_id=data.get("id"),
            integration=integration.get("slug") or integration.get("name"),
        )

    # ── Direct Slack OAuth ──────────────────────────────────────────────

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        client_id, client_secret = self.require_configured()

        async with self.http_client() as client:
            resp = await client.post(
                _SLACK_TOKEN_URL,
                data={
                    "code": code,
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "redirect_uri": redirect_uri,
                },
            )
        try:
            tokens = resp.json()
        except ValueError:
            tokens = {}

        logger.info(
            "Slack token response status: %d, token type: %s",
            resp.status_code,
            tokens.get("token_type", "not provided"),
        )
        if not resp.is_success or not tokens.get("access_token"):
            logger.error(
                "Slack token exchange failed: status=%d error=%s warning=%s",
                resp.status_code, tokens.get("error"), tokens.get("warning"),
            )
            raise OAuthExchangeError(
                tokens.get("error") or "Failed to exchange code for access token",
                detail="Failed to complete Slack authentication.",
            )

        team = tokens.get("team") or {}
        return TokenGrant(
            access_token=tokens["access_token"],
            refresh_token=tokens.get("refresh_token"),
            # Slack tokens don't expire unless token rotation is enabled
            expires_at=None,
            account_label=team.get("name"),
        )

    # ── Messages ────────────────────────────────────────────────────────

    async def _merge_messages(self, credentials: StoredCredentials) -> Dict[str, Any]:
        if not credentials.merge_account_token:
            raise ReauthorizationRequired(
                "No account token found",
                detail="Please reconnect your Slack account",
            )
        api_key = self._require_merge_key()

        async with self.http_client() as client:
            resp = await request_with_backoff(
                client,
                "GET",
                _merge_url("/api/ticketing/v1/messages"),
                params={"include_deleted": "false"},
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "X-Account-Token": credentials.merge_account_token,
                    "Accept": "application/json",
                },
            )

        if not resp.is_success:
            logger.error("Merge.dev API error %d: %s", resp.status_code, resp.text[:500])
            raise UpstreamAPIError("Failed to fetch messages from Merge.dev")
        return resp.json()

    async def fetch_data(self, credentials: StoredCredentials) -> Dict[str, Any]:
        data = await self._merge_messages(credentials)
        results = data.get("results") or []
        logger.info("Fetched %d Slack messages for user %s", len(results), credentials.user_id)
        return {"messages": [format_message(m) for m in results]}

    async def fetch_notifications(
        self,
        credentials: StoredCredentials,
        llm: Optional[BaseLLMProvider] = None,
    ) -> Dict[str, Any]:
        """
        Slack messages as prioritised notifications.

        Bot messages are dropped. When an LLM is available every message is
        triaged concurrently; otherwise the defaults stand.
        """
        data = await self._merge_messages(credentials)
        results = data.get("results")
        if not isinstance(results, list):
            logger.error("Unexpected Merge API response format")
            raise UpstreamAPIError("Invalid response format from Merge API")

        notifications = [
            format_notification(msg)
            for msg in results
            if msg and not msg.get("is_bot_message")
        ]

        llm = llm if llm is not None else get_llm_provider()
        if llm is not None and notifications:
            semaphore = asyncio.Semaphore(_TRIAGE_CONCURRENCY)

            async def _triage(note: SlackNotification) -> None:
                async with semaphore:
                    analysis = await analyze_message(llm, note.message)
                note.priority = analysis["urgency"]
                note.sentiment = analysis["sentiment"]
                note.topic = analysis["topic"]

            await asyncio.gather(*(_triage(n) for n in notifications))

        logger.info("Processed %d Slack notifications", len(notifications))
        return {"notifications": [n.model_dump() for n in notifications]}
