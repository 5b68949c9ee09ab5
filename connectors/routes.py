"""
Integration API routes — config, OAuth exchange, data reads, management.

Route prefix: /api/v1/integrations
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, cast

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session, get_current_user_id
from auth.tokens import verify_state
from connectors import token_manager
from connectors.base import BaseConnector, ConfigContext
from connectors.errors import IntegrationNotFoundError, InvalidRequestError
from connectors.registry import ConnectorRegistry
from connectors.slack import SlackConnector
from database.models import User
from utils.schemas import (
    IntegrationSummary,
    MergeAccountRequest,
    OAuthExchangeRequest,
    WebhookRequest,
)
from utils.validators import clean_redirect_uri, origin_of, validate_webhook_url

logger = logging.getLogger(__name__)

router = APIRouter(tags=["integrations"])


def _connector(provider: str) -> BaseConnector:
    connector = ConnectorRegistry().get(provider)
    if connector is None:
        raise IntegrationNotFoundError(f"Unknown provider '{provider}'")
    return connector


def _slack() -> SlackConnector:
    return cast(SlackConnector, _connector("slack"))


# ── Listing ────────────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers() -> List[Dict[str, Any]]:
    """Known providers and whether server credentials are set. No auth."""
    return ConnectorRegistry().list_providers()


@router.get("", response_model=List[IntegrationSummary])
async def list_integrations(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> List[IntegrationSummary]:
    return await token_manager.list_integrations(session, user_id)


# ── Slack-only routes (declared before the /{provider} patterns) ───────


@router.post("/slack/merge-account")
async def link_merge_account(
    req: MergeAccountRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Trade a Merge Link public token for a stored account token."""
    connector = _slack()
    account = await connector.exchange_merge_public_token(req.public_token)
    row = await token_manager.store_merge_account(session, user_id, connector.provider_name, account)
    await session.commit()
    return {
        "success": True,
        "merge_account_id": row.merge_account_id,
        "integration": account.integration,
    }


@router.get("/slack/notifications")
async def slack_notifications(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    connector = _slack()
    credentials = await token_manager.load_credentials(session, user_id, connector)
    return await connector.fetch_notifications(credentials)


# ── Per-provider OAuth ─────────────────────────────────────────────────


@router.get("/{provider}/config")
async def get_config(
    provider: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """What the browser needs to start the provider's authorize redirect."""
    connector = _connector(provider)
    user = await session.get(User, uuid.UUID(user_id))
    ctx = ConfigContext(
        origin=request.headers.get("origin"),
        request_origin=origin_of(str(request.base_url)),
        user_id=user_id,
        user_email=user.email if user else None,
    )
    return await connector.get_config(ctx)


@router.post("/{provider}/oauth")
async def exchange_code(
    provider: str,
    req: OAuthExchangeRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """
    Exchange an authorization code and store the resulting tokens.

    The token payload is also returned so the callback page can confirm
    the connection.
    """
    connector = _connector(provider)
    if not req.code:
        raise InvalidRequestError("No authorization code provided")
    redirect_uri = clean_redirect_uri(req.redirect_uri)
    if req.state:
        verify_state(req.state, provider)

    logger.info("Exchanging %s code (redirect %s)", provider, redirect_uri)
    grant = await connector.exchange_code(req.code, redirect_uri)
    await token_manager.store_grant(session, user_id, provider, grant)
    await session.commit()
    return grant.public_payload()


# ── Data ───────────────────────────────────────────────────────────────


@router.get("/{provider}/data")
async def fetch_data(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    connector = _connector(provider)
    credentials = await token_manager.load_credentials(session, user_id, connector)
    # keep a refreshed token even if the read below fails
    await session.commit()
    return await connector.fetch_data(credentials)


# ── Management ─────────────────────────────────────────────────────────


@router.put("/{provider}/webhook", response_model=IntegrationSummary)
async def set_webhook(
    provider: str,
    req: WebhookRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> IntegrationSummary:
    connector = _connector(provider)
    webhook_url = validate_webhook_url(req.webhook_url)
    row = await token_manager.set_webhook_url(session, user_id, connector, webhook_url)
    await session.commit()
    return token_manager.summarize(row)


@router.delete("/{provider}", status_code=status.HTTP_200_OK)
async def disconnect(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Revoke (best effort) and delete the caller's integration."""
    connector = _connector(provider)
    deleted = await token_manager.disconnect(session, user_id, connector)
    if not deleted:
        raise IntegrationNotFoundError(f"No {connector.display_name} integration found")
    await session.commit()
    return {"status": "disconnected", "provider": provider}
