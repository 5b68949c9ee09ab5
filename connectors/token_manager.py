"""
Token manager — store / load / refresh / revoke per-user integration tokens.

Every route that touches a stored credential goes through here, so this is
the only place that knows tokens are encrypted at rest and that expiring
access tokens get refreshed before use.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import config
from connectors.base import BaseConnector, StoredCredentials
from connectors.encryption import decrypt_token, encrypt_token
from connectors.errors import IntegrationNotFoundError, ReauthorizationRequired
from database.models import Integration
from utils.schemas import IntegrationSummary, MergeAccount, TokenGrant

logger = logging.getLogger(__name__)

UserId = Union[str, uuid.UUID]


def _as_uuid(user_id: UserId) -> uuid.UUID:
    return user_id if isinstance(user_id, uuid.UUID) else uuid.UUID(str(user_id))


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back out
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = _aware(value)
    return value.isoformat() if value else None


def needs_refresh(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True when the token expires within the refresh leeway."""
    if expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    leeway = timedelta(seconds=config.token_refresh_leeway_seconds)
    return _aware(expires_at) < now + leeway


async def get_integration(
    session: AsyncSession, user_id: UserId, provider: str
) -> Optional[Integration]:
    result = await session.execute(
        select(Integration).where(
            Integration.user_id == _as_uuid(user_id),
            Integration.provider == provider,
        )
    )
    return result.scalar_one_or_none()


async def _get_or_create(
    session: AsyncSession, user_id: UserId, provider: str
) -> Integration:
    row = await get_integration(session, user_id, provider)
    if row is None:
        row = Integration(id=uuid.uuid4(), user_id=_as_uuid(user_id), provider=provider)
        session.add(row)
        logger.info("Created %s integration for user %s", provider, user_id)
    return row


async def store_grant(
    session: AsyncSession, user_id: UserId, provider: str, grant: TokenGrant
) -> Integration:
    """
    Upsert the integration for ``(user, provider)`` from a fresh code exchange.

    Reconnecting replaces the tokens. A missing refresh token in the new
    grant keeps the previous one, since Google only sends it on first consent.
    """
    row = await _get_or_create(session, user_id, provider)
    row.access_token = encrypt_token(grant.access_token)
    if grant.refresh_token:
        row.refresh_token = encrypt_token(grant.refresh_token)
    row.expires_at = grant.expires_at
    row.account_label = grant.account_label or row.account_label
    row.updated_at = datetime.now(timezone.utc)
    await session.flush()
    logger.info("Stored %s tokens for user %s", provider, user_id)
    return row


async def store_merge_account(
    session: AsyncSession, user_id: UserId, provider: str, account: MergeAccount
) -> Integration:
    row = await _get_or_create(session, user_id, provider)
    row.merge_account_token = encrypt_token(account.account_token)
    row.merge_account_id = account.account_id
    row.updated_at = datetime.now(timezone.utc)
    await session.flush()
    logger.info("Stored Merge.dev account for %s / user %s", provider, user_id)
    return row


async def load_credentials(
    session: AsyncSession, user_id: UserId, connector: BaseConnector
) -> StoredCredentials:
    """
    Decrypted credentials for a data read, refreshed first if near expiry.

    Raises ``IntegrationNotFoundError`` without a stored row and
    ``ReauthorizationRequired`` when an expiring token cannot be refreshed.
    """
    provider = connector.provider_name
    row = await get_integration(session, user_id, provider)
    if row is None:
        raise IntegrationNotFoundError(
            f"No {connector.display_name} integration found",
            detail=f"Please connect your {connector.display_name} account first.",
        )

    access_token = decrypt_token(row.access_token)
    refresh_token = decrypt_token(row.refresh_token)

    if access_token and needs_refresh(row.expires_at):
        if not (connector.supports_refresh and refresh_token):
            logger.info("%s token for user %s expired with no way to refresh", provider, user_id)
            raise ReauthorizationRequired(
                f"{connector.display_name} token expired",
                detail=f"Please reconnect your {connector.display_name} account.",
            )

        refreshed = await connector.refresh_access_token(refresh_token)
        access_token = refreshed.access_token
        row.access_token = encrypt_token(refreshed.access_token)
        row.expires_at = refreshed.expires_at
        # some providers rotate refresh tokens
        if refreshed.refresh_token:
            refresh_token = refreshed.refresh_token
            row.refresh_token = encrypt_token(refreshed.refresh_token)
        row.updated_at = datetime.now(timezone.utc)
        await session.flush()
        logger.info("Refreshed %s token for user %s", provider, user_id)

    return StoredCredentials(
        user_id=str(row.user_id),
        provider=provider,
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=_aware(row.expires_at),
        merge_account_token=decrypt_token(row.merge_account_token),
        merge_account_id=row.merge_account_id,
    )


async def get_active_token(
    session: AsyncSession, user_id: UserId, connector: BaseConnector
) -> str:
    """Just the usable access token for ``(user, provider)``."""
    credentials = await load_credentials(session, user_id, connector)
    return connector.require_access_token(credentials)


def summarize(row: Integration) -> IntegrationSummary:
    return IntegrationSummary(
        id=str(row.id),
        provider=row.provider,
        account_label=row.account_label,
        connected=bool(row.access_token or row.merge_account_token),
        has_merge_account=bool(row.merge_account_token),
        merge_account_id=row.merge_account_id,
        webhook_url=row.webhook_url,
        expires_at=_iso(row.expires_at),
        created_at=_iso(row.created_at),
        updated_at=_iso(row.updated_at),
    )


async def list_integrations(session: AsyncSession, user_id: UserId) -> List[IntegrationSummary]:
    """All integrations for a user, without any token material."""
    result = await session.execute(
        select(Integration)
        .where(Integration.user_id == _as_uuid(user_id))
        .order_by(Integration.provider)
    )
    return [summarize(row) for row in result.scalars().all()]


async def set_webhook_url(
    session: AsyncSession, user_id: UserId, connector: BaseConnector, webhook_url: str
) -> Integration:
    """Attach a webhook URL, creating a token-less row when none exists yet."""
    row = await _get_or_create(session, user_id, connector.provider_name)
    row.webhook_url = webhook_url
    row.updated_at = datetime.now(timezone.utc)
    await session.flush()
    logger.info("Updated %s webhook for user %s", connector.provider_name, user_id)
    return row


async def disconnect(
    session: AsyncSession, user_id: UserId, connector: BaseConnector
) -> bool:
    """
    Revoke at the provider (best effort), then delete the row.

    Returns False if there was nothing to delete.
    """
    row = await get_integration(session, user_id, connector.provider_name)
    if row is None:
        return False

    access_token = decrypt_token(row.access_token)
    if access_token:
        revoked = await connector.revoke_token(access_token)
        if not revoked:
            logger.info(
                "%s token for user %s was not revoked upstream", connector.provider_name, user_id
            )

    await session.delete(row)
    await session.flush()
    logger.info("Disconnected %s for user %s", connector.provider_name, user_id)
    return True
