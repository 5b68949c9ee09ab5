"""
BaseConnector — the per-provider surface every integration implements.

Each provider (Google, GitHub, Slack, Figma) subclasses this and supplies:

  • ``get_config``      — client ID, redirect URI and scopes for the UI
  • ``exchange_code``   — authorization code → ``TokenGrant``
  • ``fetch_data``      — stored credentials → display records

Refresh and revocation are optional; the defaults say "not supported".
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx

from config.settings import config
from connectors.errors import NotConfiguredError, ReauthorizationRequired
from utils.schemas import RefreshedToken, TokenGrant


@dataclass
class ConfigContext:
    """What a config request knows about its caller."""

    origin: Optional[str]          # browser ``Origin`` header, if any
    request_origin: str            # scheme://host the request was served on
    user_id: Optional[str] = None
    user_email: Optional[str] = None


@dataclass
class StoredCredentials:
    """Decrypted view of an integration row handed to ``fetch_data``."""

    user_id: str
    provider: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    merge_account_token: Optional[str] = None
    merge_account_id: Optional[str] = None


class BaseConnector(ABC):
    """Abstract base for all provider connectors."""

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Slug stored in ``integrations.provider``: 'google', 'github', …"""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        ...

    @property
    @abstractmethod
    def scopes(self) -> List[str]:
        ...

    @property
    def supports_refresh(self) -> bool:
        return False

    # ── OAuth flow ──────────────────────────────────────────────────────

    @abstractmethod
    async def get_config(self, ctx: ConfigContext) -> Dict[str, Any]:
        """Return what the browser needs to start the authorize redirect."""
        ...

    @abstractmethod
    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        """
        Exchange an authorization code for tokens.

        ``redirect_uri`` has already been normalised by the caller and must
        match the one used for the authorize redirect.
        """
        ...

    async def refresh_access_token(self, refresh_token: str) -> RefreshedToken:
        raise ReauthorizationRequired(
            f"{self.display_name} tokens cannot be refreshed",
            detail=f"Please reconnect your {self.display_name} account.",
        )

    async def revoke_token(self, access_token: str) -> bool:
        """Revoke at the provider. Returns False when unsupported."""
        return False

    # ── Data ────────────────────────────────────────────────────────────

    @abstractmethod
    async def fetch_data(self, credentials: StoredCredentials) -> Dict[str, Any]:
        """Call the provider's read API and reshape into display records."""
        ...

    # ── Helpers ─────────────────────────────────────────────────────────

    def client_credentials(self) -> tuple[str, str]:
        return config.credentials_for(self.provider_name)

    def is_configured(self) -> bool:
        client_id, client_secret = self.client_credentials()
        return bool(client_id and client_secret)

    def require_configured(self) -> tuple[str, str]:
        client_id, client_secret = self.client_credentials()
        if not client_id or not client_secret:
            raise NotConfiguredError(
                f"{self.display_name} credentials not properly configured",
                detail=f"Failed to retrieve {self.display_name} configuration.",
            )
        return client_id, client_secret

    def require_access_token(self, credentials: StoredCredentials) -> str:
        if not credentials.access_token:
            raise ReauthorizationRequired(
                f"No {self.display_name} access token found",
                detail=f"Please reconnect your {self.display_name} account.",
            )
        return credentials.access_token

    @staticmethod
    def http_client() -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=config.http_timeout)

    @staticmethod
    def expires_at(expires_in: Optional[int | float | str]) -> Optional[datetime]:
        """Absolute expiry for a relative ``expires_in`` (seconds)."""
        if expires_in in (None, ""):
            return None
        return datetime.now(timezone.utc) + timedelta(seconds=int(float(expires_in)))
