"""
Pydantic schemas shared by the connectors and the API layer.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ═══════════════════════════════════════════════════════════════════════════════
# OAuth exchange
# ═══════════════════════════════════════════════════════════════════════════════


class OAuthExchangeRequest(BaseModel):
    """Body posted by the OAuth callback page."""

    model_config = ConfigDict(populate_by_name=True)

    code: Optional[str] = None
    redirect_uri: Optional[str] = Field(default=None, alias="redirectUri")
    state: Optional[str] = None


class TokenGrant(BaseModel):
    """
    Normalised result of a code exchange.

    ``expires_at`` is ``None`` for tokens that never expire (Slack, classic
    GitHub OAuth apps). ``user`` is only populated where the provider
    returns a public identity worth showing (GitHub).
    """

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    account_label: Optional[str] = None
    user: Optional[Dict[str, Any]] = None

    def public_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }
        if self.user is not None:
            payload["user"] = self.user
        return payload


class RefreshedToken(BaseModel):
    access_token: str
    expires_at: Optional[datetime] = None
    refresh_token: Optional[str] = None


class MergeAccountRequest(BaseModel):
    public_token: str = Field(..., min_length=1)


class MergeAccount(BaseModel):
    account_token: str
    account_id: Optional[str] = None
    integration: Optional[str] = None


class WebhookRequest(BaseModel):
    webhook_url: str


# ═══════════════════════════════════════════════════════════════════════════════
# Display records
# ═══════════════════════════════════════════════════════════════════════════════


class GmailMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    subject: str = "No Subject"
    sender: str = Field(default="Unknown", alias="from")
    date: Optional[str] = None
    snippet: str = ""
    created_at: Optional[str] = None


class SlackMessage(BaseModel):
    id: Optional[str] = None
    text: str = ""
    user: Optional[str] = None
    timestamp: Optional[str] = None
    channel: str = "Unknown Channel"
    created_at: Optional[str] = None


class SlackNotification(BaseModel):
    priority: str = "Low"
    sender: str = "Unknown"
    message: str = ""
    channel: str = "General"
    time: str
    sentiment: str = "Neutral"
    topic: str = "Pending analysis"


class FigmaComment(BaseModel):
    id: str
    file_key: Optional[str] = None
    parent_id: Optional[str] = None
    message: str = ""
    created_at: Optional[str] = None
    resolved: bool = False
    client_meta: Dict[str, Any] = Field(default_factory=dict)


class FigmaFile(BaseModel):
    key: str
    name: str = ""
    thumbnail_url: Optional[str] = None
    last_modified: Optional[str] = None
    comments: List[FigmaComment] = Field(default_factory=list)


class GitHubUser(BaseModel):
    id: Optional[int] = None
    login: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    html_url: Optional[str] = None


class GitHubRepository(BaseModel):
    id: Optional[int] = None
    full_name: str
    description: Optional[str] = None
    language: Optional[str] = None
    stars: int = 0
    private: bool = False
    html_url: Optional[str] = None
    updated_at: Optional[str] = None


class GitHubActivity(BaseModel):
    user: GitHubUser
    repositories: List[GitHubRepository] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════════════
# Integration listing
# ═══════════════════════════════════════════════════════════════════════════════


class IntegrationSummary(BaseModel):
    """An integration row as exposed to the dashboard (no secrets)."""

    id: str
    provider: str
    account_label: Optional[str] = None
    connected: bool
    has_merge_account: bool = False
    merge_account_id: Optional[str] = None
    webhook_url: Optional[str] = None
    expires_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
