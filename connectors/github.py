"""
GitHubConnector — OAuth App flow plus a small activity feed.

The feed is the authenticated user's profile and their most recently
updated repositories, reshaped for the dashboard panel.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List

import httpx

from auth.tokens import create_state
from config.settings import config
from connectors.base import BaseConnector, ConfigContext, StoredCredentials
from connectors.errors import (
    InvalidRequestError,
    NotConfiguredError,
    OAuthExchangeError,
    ReauthorizationRequired,
    UpstreamAPIError,
)
from utils.retry import request_with_backoff
from utils.schemas import GitHubActivity, GitHubRepository, GitHubUser, TokenGrant
from utils.validators import is_allowed_origin

logger = logging.getLogger(__name__)

_GH_TOKEN_URL = "https://github.com/login/oauth/access_token"
_GH_API = "https://api.github.com"


def _gh_headers(token: str) -> Dict[str, str]:
    """Standard GitHub API headers."""
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
        "User-Agent": config.github_user_agent,
    }


class GitHubConnector(BaseConnector):
    """OAuth2 connector for GitHub."""

    @property
    def provider_name(self) -> str:
        return "github"

    @property
    def display_name(self) -> str:
        return "GitHub"

    @property
    def scopes(self) -> List[str]:
        return ["repo", "read:user"]

    async def get_config(self, ctx: ConfigContext) -> Dict[str, Any]:
        if not config.github_client_id:
            logger.error("GITHUB_CLIENT_ID not found in environment")
            raise NotConfiguredError(
                "GitHub Client ID not configured",
                detail="Failed to retrieve GitHub configuration",
            )

        origin = ctx.origin
        if not is_allowed_origin(
            origin, config.allowed_origin_hosts, config.allowed_origin_suffixes
        ):
            logger.warning("Rejected GitHub config request from origin %s", origin)
            if origin:
                message = f"Invalid origin: {origin}. Must be a local or allowed preview domain."
            else:
                message = "Origin header is required"
            raise InvalidRequestError(message, detail="Failed to retrieve GitHub configuration")

        redirect_uri = f"{origin.rstrip('/')}/oauth-callback.html"
        logger.info("GitHub redirect URI %s (must be registered on the OAuth app)", redirect_uri)
        return {
            "clientId": config.github_client_id,
            "redirectUri": redirect_uri,
            "scopes": " ".join(self.scopes),
            "state": create_state(self.provider_name),
            "message": "GitHub config retrieved successfully",
        }

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        """Exchange the code for a token, then fetch the user profile."""
        client_id, client_secret = self.require_configured()

        async with self.http_client() as client:
            token_resp = await client.post(
                _GH_TOKEN_URL,
                json={
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "code": code,
                    "redirect_uri": redirect_uri,
                },
                headers={
                    "Accept": "application/json",
                    "User-Agent": config.github_user_agent,
                },
            )
            logger.info("GitHub token response status: %d", token_resp.status_code)
            try:
                token_data = token_resp.json()
            except ValueError:
                raise OAuthExchangeError(
                    f"GitHub OAuth error: unexpected response ({token_resp.status_code})",
                    detail="Failed to complete GitHub authentication",
                )

            if "error" in token_data:
                raise OAuthExchangeError(
                    f"GitHub OAuth error: {token_data.get('error_description') or token_data['error']}",
                    detail="Failed to complete GitHub authentication",
                )
            access_token = token_data.get("access_token")
            if not access_token:
                raise OAuthExchangeError(
                    "No access token received from GitHub",
                    detail="Failed to complete GitHub authentication",
                )

            user_resp = await client.get(f"{_GH_API}/user", headers=_gh_headers(access_token))
            if user_resp.status_code != 200:
                logger.error("Failed to fetch GitHub user: %d", user_resp.status_code)
                raise OAuthExchangeError(
                    "Failed to fetch GitHub user information",
                    detail="Failed to complete GitHub authentication",
                )
            user = user_resp.json()

        return TokenGrant(
            access_token=access_token,
            refresh_token=token_data.get("refresh_token"),
            # classic OAuth App tokens never expire; GitHub Apps send expires_in
            expires_at=self.expires_at(token_data.get("expires_in")),
            account_label=user.get("login"),
            user={"login": user.get("login"), "avatar_url": user.get("avatar_url")},
        )

    async def revoke_token(self, access_token: str) -> bool:
        """Revoke the token via GitHub's OAuth application API."""
        client_id, client_secret = self.client_credentials()
        if not client_id or not client_secret:
            return False
        try:
            async with self.http_client() as client:
                resp = await client.request(
                    "DELETE",
                    f"{_GH_API}/applications/{client_id}/token",
                    auth=(client_id, client_secret),
                    json={"access_token": access_token},
                    headers={"Accept": "application/vnd.github+json"},
                )
                return resp.status_code == 204
        except httpx.HTTPError:
            logger.warning("GitHub token revocation failed", exc_info=True)
            return False

    async def _get(self, client: httpx.AsyncClient, path: str, token: str, **params) -> Any:
        resp = await request_with_backoff(
            client, "GET", f"{_GH_API}{path}", headers=_gh_headers(token), params=params or None,
        )
        if resp.status_code == 401:
            raise ReauthorizationRequired(
                "GitHub rejected the stored token",
                detail="Please reconnect your GitHub account.",
            )
        if resp.status_code != 200:
            logger.error("GitHub %s returned %d: %s", path, resp.status_code, resp.text[:500])
            raise UpstreamAPIError(f"GitHub API error: {resp.text}")
        return resp.json()

    async def fetch_data(self, credentials: StoredCredentials) -> Dict[str, Any]:
        token = self.require_access_token(credentials)

        async with self.http_client() as client:
            user, repos = await asyncio.gather(
                self._get(client, "/user", token),
                self._get(
                    client,
                    "/user/repos",
                    token,
                    sort="updated",
                    per_page=config.github_repo_limit,
                ),
            )

        logger.info("GitHub activity for %s: %d repositories", user.get("login"), len(repos))
        activity = GitHubActivity(
            user=GitHubUser(
                id=user.get("id"),
                login=user.get("login", ""),
                name=user.get("name"),
                avatar_url=user.get("avatar_url"),
                html_url=user.get("html_url"),
            ),
            repositories=[
                GitHubRepository(
                    id=r.get("id"),
                    full_name=r["full_name"],
                    description=r.get("description"),
                    language=r.get("language"),
                    stars=r.get("stargazers_count", 0),
                    private=r.get("private", False),
                    html_url=r.get("html_url"),
                    updated_at=r.get("updated_at"),
                )
                for r in repos
            ],
        )
        return activity.model_dump()
