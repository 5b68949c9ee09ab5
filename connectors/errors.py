"""
Exceptions raised by connectors and the token manager.

Every error carries an HTTP status and a user-facing ``detail`` hint; the
API layer renders them as ``{"error": ..., "detail": ...}``.
"""

from __future__ import annotations

from typing import Optional


class IntegrationError(Exception):
    """Base class for all integration failures."""

    status_code: int = 500
    default_detail: Optional[str] = None

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail if detail is not None else self.default_detail
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.detail:
            body["detail"] = self.detail
        return body


class NotConfiguredError(IntegrationError):
    """Server-side credentials for a provider are missing."""

    status_code = 500


class InvalidRequestError(IntegrationError):
    """The caller sent something unusable (missing code, bad origin, …)."""

    status_code = 400


class OAuthExchangeError(IntegrationError):
    """The provider refused the authorization code or returned no token."""

    status_code = 400


class IntegrationNotFoundError(IntegrationError):
    status_code = 404


class ReauthorizationRequired(IntegrationError):
    """Stored credentials can no longer be used; the user must reconnect."""

    status_code = 401


class UpstreamAPIError(IntegrationError):
    """A provider read API failed after retries."""

    status_code = 502
