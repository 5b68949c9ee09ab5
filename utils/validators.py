"""
Validators for caller-supplied URLs (redirect URIs, origins, webhooks).
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional
from urllib.parse import urlsplit, urlunsplit

from connectors.errors import InvalidRequestError

logger = logging.getLogger(__name__)


def clean_redirect_uri(redirect_uri: Optional[str]) -> str:
    """
    Normalise an OAuth redirect URI.

    The value must be an absolute http(s) URL. Scheme and host are
    lower-cased and a single trailing slash is removed, so the URI sent to
    the token endpoint matches the one registered with the provider.
    """
    if not redirect_uri:
        raise InvalidRequestError("No redirect URI provided")

    parts = urlsplit(redirect_uri.strip())
    if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
        raise InvalidRequestError(f"Invalid redirect URI: {redirect_uri}")

    cleaned = urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), parts.path, parts.query, parts.fragment)
    )
    if cleaned.endswith("/"):
        cleaned = cleaned[:-1]
    return cleaned


def is_allowed_origin(
    origin: Optional[str],
    hosts: Iterable[str],
    suffixes: Iterable[str],
) -> bool:
    """Accept exact local hosts and any host under a preview-domain suffix."""
    if not origin:
        logger.debug("No origin provided")
        return False

    parts = urlsplit(origin)
    hostname = parts.hostname
    if parts.scheme not in ("http", "https") or not hostname:
        logger.debug("Invalid origin format: %s", origin)
        return False

    if hostname in set(hosts):
        return True
    for suffix in suffixes:
        if hostname == suffix or hostname.endswith("." + suffix):
            return True

    logger.debug("Origin not allowed: %s", origin)
    return False


def origin_of(url: str) -> str:
    """``scheme://host[:port]`` of an absolute URL."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def validate_webhook_url(url: Optional[str]) -> str:
    parts = urlsplit((url or "").strip())
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidRequestError(
            "Please enter a webhook URL",
            detail="Webhook URLs must be absolute http(s) URLs.",
        )
    return urlunsplit(parts)
