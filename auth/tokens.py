"""
Signed, expiring tokens — dashboard bearer tokens and OAuth ``state``.

Both are ``base64(json payload) + "." + hex HMAC-SHA256`` with an ``exp``
claim. Bearer tokens are keyed with ``config.jwt_secret``; OAuth state with
``config.oauth_state_secret`` so one can never be replayed as the other.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Any, Dict

from fastapi import HTTPException, status

from config.settings import config
from connectors.errors import InvalidRequestError


class SignatureError(ValueError):
    """Token is malformed, tampered with or expired."""


def sign_payload(payload: Dict[str, Any], secret: str, ttl_seconds: int) -> str:
    body = dict(payload, exp=int(time.time()) + ttl_seconds)
    raw = json.dumps(body, separators=(",", ":"), sort_keys=True).encode()
    sig = hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()
    return urlsafe_b64encode(raw).decode() + "." + sig


def unsign_payload(token: str, secret: str) -> Dict[str, Any]:
    """Return the payload of a valid token or raise ``SignatureError``."""
    parts = token.split(".", 1)
    if len(parts) != 2:
        raise SignatureError("bad format")
    try:
        raw = urlsafe_b64decode(parts[0].encode())
    except (ValueError, TypeError) as exc:
        raise SignatureError("bad encoding") from exc

    expected_sig = hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(parts[1], expected_sig):
        raise SignatureError("bad signature")

    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise SignatureError("bad payload") from exc
    if not isinstance(payload, dict):
        raise SignatureError("bad payload")
    if payload.get("exp", 0) < time.time():
        raise SignatureError("token expired")
    return payload


# ── Dashboard bearer tokens ────────────────────────────────────────────


def create_token(user_id: str) -> str:
    """Create a signed bearer token for ``user_id``."""
    return sign_payload({"user_id": user_id}, config.jwt_secret, config.jwt_expiry_seconds)


def verify_token(token: str) -> str:
    """
    Verify a bearer token and return its ``user_id``.

    Raises ``HTTPException(401)`` on invalid or expired tokens.
    """
    try:
        payload = unsign_payload(token, config.jwt_secret)
        return str(payload["user_id"])
    except (SignatureError, KeyError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or expired token: {exc}",
        )


# ── OAuth state (CSRF protection) ──────────────────────────────────────


def create_state(provider: str) -> str:
    """Opaque state bound to ``provider`` for the authorize → callback trip."""
    return sign_payload(
        {"provider": provider, "nonce": secrets.token_urlsafe(8)},
        config.oauth_state_secret,
        config.oauth_state_ttl_seconds,
    )


def verify_state(state: str, provider: str) -> None:
    """Raise ``InvalidRequestError`` unless ``state`` is valid for ``provider``."""
    try:
        payload = unsign_payload(state, config.oauth_state_secret)
    except SignatureError as exc:
        raise InvalidRequestError(f"Invalid or expired OAuth state: {exc}")
    if payload.get("provider") != provider:
        raise InvalidRequestError("OAuth state was issued for a different provider")
