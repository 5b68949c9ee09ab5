"""
Token encryption — encrypt / decrypt OAuth and Merge.dev tokens at rest.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
The key comes from ``config.token_encryption_key`` (env var:
``TOKEN_ENCRYPTION_KEY``). Without a key, tokens are stored as plaintext and
a warning is logged once.
"""

from __future__ import annotations

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from config.settings import config

logger = logging.getLogger(__name__)

_fernet: Optional[Fernet] = None
_initialised = False


def _init_fernet() -> None:
    global _fernet, _initialised

    _initialised = True
    key = config.token_encryption_key
    if not key:
        logger.warning(
            "TOKEN_ENCRYPTION_KEY not set — integration tokens will be stored as plaintext"
        )
        _fernet = None
        return

    try:
        _fernet = Fernet(key.encode() if isinstance(key, str) else key)
        logger.info("Token encryption enabled (Fernet)")
    except (ValueError, TypeError) as exc:
        logger.error("Invalid TOKEN_ENCRYPTION_KEY, storing tokens as plaintext: %s", exc)
        _fernet = None


def reset() -> None:
    """Forget the cached cipher so the next call re-reads the config."""
    global _fernet, _initialised
    _fernet = None
    _initialised = False


def encrypt_token(plaintext: Optional[str]) -> Optional[str]:
    """Encrypt a token for storage; ``None`` and ``""`` pass through."""
    if not plaintext:
        return plaintext
    if not _initialised:
        _init_fernet()
    if _fernet is None:
        return plaintext
    return _fernet.encrypt(plaintext.encode()).decode()


def decrypt_token(ciphertext: Optional[str]) -> Optional[str]:
    """
    Decrypt a stored token.

    Values written before encryption was enabled are not valid Fernet
    tokens and are returned unchanged.
    """
    if not ciphertext:
        return ciphertext
    if not _initialised:
        _init_fernet()
    if _fernet is None:
        return ciphertext
    try:
        return _fernet.decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        return ciphertext


def is_encryption_enabled() -> bool:
    if not _initialised:
        _init_fernet()
    return _fernet is not None
