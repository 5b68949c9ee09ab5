"""
Password hashing and verification with bcrypt.
"""

from __future__ import annotations

import bcrypt

from config.settings import config

# bcrypt silently ignores everything past 72 bytes
_MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    """Hash a password (auto-salted, work factor from ``config.bcrypt_rounds``)."""
    encoded = password.encode()
    if len(encoded) > _MAX_PASSWORD_BYTES:
        raise ValueError("Password is too long")
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=config.bcrypt_rounds)).decode()


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except (ValueError, TypeError):
        return False
