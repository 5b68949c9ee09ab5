"""
Request dependencies for the dashboard API.

Every integration route resolves the caller from the dashboard bearer token
issued at register or login, so stored provider tokens are always read
and written under that user's id.
"""

from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from auth.tokens import verify_token
from database.session import get_db_session

_bearer_scheme = HTTPBearer()


async def db_session(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session for route handlers."""
    yield session


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> str:
    """Dashboard ``user_id`` from the bearer token; expired or forged tokens are a 401."""
    return verify_token(credentials.credentials)
