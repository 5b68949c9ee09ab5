"""
Account routes — register and log in to the dashboard.

Route prefix: /api/v1/auth
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session, get_current_user_id
from auth.password import hash_password, verify_password
from auth.tokens import create_token
from database.models import User

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


class RegisterRequest(BaseModel):
    display_name: str = Field(..., min_length=2, max_length=128)
    email: str = Field(..., min_length=5, max_length=255)
    password: str = Field(..., min_length=8, max_length=72)


class LoginRequest(BaseModel):
    email: str
    password: str


class AuthResponse(BaseModel):
    user_id: str
    display_name: str
    email: str
    token: str


def _auth_response(user: User) -> Dict[str, Any]:
    return {
        "user_id": str(user.user_id),
        "display_name": user.display_name or "",
        "email": user.email,
        "token": create_token(str(user.user_id)),
    }


@router.post("/register", response_model=AuthResponse)
async def register(
    req: RegisterRequest,
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    email = req.email.strip().lower()
    result = await session.execute(select(User).where(func.lower(User.email) == email))
    if result.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    user = User(
        user_id=uuid.uuid4(),
        email=email,
        display_name=req.display_name,
        password_hash=hash_password(req.password),
    )
    session.add(user)
    await session.commit()

    logger.info("Registered user %s", user.user_id)
    return _auth_response(user)


@router.post("/login", response_model=AuthResponse)
async def login(
    req: LoginRequest,
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    email = req.email.strip().lower()
    result = await session.execute(select(User).where(func.lower(User.email) == email))
    user = result.scalar_one_or_none()

    if user is None or not verify_password(req.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    logger.info("Login: %s", user.user_id)
    return _auth_response(user)


@router.get("/me")
async def me(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Return the profile behind the current bearer token."""
    user = await session.get(User, uuid.UUID(user_id))
    if user is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unknown user")
    return {
        "user_id": str(user.user_id),
        "display_name": user.display_name or "",
        "email": user.email,
    }
