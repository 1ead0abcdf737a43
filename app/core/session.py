"""Session helpers and dependencies."""
from __future__ import annotations

from typing import Optional

from fastapi import Cookie, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cookies import SESSION_COOKIE_NAME, SessionData, parse_session_cookie
from app.core.database import get_db
from app.domain.users.models import User


async def get_session_data(
    session_value: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
) -> SessionData:
    """Return the parsed session stored in the cookie."""
    return parse_session_cookie(session_value)


async def get_current_user(
    session: SessionData = Depends(get_session_data),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load the current user from the database using the session value."""
    result = await db.execute(select(User).where(User.id == session.user_id))
    user = result.scalar_one_or_none()

    if not user or user.email != session.email:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    return user


async def get_optional_session(
    session_value: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
) -> SessionData | None:
    """Session data when a valid cookie is present, None otherwise."""
    if not session_value:
        return None
    try:
        return parse_session_cookie(session_value)
    except HTTPException:
        return None
