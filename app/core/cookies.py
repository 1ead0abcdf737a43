"""Signed session cookie for the primary account."""
from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException, Response, status
from itsdangerous import BadSignature, URLSafeSerializer

from app.core.config import settings

SESSION_COOKIE_NAME = "user_session"
_serializer = URLSafeSerializer(settings.SECRET_KEY, salt="session-cookie")


@dataclass(frozen=True)
class SessionData:
    user_id: int
    email: str


def make_session_value(user_id: int, email: str) -> str:
    return _serializer.dumps({"uid": user_id, "email": email})


def parse_session_cookie(raw_value: str | None) -> SessionData:
    """Parse and validate the signed session cookie."""
    if not raw_value:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        data = _serializer.loads(raw_value)
    except BadSignature:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session") from None

    user_id = data.get("uid") if isinstance(data, dict) else None
    email = data.get("email") if isinstance(data, dict) else None
    if not isinstance(user_id, int) or not email:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session")
    return SessionData(user_id=user_id, email=email)


def set_session_cookie(response: Response, user_id: int, email: str) -> None:
    """Set the session cookie with secure defaults."""
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=make_session_value(user_id, email),
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )


def clear_session_cookie(response: Response) -> None:
    """Remove the session cookie using the same security options."""
    response.delete_cookie(
        key=SESSION_COOKIE_NAME,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )
