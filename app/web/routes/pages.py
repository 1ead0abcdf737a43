from fastapi import APIRouter, Depends

from app.core.config import settings
from app.core.cookies import SessionData
from app.core.i18n import get_request_locale
from app.core.session import get_optional_session

router = APIRouter()


@router.get("/")
async def home(session: SessionData | None = Depends(get_optional_session)) -> dict:
    """Landing document: who is signed in and which locale was negotiated."""
    return {
        "app": settings.APP_NAME,
        "authenticated": session is not None,
        "email": session.email if session is not None else None,
        "locale": get_request_locale(),
    }
