import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health", summary="Health check")
async def health(response: Response, db: AsyncSession = Depends(get_db)) -> dict[str, object]:
    """Readiness of the token store and the linking configuration.

    Answers 503 when the database is unreachable, since neither tokens nor
    rate-limit attempts can be read without it.
    """
    try:
        await db.execute(text("SELECT 1"))
        db_status = "ok"
    except (SQLAlchemyError, OSError):
        db_status = "error"
        logger.exception("Database healthcheck failed")
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "database": db_status,
        "rateLimitBackend": settings.RATE_LIMIT_BACKEND,
        "botLinking": bool(settings.BOT_HANDLE and settings.BOT_API_KEY),
    }
