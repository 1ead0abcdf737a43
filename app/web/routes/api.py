"""JSON API routes."""
from __future__ import annotations

from fastapi import APIRouter

from app.web.routes import auth
from app.web.routes import bot_link

router = APIRouter()

router.include_router(auth.api_router, prefix="/auth", tags=["auth"])
router.include_router(bot_link.router, prefix="/bot-link", tags=["bot-link"])
