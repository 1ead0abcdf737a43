"""FastAPI wiring for the linking and magic link services."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.rate_limit import AttemptStore, memory_attempt_store
from app.core.security import constant_time_equals, magic_link_manager
from app.domain.auth_tokens.lifecycle import TokenLifecycleManager
from app.domain.linking.coordinator import LinkingCoordinator
from app.domain.linking.repository import SqlLinkRepository
from app.domain.linking.sign_out import SignOutPropagator
from app.domain.magic_links.policy import RateLimitPolicy
from app.domain.magic_links.repository import SqlAttemptStore
from app.domain.magic_links.services import MagicLinkService
from app.services.mailer import ResendMailer

security_logger = logging.getLogger("app.security")


def get_link_repository(db: AsyncSession = Depends(get_db)) -> SqlLinkRepository:
    return SqlLinkRepository(db)


def get_lifecycle_manager(
    repository: SqlLinkRepository = Depends(get_link_repository),
) -> TokenLifecycleManager:
    return TokenLifecycleManager(
        repository,
        bot_handle=settings.BOT_HANDLE,
        link_host=settings.BOT_LINK_HOST,
        ttl=timedelta(minutes=settings.AUTH_TOKEN_TTL_MINUTES),
    )


def get_linking_coordinator(
    repository: SqlLinkRepository = Depends(get_link_repository),
    lifecycle: TokenLifecycleManager = Depends(get_lifecycle_manager),
) -> LinkingCoordinator:
    return LinkingCoordinator(repository, lifecycle)


def get_sign_out_propagator(
    repository: SqlLinkRepository = Depends(get_link_repository),
) -> SignOutPropagator:
    return SignOutPropagator(repository)


def get_attempt_store(db: AsyncSession = Depends(get_db)) -> AttemptStore:
    if settings.RATE_LIMIT_BACKEND == "memory":
        return memory_attempt_store
    return SqlAttemptStore(db)


def get_mailer() -> ResendMailer:
    return ResendMailer()


def magic_link_verify_url(request: Request) -> str:
    if settings.PUBLIC_BASE_URL:
        path = request.app.url_path_for("verify_magic_link")
        return f"{settings.PUBLIC_BASE_URL.rstrip('/')}{path}"
    return str(request.url_for("verify_magic_link"))


def get_magic_link_service(
    request: Request,
    store: AttemptStore = Depends(get_attempt_store),
    mailer: ResendMailer = Depends(get_mailer),
) -> MagicLinkService:
    verify_url = magic_link_verify_url(request)

    def build_link(email: str) -> str:
        return f"{verify_url}?token={magic_link_manager.generate_token(email)}"

    return MagicLinkService(
        store,
        mailer,
        link_builder=build_link,
        policy=RateLimitPolicy(
            cooldown_seconds=settings.MAGIC_LINK_COOLDOWN_SECONDS,
            hourly_limit=settings.MAGIC_LINK_HOURLY_LIMIT,
            window_seconds=settings.MAGIC_LINK_WINDOW_SECONDS,
        ),
        send_timeout=settings.EMAIL_SEND_TIMEOUT_SECONDS,
    )


async def require_bot_client(
    x_bot_api_key: Optional[str] = Header(None, alias="X-Bot-Api-Key"),
) -> None:
    """Only the secondary client, holding the shared key, may call bot endpoints."""
    expected = settings.BOT_API_KEY
    if not expected or not x_bot_api_key or not constant_time_equals(x_bot_api_key, expected):
        security_logger.warning("Bot credentials rejected [presented=%s]", x_bot_api_key is not None)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid bot credentials")


def client_ip(request: Request) -> str | None:
    return (
        request.headers.get("x-forwarded-for")
        or request.headers.get("x-real-ip")
        or (request.client.host if request.client else None)
    )
