import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.cookies import SessionData, clear_session_cookie, set_session_cookie
from app.core.database import get_db
from app.core.i18n import get_request_locale
from app.core.security import fingerprint, magic_link_manager
from app.core.session import get_optional_session
from app.domain.linking.repository import SqlLinkRepository
from app.domain.linking.sign_out import SignOutPropagator
from app.domain.magic_links.entities import InvalidEmail, normalize_ip
from app.domain.magic_links.policy import RateLimitReason
from app.domain.magic_links.schemas import MagicLinkRequest, MagicLinkSentOut
from app.domain.magic_links.services import MagicLinkService
from app.domain.users.models import User
from app.web.dependencies import (
    client_ip,
    get_link_repository,
    get_magic_link_service,
    get_sign_out_propagator,
)

router = APIRouter()
api_router = APIRouter()

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("app.security")

RATE_LIMIT_ERRORS = {
    RateLimitReason.COOLDOWN: "rate_limit_cooldown",
    RateLimitReason.HOURLY: "rate_limit_exceeded",
}


@api_router.post("/magic-link", response_model=MagicLinkSentOut)
async def request_magic_link(
    request: Request,
    body: MagicLinkRequest,
    service: MagicLinkService = Depends(get_magic_link_service),
):
    """Send a magic link, subject to the per-email cooldown and hourly cap."""
    try:
        result = await service.request(body.email, ip_address=normalize_ip(client_ip(request)))
    except InvalidEmail as exc:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "invalid_email", "detail": str(exc)},
        )

    if not result.sent:
        decision = result.decision
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "error": RATE_LIMIT_ERRORS[decision.reason],
                "retryAfterSeconds": decision.retry_after_seconds,
            },
            headers={"Retry-After": str(decision.retry_after_seconds)},
        )

    return MagicLinkSentOut(cooldown_seconds=settings.MAGIC_LINK_COOLDOWN_SECONDS)


async def _find_or_create_user(db: AsyncSession, repository: SqlLinkRepository, email: str) -> tuple[int, bool]:
    """Return the user id for ``email``, creating the user and its linked account row."""
    result = await db.execute(select(User.id).where(User.email == email))
    user_id = result.scalar_one_or_none()
    if user_id is not None:
        return user_id, False

    try:
        async with repository.transaction():
            user = User(email=email)
            db.add(user)
            await db.flush()
            user_id = user.id
            await repository.ensure_linked_account(user_id, preferred_locale=get_request_locale())
    except IntegrityError:
        # Lost a race with a concurrent verification of the same link.
        result = await db.execute(select(User.id).where(User.email == email))
        return result.scalar_one(), False

    return user_id, True


@router.get("/verify", name="verify_magic_link")
async def verify_magic_link(
    token: str,
    db: AsyncSession = Depends(get_db),
    repository: SqlLinkRepository = Depends(get_link_repository),
):
    """Verify magic link and log user in."""
    email = magic_link_manager.verify_token(token)

    if not email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired magic link",
        )

    email = email.strip().lower()
    user_id, created = await _find_or_create_user(db, repository, email)
    security_logger.info(
        "Magic link login [user_id=%s, email_fp=%s, created=%s]",
        user_id,
        fingerprint(email),
        created,
    )

    response = RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)
    set_session_cookie(response, user_id, email)
    return response


@router.api_route("/logout", methods=["GET", "POST"])
async def logout(
    session: SessionData | None = Depends(get_optional_session),
    propagator: SignOutPropagator = Depends(get_sign_out_propagator),
):
    """Log user out and drop the secondary account binding."""
    if session is not None:
        await propagator.on_sign_out(session.user_id)

    response = RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)
    clear_session_cookie(response)
    return response
