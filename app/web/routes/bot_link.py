"""Bot account linking: token issuance for the owner, verification for the bot."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Path, status
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.i18n import to_secondary_locale
from app.core.session import get_current_user
from app.domain.auth_tokens.lifecycle import TokenLifecycleManager
from app.domain.auth_tokens.results import TokenError
from app.domain.linking.coordinator import LinkingCoordinator
from app.domain.linking.repository import SqlLinkRepository
from app.domain.linking.schemas import (
    MAX_SECONDARY_ACCOUNT_ID,
    LinkStatusOut,
    LinkVerifyOut,
    LinkVerifyRequest,
    SecondaryAccountOut,
    SecondaryUnlinkOut,
    SecondaryUnlinkRequest,
    TokenIssueOut,
)
from app.domain.users.models import User
from app.web.dependencies import (
    get_lifecycle_manager,
    get_link_repository,
    get_linking_coordinator,
    require_bot_client,
)

logger = logging.getLogger(__name__)

router = APIRouter()

LINK_ERROR_STATUS = {
    TokenError.INVALID_FORMAT: status.HTTP_400_BAD_REQUEST,
    TokenError.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    TokenError.EXPIRED: status.HTTP_410_GONE,
    TokenError.INVALIDATED: status.HTTP_410_GONE,
    TokenError.USED: status.HTTP_409_CONFLICT,
    TokenError.COLLISION: status.HTTP_409_CONFLICT,
}


@router.post("/token", response_model=TokenIssueOut)
async def issue_token(
    user: User = Depends(get_current_user),
    lifecycle: TokenLifecycleManager = Depends(get_lifecycle_manager),
):
    """Issue a fresh linking token for the signed-in owner, superseding any live one."""
    owner_id = user.id

    if settings.TOKEN_RATE_LIMIT_ENABLED:
        decision = await lifecycle.check_issue_rate(
            owner_id,
            max_requests=settings.TOKEN_RATE_LIMIT_MAX,
            window_seconds=settings.TOKEN_RATE_LIMIT_WINDOW_SECONDS,
        )
        if not decision.allowed:
            logger.warning("Token issuance rate limited for owner %s", owner_id)
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "error": "TooManyRequests",
                    "message": "Too many token generation attempts. Please wait before trying again.",
                    "retryAfterSeconds": decision.retry_after_seconds,
                },
                headers={"Retry-After": str(decision.retry_after_seconds)},
            )

    issued = await lifecycle.issue(owner_id)
    return TokenIssueOut(token=issued.value, expires_at=issued.expires_at, deep_link=issued.deep_link)


@router.get("/status", response_model=LinkStatusOut)
async def link_status(
    user: User = Depends(get_current_user),
    lifecycle: TokenLifecycleManager = Depends(get_lifecycle_manager),
    repository: SqlLinkRepository = Depends(get_link_repository),
) -> LinkStatusOut:
    """Whether the owner is linked, and when the live token (if any) expires."""
    owner_id = user.id
    account = await repository.find_linked_account(owner_id)
    live = await lifecycle.live_token(owner_id)

    secondary_id = account.secondary_account_id if account is not None else None
    return LinkStatusOut(
        linked=secondary_id is not None,
        secondary_account_id=secondary_id,
        live_token_expires_at=live.expires_at if live is not None else None,
    )


@router.post("/verify", response_model=LinkVerifyOut, dependencies=[Depends(require_bot_client)])
async def verify_link(
    body: LinkVerifyRequest,
    coordinator: LinkingCoordinator = Depends(get_linking_coordinator),
):
    """Entry point for the secondary client presenting a token."""
    result = await coordinator.link(body.token, body.secondary_account_id)

    if not result.ok:
        return JSONResponse(
            status_code=LINK_ERROR_STATUS[result.error],
            content={"error": result.error.value},
        )

    return LinkVerifyOut(
        status=result.outcome.value,
        locale=to_secondary_locale(result.preferred_locale) if result.preferred_locale else None,
    )


@router.post("/unlink", response_model=SecondaryUnlinkOut, dependencies=[Depends(require_bot_client)])
async def unlink_secondary(
    body: SecondaryUnlinkRequest,
    coordinator: LinkingCoordinator = Depends(get_linking_coordinator),
) -> SecondaryUnlinkOut:
    account = await coordinator.unlink_secondary(body.secondary_account_id)
    return SecondaryUnlinkOut(unlinked=account is not None)


@router.get(
    "/accounts/{secondary_account_id}",
    response_model=SecondaryAccountOut,
    dependencies=[Depends(require_bot_client)],
)
async def secondary_account(
    secondary_account_id: int = Path(..., gt=0, le=MAX_SECONDARY_ACCOUNT_ID),
    repository: SqlLinkRepository = Depends(get_link_repository),
) -> SecondaryAccountOut:
    """Linked state and locale for a secondary account, as the bot sees it."""
    account = await repository.find_linked_account_by_secondary_id(secondary_account_id)
    if account is None:
        return SecondaryAccountOut(linked=False)
    return SecondaryAccountOut(linked=True, locale=to_secondary_locale(account.preferred_locale))
