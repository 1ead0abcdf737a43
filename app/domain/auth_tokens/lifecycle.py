"""Issuance and validation of bot-link tokens."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable
from uuid import uuid4

from app.core.database import utc_now
from app.core.security import fingerprint
from app.domain.auth_tokens import factory
from app.domain.auth_tokens.deep_link import build_deep_link
from app.domain.auth_tokens.models import AuthToken
from app.domain.auth_tokens.results import (
    IssuedToken,
    TokenError,
    TokenValidation,
    derive_status,
    status_error,
)
from app.domain.linking.repository import LinkRepository, TokenConflict
from app.domain.magic_links.policy import RateLimitDecision, check_window

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("app.security")

MAX_ISSUE_ATTEMPTS = 3


class TokenLifecycleManager:
    """Own the single-live-token invariant for every owner.

    ``issue`` supersedes the owner's live token and stores a new one in one
    transaction; ``validate`` classifies a presented value without mutating
    anything.
    """

    def __init__(
        self,
        repository: LinkRepository,
        *,
        bot_handle: str,
        link_host: str = "t.me",
        ttl: timedelta = factory.DEFAULT_TTL,
        clock: Callable[[], datetime] = utc_now,
        value_factory: Callable[[], str] = factory.generate_token_value,
    ) -> None:
        self.repository = repository
        self.bot_handle = bot_handle
        self.link_host = link_host
        self.ttl = ttl
        self.clock = clock
        self.value_factory = value_factory

    async def issue(self, owner_id: int) -> IssuedToken:
        last_conflict: TokenConflict | None = None
        for attempt in range(1, MAX_ISSUE_ATTEMPTS + 1):
            now = self.clock()
            value = self.value_factory()
            # Built before any write so a misconfigured handle leaves state untouched.
            deep_link = build_deep_link(value, host=self.link_host, bot_handle=self.bot_handle)
            token = AuthToken(
                id=str(uuid4()),
                token=value,
                user_id=owner_id,
                created_at=now,
                expires_at=factory.calculate_expiration(now, self.ttl),
                used_at=None,
                is_active=True,
            )
            try:
                async with self.repository.transaction():
                    await self.repository.lock_owner(owner_id)
                    superseded = await self.repository.invalidate_live_tokens(owner_id)
                    await self.repository.insert_token(token)
            except TokenConflict as exc:
                last_conflict = exc
                logger.warning(
                    "Token insert conflict for owner %s (attempt %s/%s)",
                    owner_id,
                    attempt,
                    MAX_ISSUE_ATTEMPTS,
                )
                continue

            security_logger.info(
                "Auth token issued [owner_id=%s, token_id=%s, superseded=%s, expires_at=%s]",
                owner_id,
                token.id,
                superseded,
                token.expires_at.isoformat(),
            )
            return IssuedToken(
                value=value,
                expires_at=token.expires_at,
                deep_link=deep_link,
                token_id=token.id,
            )

        raise RuntimeError("Could not store a unique auth token") from last_conflict

    async def validate(self, value: str) -> TokenValidation:
        """Classify ``value``: format, existence, then expired/used/invalidated."""
        if not factory.is_well_formed(value):
            security_logger.info("Auth token rejected [reason=%s]", TokenError.INVALID_FORMAT.value)
            return TokenValidation.rejected(TokenError.INVALID_FORMAT)

        token = await self.repository.find_token_by_value(value)
        if token is None:
            security_logger.info(
                "Auth token rejected [reason=%s, token_fp=%s]",
                TokenError.NOT_FOUND.value,
                fingerprint(value),
            )
            return TokenValidation.rejected(TokenError.NOT_FOUND)

        error = status_error(derive_status(token, self.clock()))
        if error is not None:
            security_logger.info(
                "Auth token rejected [reason=%s, owner_id=%s, token_id=%s]",
                error.value,
                token.user_id,
                token.id,
            )
            return TokenValidation.rejected(error)

        security_logger.info(
            "Auth token validated [owner_id=%s, token_id=%s]", token.user_id, token.id
        )
        return TokenValidation.valid(token)

    async def live_token(self, owner_id: int) -> AuthToken | None:
        """The owner's live token, if it has not expired yet."""
        token = await self.repository.find_live_token(owner_id)
        if token is None or token.expires_at <= self.clock():
            return None
        return token

    async def check_issue_rate(
        self, owner_id: int, *, max_requests: int, window_seconds: int
    ) -> RateLimitDecision:
        """Per-owner issuance limit computed from the owner's own token rows."""
        now = self.clock()
        issued = await self.repository.token_issue_times(
            owner_id, now - timedelta(seconds=window_seconds)
        )
        return check_window(
            issued,
            now,
            max_requests=max_requests,
            window_seconds=window_seconds,
        )


__all__ = ["MAX_ISSUE_ATTEMPTS", "TokenLifecycleManager"]
