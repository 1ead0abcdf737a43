"""Bind a secondary (bot) account to the owner of a presented token."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from app.core.database import utc_now
from app.domain.auth_tokens.lifecycle import TokenLifecycleManager
from app.domain.auth_tokens.results import LinkOutcome, LinkResult, TokenError
from app.domain.linking.repository import LinkRepository, SecondaryAccountConflict
from app.domain.linking.models import LinkedAccount

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("app.security")


class _TokenNoLongerLive(Exception):
    """The token changed between validation and the conditional update."""


class LinkingCoordinator:
    def __init__(
        self,
        repository: LinkRepository,
        lifecycle: TokenLifecycleManager,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.lifecycle = lifecycle
        self.clock = clock

    async def link(self, token_value: str, secondary_account_id: int) -> LinkResult:
        """Validate the token and bind ``secondary_account_id`` to its owner.

        Binding the account and consuming the token happen in one transaction.
        ``ALREADY_LINKED`` and ``COLLISION`` leave everything untouched.
        """
        validation = await self.lifecycle.validate(token_value)
        if not validation.ok:
            return LinkResult.failed(validation.error)

        token = validation.token
        owner_id = token.user_id
        token_id = token.id

        existing = await self.repository.find_linked_account_by_secondary_id(secondary_account_id)
        if existing is not None:
            if existing.owner_id == owner_id:
                self._audit("already linked", owner_id, token_id, secondary_account_id)
                return LinkResult(
                    outcome=LinkOutcome.ALREADY_LINKED,
                    owner_id=owner_id,
                    preferred_locale=existing.preferred_locale,
                )
            self._audit("collision", owner_id, token_id, secondary_account_id)
            return LinkResult.failed(TokenError.COLLISION, owner_id=owner_id)

        try:
            async with self.repository.transaction():
                await self.repository.lock_owner(owner_id)
                if not await self.repository.mark_token_used(token_id, self.clock()):
                    raise _TokenNoLongerLive()
                await self.repository.set_linked_account(owner_id, secondary_account_id)
        except _TokenNoLongerLive:
            # Superseded, consumed or expired while we were deciding.
            retry = await self.lifecycle.validate(token_value)
            error = retry.error or TokenError.USED
            self._audit(f"lost race ({error.value})", owner_id, token_id, secondary_account_id)
            return LinkResult.failed(error, owner_id=owner_id)
        except SecondaryAccountConflict:
            self._audit("collision", owner_id, token_id, secondary_account_id)
            return LinkResult.failed(TokenError.COLLISION, owner_id=owner_id)

        self._audit("linked", owner_id, token_id, secondary_account_id)
        return LinkResult(
            outcome=LinkOutcome.LINKED,
            owner_id=owner_id,
            preferred_locale=await self._preferred_locale(owner_id),
        )

    async def unlink_secondary(self, secondary_account_id: int) -> LinkedAccount | None:
        """Secondary-initiated unlink. Token rows are left as they are."""
        async with self.repository.transaction():
            account = await self.repository.clear_by_secondary_id(secondary_account_id)

        if account is not None:
            security_logger.info(
                "Secondary account unlinked by client [owner_id=%s, secondary_id=%s]",
                account.owner_id,
                secondary_account_id,
            )
        return account

    async def _preferred_locale(self, owner_id: int) -> str | None:
        """Best effort: a failure here never fails the link."""
        try:
            account = await self.repository.find_linked_account(owner_id)
        except Exception:  # noqa: BLE001
            logger.warning("Could not load preferred locale for owner %s", owner_id, exc_info=True)
            return None
        return account.preferred_locale if account is not None else None

    @staticmethod
    def _audit(event: str, owner_id: int, token_id: str, secondary_account_id: int) -> None:
        security_logger.info(
            "Link attempt %s [owner_id=%s, token_id=%s, secondary_id=%s]",
            event,
            owner_id,
            token_id,
            secondary_account_id,
        )


__all__ = ["LinkingCoordinator"]
