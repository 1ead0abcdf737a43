from __future__ import annotations

import logging

from app.domain.linking.repository import LinkRepository

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("app.security")


class SignOutPropagator:
    """Clear the secondary-account binding when the primary session ends.

    Never raises: sign-out succeeds at the authentication layer whatever
    happens here. Token rows are not touched, so a live token stays usable
    for re-linking.
    """

    def __init__(self, repository: LinkRepository) -> None:
        self.repository = repository

    async def on_sign_out(self, owner_id: int) -> bool:
        """Return True when a binding was cleared, False otherwise (including failures)."""
        try:
            async with self.repository.transaction():
                cleared = await self.repository.clear_linked_account(owner_id)
        except Exception:  # noqa: BLE001
            logger.exception("Secondary account unlink failed during sign-out [owner_id=%s]", owner_id)
            return False

        if cleared:
            security_logger.info("Secondary account unlinked on sign-out [owner_id=%s]", owner_id)
        return cleared


__all__ = ["SignOutPropagator"]
