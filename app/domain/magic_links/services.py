"""Magic link request use case."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Hashable, Protocol

from app.core.database import utc_now
from app.core.errors import EmailDeliveryError, StorageUnavailable
from app.core.rate_limit import AttemptStore
from app.core.security import fingerprint
from app.domain.magic_links.entities import EmailAddress, MagicLinkAttempt
from app.domain.magic_links.policy import RateLimitDecision, RateLimitPolicy

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("app.security")


class MagicLinkSender(Protocol):
    async def send_magic_link(self, to: str, magic_link: str) -> None: ...


@dataclass(frozen=True)
class MagicLinkRequestResult:
    sent: bool
    decision: RateLimitDecision


class MagicLinkService:
    """Gate magic link emails behind the rate limit policy.

    The attempt row is written (and committed) before the email leaves, so a
    slow or failing transport never has to roll back the decision. Denied
    requests are recorded with ``success=False``.
    """

    def __init__(
        self,
        store: AttemptStore,
        sender: MagicLinkSender,
        *,
        link_builder: Callable[[str], str],
        policy: RateLimitPolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
        send_timeout: float = 10.0,
    ) -> None:
        self.store = store
        self.sender = sender
        self.link_builder = link_builder
        self.policy = policy or RateLimitPolicy()
        self.clock = clock
        self.send_timeout = send_timeout

    async def request(self, raw_email: str, ip_address: str | None = None) -> MagicLinkRequestResult:
        """Raises ``InvalidEmail`` for malformed input."""
        email = EmailAddress.parse(raw_email)
        lookback = timedelta(seconds=max(self.policy.window_seconds, self.policy.cooldown_seconds))

        async with self.store.guard(email.value):
            now = self.clock()
            history = await self.store.recent(email.value, now - lookback)
            decision = self.policy.can_send(history, now)
            handle = await self.store.record(
                MagicLinkAttempt(
                    email=email,
                    attempted_at=now,
                    success=decision.allowed,
                    ip_address=ip_address,
                )
            )

        if not decision.allowed:
            security_logger.warning(
                "Magic link rate limited [email_fp=%s, reason=%s, retry_after=%s]",
                fingerprint(email.value),
                decision.reason.value if decision.reason else None,
                decision.retry_after_seconds,
            )
            return MagicLinkRequestResult(sent=False, decision=decision)

        magic_link = self.link_builder(email.value)
        try:
            await asyncio.wait_for(
                self.sender.send_magic_link(email.value, magic_link),
                timeout=self.send_timeout,
            )
        except (asyncio.TimeoutError, EmailDeliveryError) as exc:
            await self._release(handle, email)
            security_logger.error(
                "Magic link delivery failed [email_fp=%s]", fingerprint(email.value)
            )
            if isinstance(exc, EmailDeliveryError):
                raise
            raise EmailDeliveryError("Email transport timed out") from exc

        security_logger.info("Magic link sent [email_fp=%s]", fingerprint(email.value))
        return MagicLinkRequestResult(sent=True, decision=decision)

    async def _release(self, handle: Hashable, email: EmailAddress) -> None:
        """Stop an undelivered send from counting against the cooldown."""
        try:
            await self.store.mark_failed(handle)
        except StorageUnavailable:
            logger.exception(
                "Could not flag undelivered magic link attempt [email_fp=%s]",
                fingerprint(email.value),
            )


__all__ = ["MagicLinkRequestResult", "MagicLinkSender", "MagicLinkService"]
