"""Rate limit decisions for magic link (and token) issuance.

Pure functions over an attempt history: no I/O, no clock of their own.
Callers load the history, ask for a decision and persist the new attempt
whatever the answer.
"""
from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from app.domain.magic_links.entities import MagicLinkAttempt

COOLDOWN_SECONDS = 60
HOURLY_LIMIT = 10
WINDOW_SECONDS = 60 * 60


class RateLimitReason(str, enum.Enum):
    COOLDOWN = "cooldown"
    HOURLY = "hourly"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after_seconds: int | None = None
    reason: RateLimitReason | None = None

    @classmethod
    def allow(cls) -> "RateLimitDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: RateLimitReason, remaining_seconds: float) -> "RateLimitDecision":
        return cls(
            allowed=False,
            retry_after_seconds=max(1, math.ceil(remaining_seconds)),
            reason=reason,
        )


def check_window(
    timestamps: Iterable[datetime],
    now: datetime,
    *,
    max_requests: int,
    window_seconds: int,
    reason: RateLimitReason = RateLimitReason.HOURLY,
) -> RateLimitDecision:
    """Deny once ``max_requests`` timestamps fall inside the trailing window.

    ``retry_after_seconds`` is the time until the oldest of them leaves it.
    """
    in_window = sorted(
        ts for ts in timestamps if (now - ts).total_seconds() <= window_seconds
    )
    if len(in_window) < max_requests:
        return RateLimitDecision.allow()

    oldest = in_window[0]
    remaining = window_seconds - (now - oldest).total_seconds()
    return RateLimitDecision.deny(reason, remaining)


@dataclass(frozen=True)
class RateLimitPolicy:
    """Cooldown between successful sends, then a trailing-window cap.

    Only successful attempts count. When the cooldown blocks, its (shorter)
    horizon is reported even if the hourly cap is also reached.
    """

    cooldown_seconds: int = COOLDOWN_SECONDS
    hourly_limit: int = HOURLY_LIMIT
    window_seconds: int = WINDOW_SECONDS

    def can_send(self, attempts: Iterable[MagicLinkAttempt], now: datetime) -> RateLimitDecision:
        sent = [attempt.attempted_at for attempt in attempts if attempt.success]

        if sent:
            elapsed = max(0.0, (now - max(sent)).total_seconds())
            if elapsed < self.cooldown_seconds:
                return RateLimitDecision.deny(
                    RateLimitReason.COOLDOWN, self.cooldown_seconds - elapsed
                )

        return check_window(
            sent,
            now,
            max_requests=self.hourly_limit,
            window_seconds=self.window_seconds,
            reason=RateLimitReason.HOURLY,
        )


__all__ = [
    "COOLDOWN_SECONDS",
    "HOURLY_LIMIT",
    "RateLimitDecision",
    "RateLimitPolicy",
    "RateLimitReason",
    "WINDOW_SECONDS",
    "check_window",
]
