"""Typed outcomes of token validation and account linking.

Expected business failures are values, not exceptions, so a caller cannot
swallow them behind a generic ``except``.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime

from app.domain.auth_tokens.models import AuthToken


class TokenError(str, enum.Enum):
    INVALID_FORMAT = "invalid_format"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    USED = "used"
    INVALIDATED = "invalidated"
    COLLISION = "collision"


class TokenStatus(str, enum.Enum):
    """Derived status; nothing stores it."""

    ACTIVE = "active"
    EXPIRED = "expired"
    USED = "used"
    INVALIDATED = "invalidated"


class LinkOutcome(str, enum.Enum):
    LINKED = "linked"
    ALREADY_LINKED = "already_linked"


def derive_status(token: AuthToken, now: datetime) -> TokenStatus:
    """Status in precedence order: expired, used, invalidated, active.

    Expiry wins so an expired token never reveals whether it was consumed.
    """
    if token.expires_at <= now:
        return TokenStatus.EXPIRED
    if token.used_at is not None:
        return TokenStatus.USED
    if not token.is_active:
        return TokenStatus.INVALIDATED
    return TokenStatus.ACTIVE


_STATUS_ERRORS = {
    TokenStatus.EXPIRED: TokenError.EXPIRED,
    TokenStatus.USED: TokenError.USED,
    TokenStatus.INVALIDATED: TokenError.INVALIDATED,
}


def status_error(status: TokenStatus) -> TokenError | None:
    return _STATUS_ERRORS.get(status)


@dataclass(frozen=True)
class TokenValidation:
    token: AuthToken | None = None
    error: TokenError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def valid(cls, token: AuthToken) -> "TokenValidation":
        return cls(token=token)

    @classmethod
    def rejected(cls, error: TokenError) -> "TokenValidation":
        return cls(error=error)


@dataclass(frozen=True)
class LinkResult:
    outcome: LinkOutcome | None = None
    error: TokenError | None = None
    owner_id: int | None = None
    preferred_locale: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, error: TokenError, owner_id: int | None = None) -> "LinkResult":
        return cls(error=error, owner_id=owner_id)


@dataclass(frozen=True)
class IssuedToken:
    value: str
    expires_at: datetime
    deep_link: str
    token_id: str


__all__ = [
    "IssuedToken",
    "LinkOutcome",
    "LinkResult",
    "TokenError",
    "TokenStatus",
    "TokenValidation",
    "derive_status",
    "status_error",
]
