"""Opaque token values for bot linking."""
from __future__ import annotations

import re
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.core.database import utc_now

TOKEN_LENGTH = 32
TOKEN_ALPHABET = string.ascii_letters + string.digits
TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9]{32}$")
DEFAULT_TTL = timedelta(minutes=15)


@dataclass(frozen=True)
class GeneratedToken:
    value: str
    expires_at: datetime


def generate_token_value() -> str:
    """Return a 32-character alphanumeric value from the OS CSPRNG.

    ~190 bits of entropy; uniqueness is still enforced by the unique index on
    ``auth_tokens.token``.
    """
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(TOKEN_LENGTH))


def calculate_expiration(now: datetime | None = None, ttl: timedelta = DEFAULT_TTL) -> datetime:
    return (now or utc_now()) + ttl


def generate(now: datetime | None = None, ttl: timedelta = DEFAULT_TTL) -> GeneratedToken:
    return GeneratedToken(value=generate_token_value(), expires_at=calculate_expiration(now, ttl))


def is_well_formed(value: object) -> bool:
    return isinstance(value, str) and TOKEN_PATTERN.fullmatch(value) is not None


__all__ = [
    "DEFAULT_TTL",
    "GeneratedToken",
    "TOKEN_PATTERN",
    "calculate_expiration",
    "generate",
    "generate_token_value",
    "is_well_formed",
]
