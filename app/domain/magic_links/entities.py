"""Value objects for magic link requests."""
from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass, field
from datetime import datetime

from app.core.database import utc_now

EMAIL_RE = re.compile(r"^[^@<>\s]+@[^@<>\s]+\.[^@<>\s]+$")
MAX_EMAIL_LENGTH = 254


class InvalidEmail(ValueError):
    """Raised when an email address cannot be parsed."""


@dataclass(frozen=True)
class EmailAddress:
    """Trimmed, lower-cased email; the identity rate limits are keyed on."""

    value: str

    @classmethod
    def parse(cls, raw: str | None) -> "EmailAddress":
        candidate = (raw or "").strip()
        if not candidate or len(candidate) > MAX_EMAIL_LENGTH or not EMAIL_RE.match(candidate):
            raise InvalidEmail("Invalid email format")
        return cls(candidate.lower())

    def __str__(self) -> str:
        return self.value


def normalize_ip(raw: str | None) -> str | None:
    """First hop of a forwarded-for list, or None when it is not an IP address."""
    if not raw:
        return None
    candidate = raw.split(",")[0].strip()
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None


@dataclass(frozen=True)
class MagicLinkAttempt:
    email: EmailAddress
    attempted_at: datetime = field(default_factory=utc_now)
    success: bool = True
    ip_address: str | None = None


__all__ = ["EmailAddress", "InvalidEmail", "MagicLinkAttempt", "normalize_ip"]
