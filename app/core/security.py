import hashlib
import hmac

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.core.config import settings


class MagicLinkManager:
    """Manage magic link generation and verification."""

    def __init__(self, secret_key: str | None = None):
        self.serializer = URLSafeTimedSerializer(secret_key or settings.SECRET_KEY)

    def generate_token(self, email: str) -> str:
        """Generate a magic link token for the given email."""
        return self.serializer.dumps(email, salt="magic-link")

    def verify_token(self, token: str, max_age: int | None = None) -> str | None:
        """Verify a magic link token and return the email if valid."""
        if max_age is None:
            max_age = settings.MAGIC_LINK_EXPIRY_MINUTES * 60

        try:
            email = self.serializer.loads(
                token,
                salt="magic-link",
                max_age=max_age,
            )
        except (BadSignature, SignatureExpired):
            return None
        return email if isinstance(email, str) else None


def fingerprint(value: str) -> str:
    """Short, non-reversible identifier for log lines (emails, raw tokens)."""
    return hashlib.sha256(value.encode()).hexdigest()[:12]


def constant_time_equals(left: str, right: str) -> bool:
    return hmac.compare_digest(left.encode(), right.encode())


magic_link_manager = MagicLinkManager()
