"""Outbound email through Resend."""
from __future__ import annotations

import asyncio
import logging
import re

import resend

from app.core.config import settings
from app.core.errors import EmailDeliveryError
from app.core.security import fingerprint

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@<>\s]+@[^@<>\s]+\.[^@<>\s]+$")
NAME_EMAIL_RE = re.compile(r"^.+ <[^@<>\s]+@[^@<>\s]+\.[^@<>\s]+>$")


def build_from_field(from_raw: str | None, app_name: str) -> str:
    """Normalize the ``from`` field expected by Resend.

    Accepts a plain address (wrapped with the application name) or a
    ``Name <user@example.com>`` value.
    """
    value = (from_raw or "").strip()
    if EMAIL_RE.match(value):
        return f"{app_name} <{value}>"
    if NAME_EMAIL_RE.match(value):
        return value

    logger.warning("RESEND_FROM_EMAIL value '%s' is invalid; falling back to noreply", value)
    return f"{app_name} <noreply@example.com>"


class ResendMailer:
    def __init__(
        self,
        api_key: str | None = None,
        from_email: str | None = None,
        app_name: str | None = None,
        expiry_minutes: int | None = None,
    ) -> None:
        self.api_key = settings.RESEND_API_KEY if api_key is None else api_key
        self.app_name = app_name or settings.APP_NAME
        self.from_field = build_from_field(
            settings.RESEND_FROM_EMAIL if from_email is None else from_email, self.app_name
        )
        self.expiry_minutes = expiry_minutes or settings.MAGIC_LINK_EXPIRY_MINUTES

    async def send_magic_link(self, to: str, magic_link: str) -> None:
        if not self.api_key:
            # Development without a transport: surface the link in the log instead.
            if settings.DEBUG:
                logger.info("Resend not configured; magic link for %s: %s", fingerprint(to), magic_link)
                return
            raise EmailDeliveryError("Email transport is not configured")

        params = {
            "from": self.from_field,
            "to": to,
            "subject": f"Login to {self.app_name}",
            "html": f"""
            <html>
                <body>
                    <h1>Login to {self.app_name}</h1>
                    <p>Click the link below to login:</p>
                    <a href="{magic_link}">Login to {self.app_name}</a>
                    <p>This link will expire in {self.expiry_minutes} minutes.</p>
                </body>
            </html>
            """,
        }

        resend.api_key = self.api_key
        try:
            await asyncio.to_thread(resend.Emails.send, params)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to send login email for identifier %s", fingerprint(to), exc_info=exc)
            raise EmailDeliveryError("Email transport rejected the message") from exc


__all__ = ["ResendMailer", "build_from_field"]
