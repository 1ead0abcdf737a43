from __future__ import annotations

from app.domain.auth_tokens.factory import is_well_formed


def build_deep_link(token: str, *, host: str, bot_handle: str) -> str:
    """Return ``https://<host>/<bot-handle>?start=<token>``.

    Raises ValueError for a missing handle or a malformed token; both are
    deployment/programming errors rather than user input.
    """
    handle = (bot_handle or "").strip().lstrip("@")
    if not handle:
        raise ValueError("BOT_HANDLE must be configured to build deep links")
    if not is_well_formed(token):
        raise ValueError("Invalid token format")

    clean_host = (host or "").strip().rstrip("/")
    if "://" in clean_host:
        clean_host = clean_host.split("://", 1)[1]
    return f"https://{clean_host}/{handle}?start={token}"


__all__ = ["build_deep_link"]
