from __future__ import annotations

import contextvars

from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request

from app.domain.linking.models import DEFAULT_LOCALE

# Context variable holding the locale negotiated for the active request
_locale_ctx: contextvars.ContextVar[str | None] = contextvars.ContextVar("_locale_ctx", default=None)

SUPPORTED_LOCALES = {
    "en": "en-US",
    "pt": "pt-BR",
    "es": "es",
    "fr": "fr",
    "de": "de",
    "uk": "uk",
    "ru": "ru",
}

# Secondary (bot) clients spell region-qualified locales with an underscore.
_SECONDARY_LOCALES = {
    "pt-BR": "pt_BR",
    "en-US": "en_US",
}


def infer_locale(accept_language: str | None) -> str:
    """Pick the best supported locale from an Accept-Language header.

    ``"en-GB,en;q=0.9,pt-BR;q=0.8"`` -> ``"en-US"``. Falls back to the default.
    """
    if not accept_language:
        return DEFAULT_LOCALE

    candidates: list[tuple[float, int, str]] = []
    for position, part in enumerate(accept_language.split(",")):
        piece = part.strip()
        if not piece:
            continue
        tag, *params = piece.split(";")
        quality = 1.0
        for param in params:
            name, _, value = param.strip().partition("=")
            if name.strip().lower() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        # q=0 marks a language the client refuses.
        if quality <= 0:
            continue
        primary = tag.strip().split("-")[0].lower()
        candidates.append((quality, -position, primary))

    for _, _, primary in sorted(candidates, reverse=True):
        if primary in SUPPORTED_LOCALES:
            return SUPPORTED_LOCALES[primary]
    return DEFAULT_LOCALE


def to_secondary_locale(locale: str | None) -> str:
    """Map a stored locale to the form the bot client expects."""
    if not locale:
        return _SECONDARY_LOCALES[DEFAULT_LOCALE]
    return _SECONDARY_LOCALES.get(locale, locale)


def get_request_locale() -> str:
    return _locale_ctx.get() or DEFAULT_LOCALE


class LocaleMiddleware(BaseHTTPMiddleware):
    """Negotiate the request locale.

    It checks the `lang` cookie first, then the Accept-Language header, and
    falls back to the default locale.
    """

    async def dispatch(self, request: Request, call_next):
        cookie_locale = request.cookies.get("lang")
        if cookie_locale:
            locale = infer_locale(cookie_locale)
        else:
            locale = infer_locale(request.headers.get("accept-language"))

        token = _locale_ctx.set(locale)
        try:
            return await call_next(request)
        finally:
            _locale_ctx.reset(token)


__all__ = ["LocaleMiddleware", "get_request_locale", "infer_locale", "to_secondary_locale"]
