"""Request-scoped context: request ids for every log line and a compact access log."""
from __future__ import annotations

import contextvars
import logging
import secrets
import time
from typing import Callable, Awaitable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.core.cookies import SESSION_COOKIE_NAME

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
BOT_KEY_HEADER = "X-Bot-Api-Key"

_request_id_ctx: contextvars.ContextVar[str | None] = contextvars.ContextVar("_request_id_ctx", default=None)


def get_request_id() -> str | None:
    return _request_id_ctx.get()


def _incoming_request_id(request: Request) -> str:
    # Client-supplied ids end up in audit lines; accept only short opaque values.
    candidate = request.headers.get(REQUEST_ID_HEADER, "")
    if 0 < len(candidate) <= 64 and candidate.replace("-", "").isalnum():
        return candidate
    return secrets.token_hex(8)


def caller_kind(request: Request) -> str:
    """``bot`` for the secondary client, ``owner`` for a browser session, else ``anonymous``."""
    if BOT_KEY_HEADER in request.headers:
        return "bot"
    if SESSION_COOKIE_NAME in request.cookies:
        return "owner"
    return "anonymous"


class RequestIdFilter(logging.Filter):
    """Stamp ``record.request_id`` so audit lines can be joined to the access line."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id_ctx.get() or "-"
        return True


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id for the duration of the request and log one access line."""

    def __init__(self, app: ASGIApp, skip_prefixes: tuple[str, ...] = ("/health",)) -> None:
        super().__init__(app)
        self._skip_prefixes = skip_prefixes

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request_id = _incoming_request_id(request)
        request.state.request_id = request_id
        token = _request_id_ctx.set(request_id)
        path = request.url.path
        start_time = time.perf_counter()

        try:
            try:
                response = await call_next(request)
            except Exception:  # noqa: BLE001
                logger.exception("Unhandled error for %s %s", request.method, path)
                raise

            response.headers[REQUEST_ID_HEADER] = request_id
            if not path.startswith(self._skip_prefixes):
                # Query strings may carry magic link or bot tokens; log the path only.
                logger.info(
                    "%s %s -> %s in %.1fms (caller=%s)",
                    request.method,
                    path,
                    response.status_code,
                    (time.perf_counter() - start_time) * 1000,
                    caller_kind(request),
                )
            return response
        finally:
            _request_id_ctx.reset(token)


class NoStoreMiddleware(BaseHTTPMiddleware):
    """Keep token-bearing API responses out of shared caches."""

    def __init__(self, app: ASGIApp, prefixes: tuple[str, ...] = ("/api",)) -> None:
        super().__init__(app)
        self._prefixes = prefixes

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        response = await call_next(request)
        if request.url.path.startswith(self._prefixes):
            response.headers.setdefault("Cache-Control", "no-store")
            response.headers.setdefault("X-Content-Type-Options", "nosniff")
        return response


__all__ = [
    "NoStoreMiddleware",
    "RequestContextMiddleware",
    "RequestIdFilter",
    "caller_kind",
    "get_request_id",
]
