"""Logging setup: UTC timestamps, rotating file output and a security audit channel."""
from __future__ import annotations

import logging
import logging.handlers
import os
import re
import time

from app.core.config import settings
from app.core.middleware import RequestIdFilter

SECURITY_LOGGER = "app.security"

# Link tokens are 32 alphanumerics; magic links carry a signed ``token=`` query value.
_QUERY_TOKEN = re.compile(r"(token=)[^&\s\"']+")
_BARE_TOKEN = re.compile(r"\b[A-Za-z0-9]{32}\b")


def redact(message: str) -> str:
    message = _QUERY_TOKEN.sub(r"\1[redacted]", message)
    return _BARE_TOKEN.sub("[redacted]", message)


class TokenRedactionFilter(logging.Filter):
    """Rewrite records so credential-like values never reach a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def _build_handlers(formatter: logging.Formatter) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if settings.LOG_TO_FILE and settings.ENV != "test":
        os.makedirs(settings.LOG_DIR, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                os.path.join(settings.LOG_DIR, "botlink.log"),
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
        )

    redaction = TokenRedactionFilter()
    request_ids = RequestIdFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(request_ids)
        handler.addFilter(redaction)
    return handlers


def setup_logging() -> None:
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    formatter = logging.Formatter(
        "%(asctime)sZ | %(levelname)s | %(name)s | %(request_id)s | %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    formatter.converter = time.gmtime

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = _build_handlers(formatter)

    # Token validation, linking and magic-link decisions; propagates to the root handlers.
    logging.getLogger(SECURITY_LOGGER).setLevel(logging.INFO)

    logging.getLogger("sqlalchemy.engine").setLevel(max(log_level, logging.WARNING))
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(log_level)
    # uvicorn's access lines include the query string and use their own handlers.
    access_logger = logging.getLogger("uvicorn.access")
    if not any(isinstance(f, TokenRedactionFilter) for f in access_logger.filters):
        access_logger.addFilter(TokenRedactionFilter())


__all__ = ["SECURITY_LOGGER", "TokenRedactionFilter", "redact", "setup_logging"]
