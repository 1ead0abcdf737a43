"""Infrastructure error taxonomy.

Business outcomes (expired token, collision, rate limited, ...) are returned as
typed values by the domain services. The exceptions below are reserved for
infrastructure failures the caller has to turn into a 5xx response.
"""
from __future__ import annotations


class BotLinkError(Exception):
    """Base class for infrastructure failures raised by the application."""


class StorageUnavailable(BotLinkError):
    """The token/linked-account store could not complete an operation.

    Transient. Nothing inside the core retries it; the caller decides.
    """


class EmailDeliveryError(BotLinkError):
    """The email transport rejected the message or did not answer in time."""


__all__ = ["BotLinkError", "EmailDeliveryError", "StorageUnavailable"]
