"""Storage seam for tokens and linked accounts.

``LinkRepository`` is the only path that mutates ``auth_tokens`` and
``linked_accounts``. ``SqlLinkRepository`` implements it over an
``AsyncSession``; the test-suite carries an in-memory implementation.
"""
from __future__ import annotations

import functools
import logging
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import StorageUnavailable
from app.domain.auth_tokens.models import AuthToken
from app.domain.linking.models import DEFAULT_LOCALE, LinkedAccount
from app.domain.users.models import User

logger = logging.getLogger(__name__)


class TokenConflict(Exception):
    """Insert hit a unique index on ``auth_tokens`` (value or live owner)."""


class SecondaryAccountConflict(Exception):
    """The secondary account id is already bound to another owner."""


class LinkRepository(Protocol):
    def transaction(self) -> AbstractAsyncContextManager[None]: ...

    async def lock_owner(self, owner_id: int) -> None: ...

    async def find_token_by_value(self, value: str) -> AuthToken | None: ...

    async def find_live_token(self, owner_id: int) -> AuthToken | None: ...

    async def list_tokens(self, owner_id: int) -> list[AuthToken]: ...

    async def token_issue_times(self, owner_id: int, since: datetime) -> list[datetime]: ...

    async def invalidate_live_tokens(self, owner_id: int) -> int: ...

    async def insert_token(self, token: AuthToken) -> AuthToken: ...

    async def mark_token_used(self, token_id: str, used_at: datetime) -> bool: ...

    async def find_linked_account(self, owner_id: int) -> LinkedAccount | None: ...

    async def find_linked_account_by_secondary_id(
        self, secondary_account_id: int
    ) -> LinkedAccount | None: ...

    async def ensure_linked_account(
        self, owner_id: int, preferred_locale: str = DEFAULT_LOCALE
    ) -> LinkedAccount: ...

    async def set_linked_account(self, owner_id: int, secondary_account_id: int) -> None: ...

    async def clear_linked_account(self, owner_id: int) -> bool: ...

    async def clear_by_secondary_id(self, secondary_account_id: int) -> LinkedAccount | None: ...


def _storage_errors(func):
    """Translate driver/connection failures into ``StorageUnavailable``."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except IntegrityError:
            raise
        except DBAPIError as exc:
            raise StorageUnavailable(f"{func.__name__} failed") from exc

    return wrapper


class SqlLinkRepository:
    """``LinkRepository`` over a SQLAlchemy ``AsyncSession``."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Commit everything done inside the block, or nothing."""
        try:
            yield
            await self.session.commit()
        except IntegrityError:
            await self._rollback()
            raise
        except DBAPIError as exc:
            await self._rollback()
            raise StorageUnavailable("transaction failed") from exc
        except BaseException:
            await self._rollback()
            raise

    async def _rollback(self) -> None:
        try:
            await self.session.rollback()
        except DBAPIError:
            logger.exception("Rollback failed")

    @_storage_errors
    async def lock_owner(self, owner_id: int) -> None:
        # FOR UPDATE is dropped by dialects that serialize writers anyway (sqlite).
        await self.session.execute(select(User.id).where(User.id == owner_id).with_for_update())

    @_storage_errors
    async def find_token_by_value(self, value: str) -> AuthToken | None:
        result = await self.session.execute(select(AuthToken).where(AuthToken.token == value))
        return result.scalar_one_or_none()

    @_storage_errors
    async def find_live_token(self, owner_id: int) -> AuthToken | None:
        result = await self.session.execute(
            select(AuthToken)
            .where(AuthToken.user_id == owner_id)
            .where(AuthToken.is_active.is_(True))
            .where(AuthToken.used_at.is_(None))
            .order_by(AuthToken.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @_storage_errors
    async def list_tokens(self, owner_id: int) -> list[AuthToken]:
        result = await self.session.scalars(
            select(AuthToken).where(AuthToken.user_id == owner_id).order_by(AuthToken.created_at)
        )
        return list(result.all())

    @_storage_errors
    async def token_issue_times(self, owner_id: int, since: datetime) -> list[datetime]:
        result = await self.session.scalars(
            select(AuthToken.created_at)
            .where(AuthToken.user_id == owner_id)
            .where(AuthToken.created_at >= since)
        )
        return list(result.all())

    @_storage_errors
    async def invalidate_live_tokens(self, owner_id: int) -> int:
        result = await self.session.execute(
            update(AuthToken)
            .where(AuthToken.user_id == owner_id)
            .where(AuthToken.is_active.is_(True))
            .where(AuthToken.used_at.is_(None))
            .values(is_active=False)
        )
        return result.rowcount or 0

    @_storage_errors
    async def insert_token(self, token: AuthToken) -> AuthToken:
        self.session.add(token)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise TokenConflict("auth token violates a unique index") from exc
        return token

    @_storage_errors
    async def mark_token_used(self, token_id: str, used_at: datetime) -> bool:
        """Consume the token only if it is still live and unexpired."""
        result = await self.session.execute(
            update(AuthToken)
            .where(AuthToken.id == token_id)
            .where(AuthToken.is_active.is_(True))
            .where(AuthToken.used_at.is_(None))
            .where(AuthToken.expires_at > used_at)
            .values(used_at=used_at)
        )
        return (result.rowcount or 0) == 1

    @_storage_errors
    async def find_linked_account(self, owner_id: int) -> LinkedAccount | None:
        result = await self.session.execute(
            select(LinkedAccount).where(LinkedAccount.owner_id == owner_id)
        )
        return result.scalar_one_or_none()

    @_storage_errors
    async def find_linked_account_by_secondary_id(
        self, secondary_account_id: int
    ) -> LinkedAccount | None:
        result = await self.session.execute(
            select(LinkedAccount).where(LinkedAccount.secondary_account_id == secondary_account_id)
        )
        return result.scalar_one_or_none()

    @_storage_errors
    async def ensure_linked_account(
        self, owner_id: int, preferred_locale: str = DEFAULT_LOCALE
    ) -> LinkedAccount:
        account = await self.find_linked_account(owner_id)
        if account is None:
            account = LinkedAccount(owner_id=owner_id, preferred_locale=preferred_locale)
            self.session.add(account)
            await self.session.flush()
        return account

    @_storage_errors
    async def set_linked_account(self, owner_id: int, secondary_account_id: int) -> None:
        account = await self.ensure_linked_account(owner_id)
        account.secondary_account_id = secondary_account_id
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise SecondaryAccountConflict("secondary account already bound") from exc

    @_storage_errors
    async def clear_linked_account(self, owner_id: int) -> bool:
        result = await self.session.execute(
            update(LinkedAccount)
            .where(LinkedAccount.owner_id == owner_id)
            .where(LinkedAccount.secondary_account_id.is_not(None))
            .values(secondary_account_id=None)
        )
        return (result.rowcount or 0) > 0

    @_storage_errors
    async def clear_by_secondary_id(self, secondary_account_id: int) -> LinkedAccount | None:
        account = await self.find_linked_account_by_secondary_id(secondary_account_id)
        if account is None:
            return None
        account.secondary_account_id = None
        await self.session.flush()
        return account


__all__ = [
    "LinkRepository",
    "SecondaryAccountConflict",
    "SqlLinkRepository",
    "TokenConflict",
]
