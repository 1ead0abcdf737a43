"""Database-backed attempt store over ``magic_link_attempts``."""
from __future__ import annotations

import hashlib
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Hashable

from sqlalchemy import select, text, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import StorageUnavailable
from app.core.rate_limit import KeyedLocks
from app.domain.magic_links.entities import EmailAddress, MagicLinkAttempt
from app.domain.magic_links.models import MagicLinkAttemptRecord

logger = logging.getLogger(__name__)

# Fallback serialization for backends without advisory locks (sqlite in dev/tests).
_local_locks = KeyedLocks()


def advisory_lock_key(identity: str) -> int:
    digest = hashlib.sha256(identity.encode()).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


class SqlAttemptStore:
    """Attempt history shared by every instance through the database.

    ``guard`` takes a transaction-scoped advisory lock on PostgreSQL so two
    concurrent requests for one email cannot both read a stale count.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _is_postgres(self) -> bool:
        bind = self.session.get_bind()
        return bind.dialect.name == "postgresql"

    @asynccontextmanager
    async def guard(self, identity: str) -> AsyncIterator[None]:
        if self._is_postgres():
            async with self._transaction():
                await self.session.execute(
                    text("SELECT pg_advisory_xact_lock(:key)"),
                    {"key": advisory_lock_key(identity)},
                )
                yield
        else:
            async with _local_locks.hold(identity):
                async with self._transaction():
                    yield

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[None]:
        try:
            yield
            await self.session.commit()
        except DBAPIError as exc:
            await self.session.rollback()
            raise StorageUnavailable("magic link attempt store unavailable") from exc
        except BaseException:
            await self.session.rollback()
            raise

    async def recent(self, identity: str, since: datetime) -> list[MagicLinkAttempt]:
        try:
            rows = await self.session.scalars(
                select(MagicLinkAttemptRecord)
                .where(MagicLinkAttemptRecord.email == identity)
                .where(MagicLinkAttemptRecord.attempted_at >= since)
                .order_by(MagicLinkAttemptRecord.attempted_at)
            )
        except DBAPIError as exc:
            raise StorageUnavailable("could not load magic link attempts") from exc
        return [
            MagicLinkAttempt(
                email=EmailAddress(row.email),
                attempted_at=row.attempted_at,
                success=bool(row.success),
                ip_address=row.ip_address,
            )
            for row in rows.all()
        ]

    async def record(self, attempt: MagicLinkAttempt) -> int:
        row = MagicLinkAttemptRecord(
            email=attempt.email.value,
            attempted_at=attempt.attempted_at,
            success=attempt.success,
            ip_address=attempt.ip_address,
        )
        self.session.add(row)
        try:
            await self.session.flush()
        except DBAPIError as exc:
            raise StorageUnavailable("could not record magic link attempt") from exc
        return row.id

    async def mark_failed(self, handle: Hashable) -> None:
        try:
            await self.session.execute(
                update(MagicLinkAttemptRecord)
                .where(MagicLinkAttemptRecord.id == handle)
                .values(success=False)
            )
            await self.session.commit()
        except DBAPIError as exc:
            await self.session.rollback()
            raise StorageUnavailable("could not update magic link attempt") from exc


__all__ = ["SqlAttemptStore", "advisory_lock_key"]
