"""Attempt stores feeding the magic link rate limit policy.

The policy itself is pure (``app.domain.magic_links.policy``); these stores
hold the attempt history it decides over. ``InMemoryAttemptStore`` keeps the
history in the process, so every replica counts on its own: it is only
correct for single-instance deployments (``RATE_LIMIT_BACKEND=memory``).
"""
from __future__ import annotations

import asyncio
import dataclasses
from collections import deque
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Deque, Hashable, Protocol

from app.domain.magic_links.entities import MagicLinkAttempt

SWEEP_INTERVAL = timedelta(minutes=1)


class AttemptStore(Protocol):
    def guard(self, identity: str) -> AbstractAsyncContextManager[None]:
        """Serialize read-decide-record for one identity and persist on exit."""
        ...

    async def recent(self, identity: str, since: datetime) -> list[MagicLinkAttempt]: ...

    async def record(self, attempt: MagicLinkAttempt) -> Hashable: ...

    async def mark_failed(self, handle: Hashable) -> None: ...


class KeyedLocks:
    """One ``asyncio.Lock`` per key, dropped once nobody holds or waits on it.

    Keys come from request input (email addresses), so the map must not
    outlive the requests that created its entries.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users.get(key, 1) - 1
            if remaining > 0:
                self._users[key] = remaining
            else:
                self._users.pop(key, None)
                if self._locks.get(key) is lock:
                    del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class InMemoryAttemptStore:
    """Process-local attempt history with per-identity asyncio locking."""

    def __init__(self) -> None:
        self._attempts: dict[str, Deque[MagicLinkAttempt]] = {}
        self._locks = KeyedLocks()
        self._handles: dict[int, tuple[str, MagicLinkAttempt]] = {}
        self._next_handle = 0
        self._swept_until: datetime | None = None

    def guard(self, identity: str) -> AbstractAsyncContextManager[None]:
        return self._locks.hold(identity)

    async def recent(self, identity: str, since: datetime) -> list[MagicLinkAttempt]:
        self._sweep(since)

        bucket = self._attempts.get(identity)
        if not bucket:
            return []

        dropped = []
        while bucket and bucket[0].attempted_at < since:
            dropped.append(bucket.popleft())
        self._forget(dropped)
        if not bucket:
            del self._attempts[identity]
            return []

        return list(bucket)

    async def record(self, attempt: MagicLinkAttempt) -> int:
        self._attempts.setdefault(attempt.email.value, deque()).append(attempt)
        self._next_handle += 1
        self._handles[self._next_handle] = (attempt.email.value, attempt)
        return self._next_handle

    async def mark_failed(self, handle: Hashable) -> None:
        entry = self._handles.pop(handle, None)  # type: ignore[arg-type]
        if entry is None:
            return
        identity, attempt = entry
        bucket = self._attempts.get(identity)
        if not bucket:
            return
        for index, candidate in enumerate(bucket):
            if candidate is attempt:
                bucket[index] = dataclasses.replace(attempt, success=False)
                break

    def reset(self) -> None:
        self._attempts.clear()
        self._handles.clear()
        self._swept_until = None

    def _sweep(self, since: datetime) -> None:
        """Drop identities whose newest attempt fell out of the window."""
        if self._swept_until is not None and since - self._swept_until < SWEEP_INTERVAL:
            return
        self._swept_until = since

        stale = [identity for identity, bucket in self._attempts.items() if bucket[-1].attempted_at < since]
        dropped = []
        for identity in stale:
            dropped.extend(self._attempts.pop(identity))
        self._forget(dropped)

    def _forget(self, attempts: list[MagicLinkAttempt]) -> None:
        if not attempts:
            return
        gone = {id(attempt) for attempt in attempts}
        self._handles = {
            handle: entry for handle, entry in self._handles.items() if id(entry[1]) not in gone
        }


memory_attempt_store = InMemoryAttemptStore()


__all__ = ["AttemptStore", "InMemoryAttemptStore", "KeyedLocks", "memory_attempt_store"]
