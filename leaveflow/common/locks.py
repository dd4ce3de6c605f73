"""Per-key asyncio locks serializing workflow and ledger mutations.

One lock exists per live key (a leave request id, or a
``(user_id, leave_type, year)`` balance key). Locks are created on first
use and discarded once nobody holds or waits on them. Multi-key
acquisition always happens in a stable order so two writers that need
the same pair of keys cannot deadlock.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable, Optional

from leaveflow.common.exceptions import ConcurrentModificationError
from leaveflow.config import settings

logger = logging.getLogger(__name__)


class KeyedLock:
    """A family of ``asyncio.Lock`` objects addressed by key."""

    def __init__(self, resource: str, timeout: Optional[float] = None) -> None:
        self.resource = resource
        self._timeout = timeout
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._refs: dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @property
    def timeout(self) -> float:
        if self._timeout is not None:
            return self._timeout
        return settings.LOCK_TIMEOUT_SECONDS

    def locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    # ── bookkeeping ─────────────────────────────────────────────────

    def _checkout(self, key: Hashable) -> asyncio.Lock:
        self._refs[key] = self._refs.get(key, 0) + 1
        return self._locks.setdefault(key, asyncio.Lock())

    def _checkin(self, key: Hashable) -> None:
        self._refs[key] -= 1
        if self._refs[key] == 0:
            del self._refs[key]
            del self._locks[key]

    # ── public API ──────────────────────────────────────────────────

    @asynccontextmanager
    async def hold(self, *keys: Hashable) -> AsyncIterator[None]:
        """Acquire every lock in *keys*, yield, then release them.

        Raises ``ConcurrentModificationError`` when a lock cannot be
        obtained within :attr:`timeout` seconds; locks already taken by
        this call are released before the error propagates.
        """
        ordered = sorted(set(keys), key=str)
        acquired: list[Hashable] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    async with asyncio.timeout(self.timeout):
                        await lock.acquire()
                except TimeoutError:
                    self._checkin(key)
                    logger.warning(
                        "Timed out after %ss waiting for %s lock %s",
                        self.timeout, self.resource, key,
                    )
                    raise ConcurrentModificationError(self.resource) from None
                except asyncio.CancelledError:
                    self._checkin(key)
                    raise
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._checkin(key)


# Lock order across the engine: requester, then request, then balance keys.
requester_locks = KeyedLock("Leave submission")
request_locks = KeyedLock("Leave request")
balance_locks = KeyedLock("Leave balance")
