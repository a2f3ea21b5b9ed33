"""
Keyed Lock Registry

Per-key mutual exclusion for order transitions and inventory writes.
One asyncio.Lock per key ("order:42", "item:7"), created lazily and dropped
again once nobody holds or waits on it. Acquisition is bounded by a timeout
so a stuck writer turns into a retryable LockTimeout instead of a hang.

The database row lock (SELECT ... FOR UPDATE) taken inside the transaction
covers writers in other processes; this registry serializes writers within
one process before they ever open a transaction.
"""

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Iterable

from orderflow.core.exceptions import LockTimeout

logger = logging.getLogger(__name__)


def order_key(order_id: int) -> str:
    return f"order:{order_id}"


def item_key(item_id: int) -> str:
    return f"item:{item_id}"


class KeyedLockRegistry:
    """Lazily-created asyncio locks keyed by string."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        return lock

    def _checkin(self, key: str) -> None:
        remaining = self._waiters.get(key, 1) - 1
        if remaining <= 0:
            self._waiters.pop(key, None)
            self._locks.pop(key, None)
        else:
            self._waiters[key] = remaining

    @asynccontextmanager
    async def hold(self, key: str, timeout: float = None) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        wait = self.timeout if timeout is None else timeout
        lock = self._checkout(key)
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=wait)
            except asyncio.TimeoutError:
                logger.warning(f"Lock timeout on {key} after {wait:.1f}s")
                raise LockTimeout(key, wait)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    @asynccontextmanager
    async def hold_many(self, keys: Iterable[str], timeout: float = None) -> AsyncIterator[None]:
        """
        Hold several locks at once.

        Keys are acquired in sorted order so two writers needing overlapping
        sets can never deadlock each other.
        """
        async with AsyncExitStack() as stack:
            for key in sorted(set(keys)):
                await stack.enter_async_context(self.hold(key, timeout))
            yield

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()
