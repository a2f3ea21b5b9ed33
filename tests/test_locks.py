"""Keyed lock registry tests."""

import asyncio

import pytest

from orderflow.core.exceptions import LockTimeout
from orderflow.core.locks import KeyedLockRegistry, item_key, order_key


class TestKeyedLocks:

    async def test_same_key_is_mutually_exclusive(self):
        locks = KeyedLockRegistry(timeout=1.0)
        inside = 0
        peak = 0

        async def worker():
            nonlocal inside, peak
            async with locks.hold(order_key(1)):
                inside += 1
                peak = max(peak, inside)
                await asyncio.sleep(0.01)
                inside -= 1

        await asyncio.gather(*(worker() for _ in range(5)))
        assert peak == 1

    async def test_different_keys_do_not_block(self):
        locks = KeyedLockRegistry(timeout=0.05)
        async with locks.hold(order_key(1)):
            async with locks.hold(order_key(2)):
                assert locks.is_locked(order_key(1))
                assert locks.is_locked(order_key(2))

    async def test_timeout_raises_retryable_conflict(self):
        locks = KeyedLockRegistry(timeout=0.05)
        async with locks.hold(item_key(3)):
            with pytest.raises(LockTimeout) as exc_info:
                async with locks.hold(item_key(3)):
                    pass

        assert exc_info.value.key == "item:3"
        assert exc_info.value.retryable
        assert exc_info.value.to_dict()["error"] == "LockTimeout"

    async def test_released_after_error_and_forgotten_when_idle(self):
        locks = KeyedLockRegistry()
        with pytest.raises(RuntimeError):
            async with locks.hold(order_key(9)):
                raise RuntimeError("boom")

        assert not locks.is_locked(order_key(9))
        assert locks._locks == {}

    async def test_hold_many_takes_every_key(self):
        locks = KeyedLockRegistry(timeout=0.05)
        keys = [item_key(2), item_key(1), item_key(2)]
        async with locks.hold_many(keys):
            assert locks.is_locked(item_key(1))
            assert locks.is_locked(item_key(2))
            with pytest.raises(LockTimeout):
                async with locks.hold(item_key(1)):
                    pass
        assert not locks.is_locked(item_key(1))
        assert not locks.is_locked(item_key(2))
