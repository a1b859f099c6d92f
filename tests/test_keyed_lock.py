# tests/test_keyed_lock.py
"""
Tests for KeyedLock - per-key mutual exclusion.
"""
import asyncio

import pytest

from mlm_system.utils.keyed_lock import KeyedLock


class TestKeyedLock:

    @pytest.mark.asyncio
    async def test_same_key_serializes(self):
        locks = KeyedLock()
        trace = []

        async def worker(name):
            async with locks.hold(("member", 1)):
                trace.append(f"{name}:in")
                await asyncio.sleep(0.01)
                trace.append(f"{name}:out")

        await asyncio.gather(worker("a"), worker("b"))

        assert trace in (
            ["a:in", "a:out", "b:in", "b:out"],
            ["b:in", "b:out", "a:in", "a:out"],
        )

    @pytest.mark.asyncio
    async def test_different_keys_interleave(self):
        locks = KeyedLock()
        trace = []

        async def worker(key):
            async with locks.hold(key):
                trace.append(f"{key}:in")
                await asyncio.sleep(0.01)
                trace.append(f"{key}:out")

        await asyncio.gather(worker(1), worker(2))

        assert trace[:2] == ["1:in", "2:in"]

    @pytest.mark.asyncio
    async def test_lock_dropped_after_release(self):
        locks = KeyedLock()

        async with locks.hold("k"):
            assert locks.isHeld("k")
            assert len(locks) == 1

        assert not locks.isHeld("k")
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        locks = KeyedLock()

        with pytest.raises(RuntimeError):
            async with locks.hold("k"):
                raise RuntimeError("boom")

        assert len(locks) == 0
