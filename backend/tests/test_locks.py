"""Tests for KeyedLocks."""

import asyncio

import pytest

from channelflow.services.locks import KeyedLocks


class TestKeyedLocks:
    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        locks = KeyedLocks()
        order = []

        async def worker(name):
            async with locks.hold("lead-1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self):
        locks = KeyedLocks()
        inside = asyncio.Event()

        async def first():
            async with locks.hold("lead-1"):
                await asyncio.wait_for(inside.wait(), timeout=1)

        async def second():
            async with locks.hold("lead-2"):
                inside.set()

        await asyncio.gather(first(), second())

    @pytest.mark.asyncio
    async def test_locks_are_dropped_when_unused(self):
        locks = KeyedLocks()

        async with locks.hold("lead-1"):
            assert locks.is_locked("lead-1")
            assert len(locks) == 1

        assert len(locks) == 0
        assert not locks.is_locked("lead-1")
