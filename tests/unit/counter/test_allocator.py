"""Tests for the number allocator."""

import asyncio
from uuid import uuid4

import pytest
from pymongo.errors import AutoReconnect

from threadkeeper.core.modules.counter.models import ChildKind
from threadkeeper.errors import AllocatorUnavailableError


class TestAllocate:
    """Uniqueness and ordering of allocated numbers."""

    @pytest.mark.asyncio
    async def test_first_allocation_is_one_then_consecutive(self, core):
        parent_id = uuid4()
        numbers = [await core.services.counter.allocate(parent_id, ChildKind.THREAD) for _ in range(4)]
        assert numbers == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_concurrent_allocations_are_distinct(self, core):
        parent_id = uuid4()
        numbers = await asyncio.gather(*(core.services.counter.allocate(parent_id, ChildKind.ENTRY) for _ in range(50)))
        assert sorted(numbers) == list(range(1, 51))

    @pytest.mark.asyncio
    async def test_three_concurrent_calls_continue_from_high_water_mark(self, core):
        parent_id = uuid4()
        for _ in range(7):
            await core.services.counter.allocate(parent_id, ChildKind.THREAD)
        prior = await core.services.counter.get_high_water_mark(parent_id, ChildKind.THREAD)

        numbers = await asyncio.gather(*(core.services.counter.allocate(parent_id, ChildKind.THREAD) for _ in range(3)))
        assert set(numbers) == {prior + 1, prior + 2, prior + 3}

    @pytest.mark.asyncio
    async def test_numbers_are_scoped_per_parent_and_kind(self, core):
        first, second = uuid4(), uuid4()
        allocate = core.services.counter.allocate
        assert await allocate(first, ChildKind.THREAD) == 1
        assert await allocate(first, ChildKind.THREAD) == 2
        assert await allocate(second, ChildKind.THREAD) == 1
        assert await allocate(first, ChildKind.ENTRY) == 1

    @pytest.mark.asyncio
    async def test_high_water_mark_of_unknown_parent_is_zero(self, core):
        assert await core.services.counter.get_high_water_mark(uuid4(), ChildKind.THREAD) == 0


class TestAllocatorUnavailable:
    """The allocator fails fast and never invents a number."""

    @pytest.mark.asyncio
    async def test_unreachable_store_raises(self, core, database):
        database["counters"].fail_with = AutoReconnect("connection refused")
        with pytest.raises(AllocatorUnavailableError):
            await core.services.counter.allocate(uuid4(), ChildKind.THREAD)

    @pytest.mark.asyncio
    async def test_slow_store_times_out(self, core, database):
        core.config.allocator_timeout_ms = 5
        database["counters"].delay = 0.2
        parent_id = uuid4()
        with pytest.raises(AllocatorUnavailableError):
            await core.services.counter.allocate(parent_id, ChildKind.THREAD)

        database["counters"].delay = 0
        assert await core.services.counter.get_high_water_mark(parent_id, ChildKind.THREAD) == 0

    @pytest.mark.asyncio
    async def test_recovers_once_store_is_back(self, core, database):
        parent_id = uuid4()
        assert await core.services.counter.allocate(parent_id, ChildKind.THREAD) == 1
        database["counters"].fail_with = AutoReconnect("connection refused")
        with pytest.raises(AllocatorUnavailableError):
            await core.services.counter.allocate(parent_id, ChildKind.THREAD)
        database["counters"].fail_with = None
        assert await core.services.counter.allocate(parent_id, ChildKind.THREAD) == 2
