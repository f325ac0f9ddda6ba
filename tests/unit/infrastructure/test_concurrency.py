"""Tests for ConcurrencyPool and RunBudget."""

from __future__ import annotations

import asyncio

import pytest

from magnetopt.domain.ports.concurrency import ConcurrencyPoolPort, RunBudgetPort
from magnetopt.infrastructure.concurrency import ConcurrencyPool, RunBudget

# ---------------------------------------------------------------------------
# ConcurrencyPool basics
# ---------------------------------------------------------------------------


class TestConcurrencyPoolInit:
    def test_default_slots(self) -> None:
        pool = ConcurrencyPool()
        assert pool.engine_slots == 5
        assert pool.ai_slots == 2
        assert pool.active_runs == 0

    def test_satisfies_ports(self) -> None:
        pool = ConcurrencyPool()
        assert isinstance(pool, ConcurrencyPoolPort)

    @pytest.mark.asyncio
    async def test_run_increments_active_count(self) -> None:
        pool = ConcurrencyPool(engine_slots=4, ai_slots=2)
        async with pool.run() as budget:
            assert pool.active_runs == 1
            assert isinstance(budget, RunBudget)
            assert isinstance(budget, RunBudgetPort)
        assert pool.active_runs == 0

    @pytest.mark.asyncio
    async def test_nested_runs(self) -> None:
        pool = ConcurrencyPool()
        async with pool.run():
            async with pool.run():
                assert pool.active_runs == 2
            assert pool.active_runs == 1
        assert pool.active_runs == 0

    def test_snapshot(self) -> None:
        pool = ConcurrencyPool(engine_slots=8, ai_slots=3)
        assert pool.snapshot() == {
            "engine_slots": 8,
            "ai_slots": 3,
            "engine_available": 8,
            "ai_available": 3,
            "active_runs": 0,
        }


# ---------------------------------------------------------------------------
# Fair-share math
# ---------------------------------------------------------------------------


class TestFairShare:
    @pytest.mark.asyncio
    async def test_single_run_gets_all_slots(self) -> None:
        pool = ConcurrencyPool(engine_slots=10, ai_slots=3)
        async with pool.run() as budget:
            assert budget._fair_share(pool.engine_slots) == 10
            assert budget._fair_share(pool.ai_slots) == 3

    @pytest.mark.asyncio
    async def test_two_runs_split_slots(self) -> None:
        pool = ConcurrencyPool(engine_slots=10, ai_slots=4)
        async with pool.run() as a, pool.run() as b:
            assert a._fair_share(pool.engine_slots) == 5
            assert b._fair_share(pool.ai_slots) == 2

    @pytest.mark.asyncio
    async def test_fair_share_never_below_one(self) -> None:
        pool = ConcurrencyPool(engine_slots=1, ai_slots=1)
        async with pool.run() as a, pool.run(), pool.run():
            assert a._fair_share(pool.ai_slots) == 1


# ---------------------------------------------------------------------------
# Slot acquisition
# ---------------------------------------------------------------------------


class TestAcquire:
    @pytest.mark.asyncio
    async def test_slots_are_released(self) -> None:
        pool = ConcurrencyPool(engine_slots=2, ai_slots=1)
        async with pool.run() as budget:
            async with budget.acquire_engine():
                assert budget.held_engine == 1
                assert pool.snapshot()["engine_available"] == 1
            async with budget.acquire_ai():
                assert budget.held_ai == 1
                assert pool.snapshot()["ai_available"] == 0
        assert pool.snapshot()["engine_available"] == 2
        assert pool.snapshot()["ai_available"] == 1

    @pytest.mark.asyncio
    async def test_ai_limit_is_enforced(self) -> None:
        pool = ConcurrencyPool(engine_slots=4, ai_slots=2)
        peak = 0
        current = 0

        async def call(budget: RunBudget) -> None:
            nonlocal peak, current
            async with budget.acquire_ai():
                current += 1
                peak = max(peak, current)
                await asyncio.sleep(0.01)
                current -= 1

        async with pool.run() as budget:
            await asyncio.gather(*(call(budget) for _ in range(6)))

        assert peak == 2

    @pytest.mark.asyncio
    async def test_second_run_limited_to_its_share(self) -> None:
        pool = ConcurrencyPool(engine_slots=4, ai_slots=1)
        peak_b = 0
        current_b = 0

        async def fetch(budget: RunBudget) -> None:
            nonlocal peak_b, current_b
            async with budget.acquire_engine():
                current_b += 1
                peak_b = max(peak_b, current_b)
                await asyncio.sleep(0.01)
                current_b -= 1

        async with pool.run(), pool.run() as b:
            await asyncio.gather(*(fetch(b) for _ in range(5)))

        assert peak_b == 2
