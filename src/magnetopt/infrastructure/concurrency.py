"""Global concurrency pool with fair-share budgets per search run.

Two slot pools are shared by every concurrent run: engine fetch slots
and AI call slots. Each run receives a ``RunBudget`` that limits how
many slots it may hold, based on the number of active runs.

Fair-share algorithm:
    fair_share = max(1, total_slots // active_runs)

With a single active run the configured limits apply exactly. When a
run exits, the remaining runs see a larger allowance.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog

log = structlog.get_logger(__name__)


class RunBudget:
    """Per-run concurrency budget enforcing fair-share limits.

    Created by :meth:`ConcurrencyPool.run`, not instantiated directly.
    """

    def __init__(
        self,
        *,
        engine_sem: asyncio.Semaphore,
        ai_sem: asyncio.Semaphore,
        pool: ConcurrencyPool,
        condition: asyncio.Condition,
    ) -> None:
        self._engine_sem = engine_sem
        self._ai_sem = ai_sem
        self._pool = pool
        self._condition = condition
        self._held_engine = 0
        self._held_ai = 0

    @property
    def held_engine(self) -> int:
        return self._held_engine

    @property
    def held_ai(self) -> int:
        return self._held_ai

    def _fair_share(self, total: int) -> int:
        active = self._pool.active_runs
        return max(1, total // active) if active > 0 else 1

    @asynccontextmanager
    async def acquire_engine(self) -> AsyncIterator[None]:
        """Acquire one engine fetch slot, respecting the fair share."""
        async with self._condition:
            while self._held_engine >= self._fair_share(self._pool.engine_slots):
                await self._condition.wait()
            self._held_engine += 1
        try:
            async with self._engine_sem:
                yield
        finally:
            async with self._condition:
                self._held_engine -= 1
                self._condition.notify_all()

    @asynccontextmanager
    async def acquire_ai(self) -> AsyncIterator[None]:
        """Acquire one AI call slot, respecting the fair share."""
        async with self._condition:
            while self._held_ai >= self._fair_share(self._pool.ai_slots):
                await self._condition.wait()
            self._held_ai += 1
        try:
            async with self._ai_sem:
                yield
        finally:
            async with self._condition:
                self._held_ai -= 1
                self._condition.notify_all()


class ConcurrencyPool:
    """Process-wide pool of engine and AI slots.

    Parameters:
        engine_slots: Total engine fetch slots (shared globally).
        ai_slots: Total AI call slots (shared globally).
    """

    def __init__(self, *, engine_slots: int = 5, ai_slots: int = 2) -> None:
        self.engine_slots = engine_slots
        self.ai_slots = ai_slots
        self._engine_sem = asyncio.Semaphore(engine_slots)
        self._ai_sem = asyncio.Semaphore(ai_slots)
        self._active_runs = 0
        self._condition = asyncio.Condition()

    @property
    def active_runs(self) -> int:
        return self._active_runs

    @asynccontextmanager
    async def run(self) -> AsyncIterator[RunBudget]:
        """Enter a run scope, returning a fair-share budget."""
        async with self._condition:
            self._active_runs += 1
            self._condition.notify_all()
        budget = RunBudget(
            engine_sem=self._engine_sem,
            ai_sem=self._ai_sem,
            pool=self,
            condition=self._condition,
        )
        try:
            yield budget
        finally:
            async with self._condition:
                self._active_runs -= 1
                self._condition.notify_all()
            log.debug("run_budget_released", active_runs=self._active_runs)

    def snapshot(self) -> dict[str, int]:
        """Current utilisation (for the stats endpoint)."""
        return {
            "engine_slots": self.engine_slots,
            "ai_slots": self.ai_slots,
            "engine_available": self._engine_sem._value,  # noqa: SLF001
            "ai_available": self._ai_sem._value,  # noqa: SLF001
            "active_runs": self._active_runs,
        }
