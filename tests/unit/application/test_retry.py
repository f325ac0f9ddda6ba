"""Tests for WorkUnit transitions and call_with_retry."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator

import pytest

from magnetopt.application.pipeline.retry import (
    RetryPolicy,
    UnitState,
    WorkUnit,
    call_with_retry,
)
from magnetopt.domain.entities.errors import ErrorKind, MagnetOptError


def _timeout() -> MagnetOptError:
    return MagnetOptError("timed out", kind=ErrorKind.TRANSIENT)


class _Flaky:
    """Raises the queued errors, then returns ``value``."""

    def __init__(self, errors: list[Exception], value: str = "ok") -> None:
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


class _Sleeps:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# ---------------------------------------------------------------------------
# WorkUnit
# ---------------------------------------------------------------------------


class TestWorkUnit:
    def test_happy_path(self) -> None:
        unit = WorkUnit("x")
        unit.transition(UnitState.RETRYING, error="boom")
        unit.transition(UnitState.SUCCEEDED)
        assert unit.is_terminal
        assert unit.history == [UnitState.PENDING, UnitState.RETRYING]
        assert unit.last_error == "boom"

    def test_fallback_may_only_finish(self) -> None:
        unit = WorkUnit("x")
        unit.transition(UnitState.FALLBACK)
        assert not unit.is_terminal
        with pytest.raises(ValueError, match="illegal transition"):
            unit.transition(UnitState.RETRYING)
        unit.transition(UnitState.FAILED)
        assert unit.is_terminal

    @pytest.mark.parametrize("terminal", [UnitState.SUCCEEDED, UnitState.FAILED])
    def test_terminal_states_are_final(self, terminal: UnitState) -> None:
        unit = WorkUnit("x")
        unit.transition(terminal)
        with pytest.raises(ValueError):
            unit.transition(UnitState.PENDING)


# ---------------------------------------------------------------------------
# RetryPolicy
# ---------------------------------------------------------------------------


class TestRetryPolicy:
    def test_backoff_grows_and_is_capped(self) -> None:
        policy = RetryPolicy(backoff_base=1.0, max_backoff=5.0)
        assert 1.0 <= policy.delay_for(0) <= 2.0
        assert 2.0 <= policy.delay_for(1) <= 3.0
        assert policy.delay_for(10) == 5.0

    def test_retry_after_wins_but_is_capped(self) -> None:
        policy = RetryPolicy(backoff_base=1.0, max_backoff=5.0)
        assert policy.delay_for(0, retry_after=3.0) == 3.0
        assert policy.delay_for(0, retry_after=60.0) == 5.0
        assert policy.delay_for(0, retry_after=-1.0) == 0.0


# ---------------------------------------------------------------------------
# call_with_retry
# ---------------------------------------------------------------------------


class TestCallWithRetry:
    async def test_transient_errors_are_retried(self) -> None:
        fn = _Flaky([MagnetOptError("429", kind=ErrorKind.TRANSIENT)])
        sleeps = _Sleeps()
        unit = WorkUnit("u")

        result = await call_with_retry(
            fn,
            policy=RetryPolicy(max_attempts=3, backoff_base=0.0, max_backoff=0.0),
            unit=unit,
            timeout_error=_timeout,
            sleep=sleeps,
        )

        assert result == "ok"
        assert fn.calls == 2
        assert unit.state is UnitState.SUCCEEDED
        assert unit.history == [UnitState.PENDING, UnitState.RETRYING]
        assert sleeps.delays == [0.0]

    async def test_permanent_error_is_not_retried(self) -> None:
        fn = _Flaky([MagnetOptError("401", kind=ErrorKind.PERMANENT)])
        unit = WorkUnit("u")

        with pytest.raises(MagnetOptError, match="401"):
            await call_with_retry(
                fn, policy=RetryPolicy(), unit=unit, timeout_error=_timeout
            )

        assert fn.calls == 1
        assert unit.state is UnitState.FAILED

    async def test_malformed_error_is_not_retried(self) -> None:
        fn = _Flaky([MagnetOptError("bad json", kind=ErrorKind.MALFORMED)])
        unit = WorkUnit("u")

        with pytest.raises(MagnetOptError):
            await call_with_retry(
                fn,
                policy=RetryPolicy(),
                unit=unit,
                timeout_error=_timeout,
                exhausted_state=UnitState.FALLBACK,
            )

        assert fn.calls == 1
        assert unit.state is UnitState.FALLBACK

    async def test_attempts_are_bounded(self) -> None:
        fn = _Flaky([MagnetOptError("503", kind=ErrorKind.TRANSIENT)] * 5)
        sleeps = _Sleeps()
        unit = WorkUnit("u")

        with pytest.raises(MagnetOptError):
            await call_with_retry(
                fn,
                policy=RetryPolicy(max_attempts=3, backoff_base=0.0, max_backoff=0.0),
                unit=unit,
                timeout_error=_timeout,
                sleep=sleeps,
            )

        assert fn.calls == 3
        assert unit.attempts == 3
        assert len(sleeps.delays) == 2
        assert unit.state is UnitState.FAILED

    async def test_retry_after_is_honoured(self) -> None:
        fn = _Flaky(
            [MagnetOptError("429", kind=ErrorKind.TRANSIENT, retry_after=2.5)]
        )
        sleeps = _Sleeps()

        await call_with_retry(
            fn,
            policy=RetryPolicy(max_attempts=2, backoff_base=0.1, max_backoff=10.0),
            unit=WorkUnit("u"),
            timeout_error=_timeout,
            sleep=sleeps,
        )

        assert sleeps.delays == [2.5]

    async def test_timeout_counts_as_transient(self) -> None:
        calls = 0

        async def slow() -> str:
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(1.0)
            return "late"

        unit = WorkUnit("u")
        result = await call_with_retry(
            slow,
            policy=RetryPolicy(
                max_attempts=2, backoff_base=0.0, max_backoff=0.0, timeout=0.01
            ),
            unit=unit,
            timeout_error=_timeout,
        )

        assert result == "late"
        assert unit.last_error == "timed out"

    async def test_acquire_wait_is_outside_the_timeout(self) -> None:
        events: list[str] = []

        @contextlib.asynccontextmanager
        async def slow_slot() -> AsyncIterator[None]:
            await asyncio.sleep(0.1)
            events.append("acquired")
            yield
            events.append("released")

        async def quick() -> str:
            await asyncio.sleep(0.01)
            events.append("called")
            return "ok"

        unit = WorkUnit("u")
        result = await call_with_retry(
            quick,
            policy=RetryPolicy(
                max_attempts=1, backoff_base=0.0, max_backoff=0.0, timeout=0.05
            ),
            unit=unit,
            timeout_error=_timeout,
            acquire=slow_slot,
        )

        assert result == "ok"
        assert unit.attempts == 1
        assert events == ["acquired", "called", "released"]

    async def test_acquire_is_released_between_attempts(self) -> None:
        held = 0
        peak = 0

        @contextlib.asynccontextmanager
        async def slot() -> AsyncIterator[None]:
            nonlocal held, peak
            held += 1
            peak = max(peak, held)
            try:
                yield
            finally:
                held -= 1

        fn = _Flaky([MagnetOptError("busy", kind=ErrorKind.TRANSIENT)])
        sleeps = _Sleeps()

        async def sleep(delay: float) -> None:
            assert held == 0
            await sleeps(delay)

        result = await call_with_retry(
            fn,
            policy=RetryPolicy(max_attempts=2, backoff_base=0.0, max_backoff=0.0),
            unit=WorkUnit("u"),
            timeout_error=_timeout,
            acquire=slot,
            sleep=sleep,
        )

        assert result == "ok"
        assert peak == 1
        assert held == 0

    async def test_unexpected_exception_is_not_retried(self) -> None:
        fn = _Flaky([RuntimeError("boom")])
        unit = WorkUnit("u")

        with pytest.raises(RuntimeError):
            await call_with_retry(
                fn, policy=RetryPolicy(), unit=unit, timeout_error=_timeout
            )

        assert fn.calls == 1
        assert unit.state is UnitState.FAILED
        assert unit.last_error == "boom"
