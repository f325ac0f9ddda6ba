"""Bounded retry with capped exponential backoff.

Every unit of work (an engine fetch, an extraction call, an analysis
batch or record) is tracked by a :class:`WorkUnit` whose state only moves
along the allowed transitions::

    pending -> retrying -> {succeeded | fallback | failed}
    fallback -> {succeeded | failed}
"""

from __future__ import annotations

import asyncio
import contextlib
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncContextManager, TypeVar

import structlog

from magnetopt.domain.entities.errors import ErrorKind, MagnetOptError

log = structlog.get_logger(__name__)

T = TypeVar("T")


class UnitState(str, Enum):
    PENDING = "pending"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FALLBACK = "fallback"
    FAILED = "failed"


_ALLOWED: dict[UnitState, frozenset[UnitState]] = {
    UnitState.PENDING: frozenset(
        {UnitState.RETRYING, UnitState.SUCCEEDED, UnitState.FALLBACK, UnitState.FAILED}
    ),
    UnitState.RETRYING: frozenset(
        {UnitState.RETRYING, UnitState.SUCCEEDED, UnitState.FALLBACK, UnitState.FAILED}
    ),
    UnitState.FALLBACK: frozenset({UnitState.SUCCEEDED, UnitState.FAILED}),
    UnitState.SUCCEEDED: frozenset(),
    UnitState.FAILED: frozenset(),
}


@dataclass
class WorkUnit:
    """State of one unit of work."""

    name: str
    state: UnitState = UnitState.PENDING
    attempts: int = 0
    last_error: str | None = None
    history: list[UnitState] = field(default_factory=list)

    def transition(self, new_state: UnitState, *, error: str | None = None) -> None:
        if new_state not in _ALLOWED[self.state]:
            raise ValueError(
                f"illegal transition {self.state.value} -> {new_state.value} "
                f"for {self.name}"
            )
        self.history.append(self.state)
        self.state = new_state
        if error is not None:
            self.last_error = error

    @property
    def is_terminal(self) -> bool:
        return self.state in (UnitState.SUCCEEDED, UnitState.FAILED)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt bound, per-attempt timeout and backoff curve."""

    max_attempts: int = 3
    backoff_base: float = 0.5
    max_backoff: float = 10.0
    timeout: float | None = 30.0

    def delay_for(self, attempt: int, retry_after: float | None = None) -> float:
        """Delay before retry number *attempt* (0-based).

        A server-provided ``retry_after`` wins, capped at ``max_backoff``.
        """
        if retry_after is not None:
            return min(max(retry_after, 0.0), self.max_backoff)

        delay = self.backoff_base * (2**attempt)
        jitter = random.uniform(0, self.backoff_base)  # noqa: S311
        return min(delay + jitter, self.max_backoff)


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    unit: WorkUnit,
    timeout_error: Callable[[], MagnetOptError],
    exhausted_state: UnitState = UnitState.FAILED,
    acquire: Callable[[], AsyncContextManager[None]] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call *fn* until it succeeds, fails permanently or runs out of attempts.

    Only :class:`MagnetOptError` with a transient kind is retried. A
    timeout is converted with *timeout_error* and counts as transient.
    On final failure *unit* moves to *exhausted_state* and the error is
    raised. Cancellation always propagates untouched.

    *acquire*, when given, is entered around each attempt before the
    timeout starts; waiting for it never counts against the timeout and
    it is released during backoff.
    """
    while True:
        unit.attempts += 1
        try:
            async with acquire() if acquire is not None else contextlib.nullcontext():
                if policy.timeout is not None:
                    result = await asyncio.wait_for(fn(), timeout=policy.timeout)
                else:
                    result = await fn()
        except TimeoutError:
            error = timeout_error()
            if error.kind is not ErrorKind.TRANSIENT:
                error.kind = ErrorKind.TRANSIENT
        except MagnetOptError as exc:
            error = exc
        except Exception as exc:
            unit.transition(exhausted_state, error=str(exc) or type(exc).__name__)
            raise
        else:
            unit.transition(UnitState.SUCCEEDED)
            return result

        if not error.is_transient or unit.attempts >= policy.max_attempts:
            unit.transition(exhausted_state, error=str(error))
            raise error

        unit.transition(UnitState.RETRYING, error=str(error))
        delay = policy.delay_for(unit.attempts - 1, error.retry_after)
        log.info(
            "retry_scheduled",
            unit=unit.name,
            attempt=unit.attempts,
            kind=error.kind.value,
            delay=round(delay, 2),
        )
        await sleep(delay)
