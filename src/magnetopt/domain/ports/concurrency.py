"""Concurrency budget ports for cross-run coordination."""

from __future__ import annotations

from typing import AsyncContextManager, Protocol, runtime_checkable


@runtime_checkable
class RunBudgetPort(Protocol):
    """Per-run concurrency budget handle.

    Provides slot acquisition for engine fetches and AI calls,
    enforcing fair-share limits relative to other active runs.
    """

    def acquire_engine(self) -> AsyncContextManager[None]:
        """Acquire one engine slot (async context manager)."""
        ...

    def acquire_ai(self) -> AsyncContextManager[None]:
        """Acquire one AI call slot (async context manager)."""
        ...


@runtime_checkable
class ConcurrencyPoolPort(Protocol):
    """Global pool managing engine and AI slot budgets."""

    def run(self) -> AsyncContextManager[RunBudgetPort]:
        """Enter a run scope, returning a budget handle.

        Async context manager: increments the active run count on
        entry, decrements on exit, and notifies waiting runs so they
        can recalculate their fair share.
        """
        ...
