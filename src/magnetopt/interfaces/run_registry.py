"""In-memory registry of search runs started through the HTTP API."""

from __future__ import annotations

from collections import OrderedDict

import structlog

from magnetopt.application.use_cases.search_run import SearchRun

log = structlog.get_logger(__name__)


class RunRegistry:
    """Bounded map of run id -> :class:`SearchRun`.

    Oldest finished runs are evicted first once ``max_runs`` is reached.
    Runs still in flight are never evicted.
    """

    def __init__(self, max_runs: int = 64) -> None:
        self._max_runs = max_runs
        self._runs: OrderedDict[str, SearchRun] = OrderedDict()

    def __len__(self) -> int:
        return len(self._runs)

    def add(self, run: SearchRun) -> None:
        self._runs[run.run_id] = run
        self._evict()

    def get(self, run_id: str) -> SearchRun | None:
        return self._runs.get(run_id)

    def active(self) -> int:
        return sum(1 for r in self._runs.values() if not r.finished)

    def cancel_all(self) -> None:
        for run in self._runs.values():
            run.cancel()

    def _evict(self) -> None:
        excess = len(self._runs) - self._max_runs
        if excess <= 0:
            return
        for run_id in [rid for rid, r in self._runs.items() if r.finished][:excess]:
            del self._runs[run_id]
            log.debug("search_run_evicted", run_id=run_id)
