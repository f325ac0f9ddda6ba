"""Zero-impact in-memory performance metrics.

All counters are plain Python integers manipulated inside the single-threaded
async event loop: no locks, no I/O, no external dependencies.

``time.perf_counter_ns()`` is used for timing (monotonic, nanosecond
resolution, near-zero overhead).
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field


def _avg_ms(total_ns: int, count: int) -> float:
    return round(total_ns / count / 1_000_000, 1) if count else 0.0


@dataclass
class EngineStats:
    """Accumulated statistics for a single engine."""

    fetches: int = 0
    successes: int = 0
    failures: int = 0
    total_results: int = 0
    total_duration_ns: int = 0

    def snapshot(self) -> dict[str, object]:
        """Return a JSON-serializable summary."""
        return {
            "fetches": self.fetches,
            "successes": self.successes,
            "failures": self.failures,
            "total_results": self.total_results,
            "avg_duration_ms": _avg_ms(self.total_duration_ns, self.fetches),
        }


@dataclass
class AnalysisStats:
    """Accumulated statistics for analysis batches."""

    batches: int = 0
    by_mode: dict[str, int] = field(default_factory=dict)
    analyzed: int = 0
    failed: int = 0
    total_duration_ns: int = 0

    def snapshot(self) -> dict[str, object]:
        return {
            "batches": self.batches,
            "by_mode": dict(sorted(self.by_mode.items())),
            "analyzed": self.analyzed,
            "failed": self.failed,
            "avg_duration_ms": _avg_ms(self.total_duration_ns, self.batches),
        }


@dataclass
class RunStats:
    """Accumulated statistics for whole search runs."""

    runs: int = 0
    cancelled: int = 0
    total_results: int = 0
    runs_with_failed_engines: int = 0
    total_duration_ns: int = 0

    def snapshot(self) -> dict[str, object]:
        return {
            "runs": self.runs,
            "cancelled": self.cancelled,
            "total_results": self.total_results,
            "runs_with_failed_engines": self.runs_with_failed_engines,
            "avg_duration_ms": _avg_ms(self.total_duration_ns, self.runs),
        }


@dataclass
class MetricsCollector:
    """Central in-memory metrics collector.

    Thread-safety is not required: the async event loop is
    single-threaded, so plain integer increments are atomic enough.
    """

    _engines: dict[str, EngineStats] = field(default_factory=dict)
    _analysis: AnalysisStats = field(default_factory=AnalysisStats)
    _runs: RunStats = field(default_factory=RunStats)
    _start_ns: int = field(default_factory=time.perf_counter_ns)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_engine_fetch(
        self,
        engine_id: str,
        duration_ns: int,
        result_count: int,
        *,
        success: bool,
    ) -> None:
        """Record one engine fetch (all pages, including extraction)."""
        stats = self._engines.get(engine_id)
        if stats is None:
            stats = EngineStats()
            self._engines[engine_id] = stats

        stats.fetches += 1
        stats.total_duration_ns += duration_ns
        if success:
            stats.successes += 1
            stats.total_results += result_count
        else:
            stats.failures += 1

    def record_analysis_batch(
        self,
        mode: str,
        duration_ns: int,
        *,
        analyzed: int,
        failed: int,
    ) -> None:
        stats = self._analysis
        stats.batches += 1
        stats.by_mode[mode] = stats.by_mode.get(mode, 0) + 1
        stats.analyzed += analyzed
        stats.failed += failed
        stats.total_duration_ns += duration_ns

    def record_run(
        self,
        duration_ns: int,
        result_count: int,
        *,
        failed_engines: int,
        cancelled: bool,
    ) -> None:
        stats = self._runs
        stats.runs += 1
        stats.total_duration_ns += duration_ns
        stats.total_results += result_count
        if failed_engines:
            stats.runs_with_failed_engines += 1
        if cancelled:
            stats.cancelled += 1

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, object]:
        """Return a JSON-serializable snapshot of all metrics."""
        uptime_ns = time.perf_counter_ns() - self._start_ns
        return {
            "uptime_seconds": round(uptime_ns / 1_000_000_000, 1),
            "engines": {
                name: stats.snapshot() for name, stats in sorted(self._engines.items())
            },
            "analysis": self._analysis.snapshot(),
            "runs": self._runs.snapshot(),
        }
