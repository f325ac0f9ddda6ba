"""Batched content analysis with per-record fallback.

Records are grouped into fixed-size batches. Each batch is one call to
the analysis capability. If the call fails as a whole (timeout, rate
limit, malformed or short response, any other error) every member of
the batch gets its own call instead. A record whose own call fails ends
up ``fallback_failed``: raw title kept, no score, no tags. Records are
never dropped.

After ``max_failed_batches`` failed batch calls in one run, further
failing batches skip the per-record fallback.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, AsyncContextManager, Protocol

import structlog

from magnetopt.domain.entities.errors import AnalysisError, ErrorKind
from magnetopt.domain.entities.progress import AnalysisBatchProgress, BatchMode
from magnetopt.domain.entities.search import (
    AnalysisStatus,
    AnalysisVerdict,
    EnrichedResult,
    RawResult,
)
from magnetopt.domain.ports.analysis import AnalysisPort
from magnetopt.domain.ports.progress import ProgressSinkPort

from .retry import RetryPolicy, UnitState, WorkUnit, call_with_retry
from .titles import clean_title_fallback, dedupe_tags, has_priority_keyword

log = structlog.get_logger(__name__)

_TOO_MANY_FAILURES = "too many batch failures"


class _MetricsRecorder(Protocol):
    """Records analysis batch metrics."""

    def record_analysis_batch(
        self,
        mode: str,
        duration_ns: int,
        *,
        analyzed: int,
        failed: int,
    ) -> None: ...


@dataclass(frozen=True)
class BatchSettings:
    """Knobs of the analysis stage."""

    batch_size: int = 10
    max_failed_batches: int = 3  # 0 disables the guard
    retry: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(max_attempts=2, timeout=60.0)
    )


@dataclass(frozen=True)
class PlannedBatch:
    index: int
    items: tuple[RawResult, ...]


def coerce_purity_score(value: Any) -> int | None:
    """Validate a purity score: integer in 0..100.

    Integral floats and digit strings are accepted; bools are not.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        score = value
    elif isinstance(value, float):
        if not value.is_integer():
            return None
        score = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        score = int(value.strip())
    else:
        return None
    return score if 0 <= score <= 100 else None


class AnalysisBatcher:
    """Runs the analysis stage for one search run.

    Not shared between runs: failure counters and batch numbering are
    per run.
    """

    def __init__(
        self,
        analyzer: AnalysisPort,
        *,
        settings: BatchSettings | None = None,
        sink: ProgressSinkPort | None = None,
        acquire_slot: Callable[[], AsyncContextManager[None]] | None = None,
        metrics: _MetricsRecorder | None = None,
    ) -> None:
        self._analyzer = analyzer
        self._settings = settings or BatchSettings()
        self._sink = sink
        self._acquire_slot = acquire_slot
        self._metrics = metrics

        self._planned = 0
        self._done = 0
        self._failed_batches = 0

    @property
    def model_name(self) -> str:
        return self._analyzer.model_name

    @property
    def failed_batches(self) -> int:
        return self._failed_batches

    @property
    def aborted(self) -> bool:
        limit = self._settings.max_failed_batches
        return limit > 0 and self._failed_batches >= limit

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(
        self,
        records: Sequence[RawResult],
        *,
        priority_keywords: Sequence[str] = (),
    ) -> list[PlannedBatch]:
        """Split *records* into numbered batches, priority matches first."""
        ordered = list(records)
        if priority_keywords:
            ordered.sort(
                key=lambda r: not has_priority_keyword(r.title, priority_keywords)
            )

        size = max(1, self._settings.batch_size)
        batches: list[PlannedBatch] = []
        for start in range(0, len(ordered), size):
            batches.append(
                PlannedBatch(
                    index=self._planned,
                    items=tuple(ordered[start : start + size]),
                )
            )
            self._planned += 1
        return batches

    async def analyze(
        self,
        records: Sequence[RawResult],
        *,
        priority_keywords: Sequence[str] = (),
    ) -> list[EnrichedResult]:
        """Analyze *records*, batches running concurrently."""
        batches = self.plan(records, priority_keywords=priority_keywords)
        async with asyncio.TaskGroup() as tg:
            tasks = [tg.create_task(self.run_batch(batch)) for batch in batches]
        results: list[EnrichedResult] = []
        for task in tasks:
            results.extend(task.result())
        return results

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run_batch(self, batch: PlannedBatch) -> list[EnrichedResult]:
        """Resolve every record of *batch* to a terminal status."""
        t0 = time.perf_counter_ns()
        items = list(batch.items)

        if self.aborted:
            results = self.fail_batch(batch, _TOO_MANY_FAILURES)
            return self._finish(batch, results, "aborted", t0)

        unit = WorkUnit(f"analysis_batch:{batch.index}")
        try:
            verdicts = await call_with_retry(
                lambda: self._call_batch(items),
                policy=self._settings.retry,
                unit=unit,
                timeout_error=lambda: AnalysisError(
                    "analysis batch timed out", kind=ErrorKind.TRANSIENT
                ),
                exhausted_state=UnitState.FALLBACK,
                acquire=self._slot,
            )
        except Exception as exc:
            self._failed_batches += 1
            log.warning(
                "analysis_batch_failed",
                batch_index=batch.index,
                size=len(items),
                attempts=unit.attempts,
                failed_batches=self._failed_batches,
                error=str(exc) or type(exc).__name__,
            )
            if self.aborted:
                unit.transition(UnitState.FAILED, error=_TOO_MANY_FAILURES)
                results = self.fail_batch(batch, _TOO_MANY_FAILURES)
                return self._finish(batch, results, "aborted", t0)

            results = [await self._fallback_one(item) for item in items]
            unit.transition(
                UnitState.SUCCEEDED
                if any(r.status is AnalysisStatus.ANALYZED for r in results)
                else UnitState.FAILED
            )
            return self._finish(batch, results, "fallback", t0)

        results = []
        for item, verdict in zip(items, verdicts):
            enriched = self._enrich(item, verdict) if verdict is not None else None
            if enriched is None:
                log.debug(
                    "analysis_item_invalid",
                    batch_index=batch.index,
                    title=item.title,
                )
                enriched = await self._fallback_one(item)
            results.append(enriched)
        return self._finish(batch, results, "batch", t0)

    async def _call_batch(self, items: list[RawResult]) -> list[AnalysisVerdict | None]:
        verdicts = await self._analyzer.analyze_batch(items)
        if len(verdicts) != len(items):
            raise AnalysisError(
                f"expected {len(items)} verdicts, got {len(verdicts)}",
                kind=ErrorKind.MALFORMED,
            )
        return verdicts

    async def _call_one(self, item: RawResult) -> AnalysisVerdict:
        return await self._analyzer.analyze_one(item)

    async def _fallback_one(self, item: RawResult) -> EnrichedResult:
        unit = WorkUnit(f"analysis_record:{item.key}")
        try:
            verdict = await call_with_retry(
                lambda: self._call_one(item),
                policy=self._settings.retry,
                unit=unit,
                timeout_error=lambda: AnalysisError(
                    "analysis call timed out", kind=ErrorKind.TRANSIENT
                ),
                acquire=self._slot,
            )
        except Exception as exc:
            log.warning(
                "analysis_record_failed",
                title=item.title,
                attempts=unit.attempts,
                error=str(exc) or type(exc).__name__,
            )
            return self._failed(item, str(exc) or type(exc).__name__)

        enriched = self._enrich(item, verdict)
        if enriched is None:
            return self._failed(
                item, f"invalid purity score: {verdict.purity_score!r}"
            )
        return enriched

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _slot(self) -> AsyncContextManager[None]:
        if self._acquire_slot is None:
            return contextlib.nullcontext()
        return self._acquire_slot()

    def _enrich(self, item: RawResult, verdict: AnalysisVerdict) -> EnrichedResult | None:
        score = coerce_purity_score(verdict.purity_score)
        if score is None:
            return None
        clean = (verdict.clean_title or "").strip() or clean_title_fallback(item.title)
        return EnrichedResult(
            raw=item,
            status=AnalysisStatus.ANALYZED,
            clean_title=clean,
            purity_score=score,
            tags=dedupe_tags(verdict.tags),
            model_name=self.model_name,
        )

    def fail_batch(self, batch: PlannedBatch, error: str) -> list[EnrichedResult]:
        """Mark every record of *batch* fallback_failed with *error*."""
        return [self._failed(item, error) for item in batch.items]

    def _failed(self, item: RawResult, error: str) -> EnrichedResult:
        return EnrichedResult(
            raw=item,
            status=AnalysisStatus.FALLBACK_FAILED,
            model_name=self.model_name,
            error=error,
        )

    def _finish(
        self,
        batch: PlannedBatch,
        results: list[EnrichedResult],
        mode: BatchMode,
        t0: int,
    ) -> list[EnrichedResult]:
        self._done += 1
        analyzed = sum(1 for r in results if r.status is AnalysisStatus.ANALYZED)
        failed = len(results) - analyzed

        if self._metrics is not None:
            self._metrics.record_analysis_batch(
                mode,
                time.perf_counter_ns() - t0,
                analyzed=analyzed,
                failed=failed,
            )
        if self._sink is not None:
            self._sink.publish(
                AnalysisBatchProgress(
                    batch_index=batch.index,
                    done=self._done,
                    total=self._planned,
                    model_name=self.model_name,
                    mode=mode,
                    analyzed=analyzed,
                    failed=failed,
                )
            )
        log.debug(
            "analysis_batch_done",
            batch_index=batch.index,
            mode=mode,
            analyzed=analyzed,
            failed=failed,
        )
        return results
