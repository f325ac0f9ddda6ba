"""Search orchestration use case.

query -> built-in engines (sequential, merged first)
      -> remaining engines in parallel
      -> extraction for HTML engines
      -> incremental merge
      -> batched analysis of newly merged records
      -> Done.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import time
from collections.abc import AsyncIterator, Callable, Sequence
from typing import AsyncContextManager, Protocol
from uuid import uuid4

import structlog

from magnetopt.application.pipeline.analysis_batcher import (
    AnalysisBatcher,
    BatchSettings,
    PlannedBatch,
)
from magnetopt.application.pipeline.extraction_client import ExtractionClient
from magnetopt.application.pipeline.progress_bus import ProgressBus
from magnetopt.application.pipeline.result_merger import ResultMerger
from magnetopt.application.pipeline.retry import RetryPolicy, WorkUnit, call_with_retry
from magnetopt.application.pipeline.titles import title_matches_keyword
from magnetopt.domain.entities.errors import (
    EngineFetchError,
    ErrorKind,
    ExtractionError,
    MagnetOptError,
)
from magnetopt.domain.entities.progress import (
    Done,
    EngineCompleted,
    EngineStarted,
    ProgressEvent,
    RunErrorSummary,
)
from magnetopt.domain.entities.search import (
    AnalysisStatus,
    HtmlPage,
    ParsingMode,
    RawResult,
    ResultSnapshot,
    SearchQuery,
    SortOrder,
)
from magnetopt.domain.ports.analysis import AnalysisPort
from magnetopt.domain.ports.concurrency import ConcurrencyPoolPort, RunBudgetPort
from magnetopt.domain.ports.engine import EnginePort
from magnetopt.domain.ports.progress import ProgressSinkPort

log = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Protocols: what this use case needs from its dependencies.
# ---------------------------------------------------------------------------


class _SearchSettings(Protocol):
    """Configuration values consumed by SearchOrchestrator."""

    max_concurrent_engines: int
    engine_timeout_seconds: float
    fetch_max_attempts: int
    fetch_backoff_seconds: float
    fetch_max_backoff_seconds: float


class _MetricsRecorder(Protocol):
    """Records engine, analysis and run metrics."""

    def record_engine_fetch(
        self,
        engine_id: str,
        duration_ns: int,
        result_count: int,
        *,
        success: bool,
    ) -> None: ...

    def record_analysis_batch(
        self,
        mode: str,
        duration_ns: int,
        *,
        analyzed: int,
        failed: int,
    ) -> None: ...

    def record_run(
        self,
        duration_ns: int,
        result_count: int,
        *,
        failed_engines: int,
        cancelled: bool,
    ) -> None: ...


class _SemaphoreBudget:
    """Run-local budget used when no global pool is wired."""

    def __init__(self, engine_slots: int, ai_slots: int) -> None:
        self._engine_sem = asyncio.Semaphore(max(1, engine_slots))
        self._ai_sem = asyncio.Semaphore(max(1, ai_slots))

    def acquire_engine(self) -> AsyncContextManager[None]:
        return _hold(self._engine_sem)

    def acquire_ai(self) -> AsyncContextManager[None]:
        return _hold(self._ai_sem)


@contextlib.asynccontextmanager
async def _hold(sem: asyncio.Semaphore) -> AsyncIterator[None]:
    async with sem:
        yield


_END = object()


# ---------------------------------------------------------------------------
# Run handle
# ---------------------------------------------------------------------------


class SearchRun:
    """One in-flight search. Created by :meth:`SearchOrchestrator.start`.

    All results live here and die with the run.
    """

    def __init__(
        self,
        orchestrator: SearchOrchestrator,
        query: SearchQuery,
        engines: Sequence[EnginePort],
        sink: ProgressSinkPort,
        *,
        bus: ProgressBus | None,
        sort: SortOrder,
    ) -> None:
        self.run_id = uuid4().hex
        self.query = query
        self._orch = orchestrator
        self._engines = list(engines)
        self._sink = sink
        self._bus = bus
        self._sort = sort

        self._merger = ResultMerger()
        self._snapshots: asyncio.Queue[object] = asyncio.Queue()
        self._snapshots_taken = False
        self._failed_engines: list[str] = []
        self._cancelled = False
        self._task: asyncio.Task[ResultSnapshot] | None = None
        self._tg: asyncio.TaskGroup | None = None
        self._batcher: AnalysisBatcher | None = None

    # ------------------------------------------------------------------
    # Public handle API
    # ------------------------------------------------------------------

    @property
    def finished(self) -> bool:
        return self._task is not None and self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def failed_engines(self) -> tuple[str, ...]:
        return tuple(self._failed_engines)

    def snapshot(self, sort: SortOrder | None = None) -> ResultSnapshot:
        """Consistent view of the merged collection at this instant."""
        return self._merger.snapshot(sort or self._sort, final=self.finished)

    def snapshots(self) -> AsyncIterator[ResultSnapshot]:
        """Every merged state, in order, ending with the final snapshot."""
        if self._snapshots_taken:
            raise RuntimeError("snapshots() supports a single consumer")
        self._snapshots_taken = True
        return self._iter_snapshots()

    async def _iter_snapshots(self) -> AsyncIterator[ResultSnapshot]:
        while True:
            item = await self._snapshots.get()
            if item is _END:
                return
            if not isinstance(item, ResultSnapshot):
                raise TypeError(f"unexpected item on snapshot queue: {item!r}")
            yield item
            if item.final:
                return

    def events(self) -> AsyncIterator[ProgressEvent]:
        if self._bus is None:
            raise RuntimeError("events() is only available with the built-in bus")
        return self._bus.subscribe()

    def cancel(self) -> None:
        """Cancel the run. Synchronous; no event or snapshot follows."""
        if self._cancelled or self.finished:
            return
        self._cancelled = True
        self._sink.close()
        while not self._snapshots.empty():
            self._snapshots.get_nowait()
        self._snapshots.put_nowait(_END)
        if self._task is not None:
            self._task.cancel()
        log.info("search_run_cancel_requested", run_id=self.run_id)

    async def wait(self) -> ResultSnapshot:
        """Wait for the run and return its final snapshot.

        A cancelled run returns whatever had been merged.
        """
        if self._task is None:
            raise RuntimeError("run was never started")
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if self._cancelled:
                return self._merger.snapshot(self._sort)
            raise

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _launch(self) -> None:
        self._task = asyncio.create_task(
            self._execute(), name=f"search-run-{self.run_id}"
        )

    def _select_engines(self) -> list[EnginePort]:
        wanted = set(self.query.engine_ids)
        if not wanted:
            return list(self._engines)
        return [e for e in self._engines if e.descriptor.id in wanted]

    async def _execute(self) -> ResultSnapshot:
        t0 = time.perf_counter_ns()
        # task-local; inherited by engine and batch tasks
        structlog.contextvars.bind_contextvars(run_id=self.run_id)
        engines = self._select_engines()
        log.info(
            "search_run_started",
            run_id=self.run_id,
            keyword=self.query.keyword,
            engines=[e.descriptor.id for e in engines],
            ai_filter=self.query.ai_filter,
        )

        crashed = False
        try:
            async with self._orch._budget_scope() as budget:
                self._batcher = self._orch._new_batcher(self._sink, budget)
                async with asyncio.TaskGroup() as tg:
                    self._tg = tg
                    builtin = [e for e in engines if e.descriptor.is_builtin]
                    others = [e for e in engines if not e.descriptor.is_builtin]
                    for engine in builtin:
                        await self._run_engine(engine, budget)
                    for engine in others:
                        tg.create_task(
                            self._run_engine(engine, budget),
                            name=f"engine-{engine.descriptor.id}",
                        )
        except asyncio.CancelledError:
            log.info(
                "search_run_cancelled",
                run_id=self.run_id,
                results=len(self._merger),
            )
            self._record_run(t0, cancelled=True)
            raise
        except Exception:
            crashed = True
            log.error("search_run_crashed", run_id=self.run_id, exc_info=True)
        finally:
            self._tg = None

        failed = tuple(self._failed_engines)
        if crashed:
            self._sink.publish(
                RunErrorSummary(message="search run aborted", failed_engines=failed)
            )
        elif not engines:
            self._sink.publish(RunErrorSummary(message="no engines selected"))
        elif len(failed) == len(engines):
            self._sink.publish(
                RunErrorSummary(message="all engines failed", failed_engines=failed)
            )

        counts = self._merger.status_counts()
        final = self._merger.snapshot(self._sort, final=True)
        self._sink.publish(
            Done(
                total_results=len(final.results),
                failed_engines=failed,
                analyzed=counts[AnalysisStatus.ANALYZED.value],
                fallback_failed=counts[AnalysisStatus.FALLBACK_FAILED.value],
            )
        )
        self._snapshots.put_nowait(final)
        self._record_run(t0, cancelled=False)
        log.info(
            "search_run_done",
            run_id=self.run_id,
            results=len(final.results),
            failed_engines=list(failed),
            duration_ms=round((time.perf_counter_ns() - t0) / 1_000_000, 1),
        )
        return final

    async def _run_engine(self, engine: EnginePort, budget: RunBudgetPort) -> None:
        """Fetch, extract and merge one engine. Never raises except on cancel."""
        desc = engine.descriptor
        self._sink.publish(EngineStarted(engine_id=desc.id))

        t0 = time.perf_counter_ns()
        raws: list[RawResult] = []
        error: Exception | None = None
        try:
            async with budget.acquire_engine():
                fetched = await self._fetch(engine)
            if desc.parsing_mode is ParsingMode.HTML_EXTRACTION:
                raws = await self._extract_pages(desc.id, fetched, budget)
            else:
                raws = list(fetched)
        except MagnetOptError as exc:
            error = exc
            log.warning(
                "engine_failed",
                engine=desc.id,
                kind=exc.kind.value,
                error=str(exc),
            )
        except Exception as exc:
            error = exc
            log.warning("engine_failed", engine=desc.id, exc_info=True)
        except BaseException:
            log.warning("engine_cancelled", engine=desc.id)
            raise
        finally:
            self._orch._record_engine(
                desc.id,
                time.perf_counter_ns() - t0,
                len(raws),
                success=error is None,
            )

        if error is not None:
            self._failed_engines.append(desc.id)
            kind = getattr(error, "kind", ErrorKind.PERMANENT)
            self._sink.publish(
                EngineCompleted(
                    engine_id=desc.id,
                    count=0,
                    error=str(error) or type(error).__name__,
                    error_kind=kind.value,
                )
            )
            return

        if self.query.require_keyword_in_title:
            raws = [r for r in raws if title_matches_keyword(r.title, self.query.keyword)]

        self._ingest(raws)
        self._sink.publish(EngineCompleted(engine_id=desc.id, count=len(raws)))
        log.debug("engine_done", engine=desc.id, count=len(raws))

    async def _fetch(self, engine: EnginePort) -> list[RawResult] | list[HtmlPage]:
        desc = engine.descriptor
        max_pages = self.query.max_pages
        if desc.parsing_mode is ParsingMode.HTML_EXTRACTION:
            call = functools.partial(engine.fetch_raw_html, self.query, max_pages)
        else:
            call = functools.partial(engine.fetch_structured, self.query, max_pages)
        return await call_with_retry(
            call,
            policy=self._orch._fetch_policy,
            unit=WorkUnit(f"engine_fetch:{desc.id}"),
            timeout_error=lambda: EngineFetchError(
                desc.id, "engine fetch timed out", kind=ErrorKind.TRANSIENT
            ),
        )

    async def _extract_pages(
        self,
        engine_id: str,
        pages: Sequence[HtmlPage],
        budget: RunBudgetPort,
    ) -> list[RawResult]:
        extraction = self._orch._extraction
        if extraction is None:
            raise ExtractionError(
                "no extraction capability configured", kind=ErrorKind.PERMANENT
            )
        raws: list[RawResult] = []
        for page in sorted(pages, key=lambda p: p.page):
            async with budget.acquire_ai():
                records = await extraction.extract(page.html, page.url)
            raws.extend(record.to_raw(engine_id) for record in records)
        return raws

    def _ingest(self, raws: list[RawResult]) -> None:
        """Merge *raws* and queue newly added records for analysis."""
        if not raws:
            return
        batcher = self._batcher if self.query.ai_filter else None
        status = AnalysisStatus.PENDING if batcher is not None else AnalysisStatus.SKIPPED
        report = self._merger.merge(raws, status=status)
        if report.changed:
            self._push_snapshot()
        if batcher is None or not report.added or self._tg is None:
            return
        for batch in batcher.plan(
            [r.raw for r in report.added],
            priority_keywords=self.query.priority_keywords,
        ):
            self._tg.create_task(
                self._analyze(batcher, batch),
                name=f"analysis-batch-{batch.index}",
            )

    async def _analyze(self, batcher: AnalysisBatcher, batch: PlannedBatch) -> None:
        try:
            results = await batcher.run_batch(batch)
        except Exception as exc:
            # run_batch resolves every record itself; this is a programming error
            log.error("analysis_batch_crashed", batch_index=batch.index, exc_info=True)
            results = batcher.fail_batch(
                batch, f"analysis crashed: {type(exc).__name__}: {exc}"
            )
        if self._merger.merge(results).changed:
            self._push_snapshot()

    def _push_snapshot(self) -> None:
        if self._cancelled:
            return
        self._snapshots.put_nowait(self._merger.snapshot(self._sort))

    def _record_run(self, t0: int, *, cancelled: bool) -> None:
        self._orch._record_run(
            time.perf_counter_ns() - t0,
            len(self._merger),
            failed_engines=len(self._failed_engines),
            cancelled=cancelled,
        )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class SearchOrchestrator:
    """Starts search runs and owns the collaborators they share."""

    def __init__(
        self,
        *,
        settings: _SearchSettings,
        extraction: ExtractionClient | None = None,
        analyzer: AnalysisPort | None = None,
        batch_settings: BatchSettings | None = None,
        pool: ConcurrencyPoolPort | None = None,
        ai_slots: int = 2,
        metrics: _MetricsRecorder | None = None,
        sort: SortOrder = SortOrder.SCORE,
        sink_factory: Callable[[], ProgressBus] = ProgressBus,
    ) -> None:
        self._settings = settings
        self._extraction = extraction
        self._analyzer = analyzer
        self._batch_settings = batch_settings or BatchSettings()
        self._pool = pool
        self._ai_slots = ai_slots
        self._metrics = metrics
        self._sort = sort
        self._sink_factory = sink_factory
        self._fetch_policy = RetryPolicy(
            max_attempts=settings.fetch_max_attempts,
            backoff_base=settings.fetch_backoff_seconds,
            max_backoff=settings.fetch_max_backoff_seconds,
            timeout=settings.engine_timeout_seconds,
        )

    @property
    def analysis_enabled(self) -> bool:
        return self._analyzer is not None

    def start(
        self,
        query: SearchQuery,
        engines: Sequence[EnginePort],
        progress_sink: ProgressSinkPort | None = None,
    ) -> SearchRun:
        """Start a run in the background and return its handle.

        Must be called from a running event loop.
        """
        bus: ProgressBus | None = None
        if progress_sink is None:
            bus = self._sink_factory()
            progress_sink = bus
        run = SearchRun(
            self,
            query,
            engines,
            progress_sink,
            bus=bus,
            sort=self._sort,
        )
        run._launch()
        return run

    async def run(
        self,
        query: SearchQuery,
        engines: Sequence[EnginePort],
        progress_sink: ProgressSinkPort | None = None,
    ) -> AsyncIterator[ResultSnapshot]:
        """Stream snapshots of a new run; closing the stream cancels it."""
        handle = self.start(query, engines, progress_sink)
        exhausted = False
        try:
            async for snapshot in handle.snapshots():
                yield snapshot
            exhausted = True
        finally:
            if not exhausted:
                handle.cancel()

    # ------------------------------------------------------------------
    # Collaborator helpers used by SearchRun
    # ------------------------------------------------------------------

    def _budget_scope(self) -> AsyncContextManager[RunBudgetPort]:
        if self._pool is not None:
            return self._pool.run()
        return contextlib.nullcontext(
            _SemaphoreBudget(self._settings.max_concurrent_engines, self._ai_slots)
        )

    def _new_batcher(
        self, sink: ProgressSinkPort, budget: RunBudgetPort
    ) -> AnalysisBatcher | None:
        if self._analyzer is None:
            return None
        return AnalysisBatcher(
            self._analyzer,
            settings=self._batch_settings,
            sink=sink,
            acquire_slot=budget.acquire_ai,
            metrics=self._metrics,
        )

    def _record_engine(
        self, engine_id: str, duration_ns: int, count: int, *, success: bool
    ) -> None:
        if self._metrics is not None:
            self._metrics.record_engine_fetch(
                engine_id, duration_ns, count, success=success
            )

    def _record_run(
        self,
        duration_ns: int,
        count: int,
        *,
        failed_engines: int,
        cancelled: bool,
    ) -> None:
        if self._metrics is not None:
            self._metrics.record_run(
                duration_ns,
                count,
                failed_engines=failed_engines,
                cancelled=cancelled,
            )
