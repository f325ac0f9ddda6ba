"""Shared test fixtures for the magnetopt test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from magnetopt.application.pipeline.analysis_batcher import BatchSettings
from magnetopt.application.pipeline.extraction_client import ExtractionClient
from magnetopt.application.pipeline.retry import RetryPolicy
from magnetopt.application.use_cases.search_run import SearchOrchestrator
from magnetopt.domain.entities.errors import MagnetOptError
from magnetopt.domain.entities.search import (
    AnalysisVerdict,
    EngineDescriptor,
    EngineKind,
    ExtractedRecord,
    HtmlPage,
    ParsingMode,
    RawResult,
    SearchQuery,
)


def magnet_for(seed: int, name: str | None = None) -> str:
    """Deterministic BitTorrent magnet link for *seed*."""
    link = f"magnet:?xt=urn:btih:{seed:040x}"
    if name:
        link += f"&dn={name.replace(' ', '+')}"
    return link


# ---------------------------------------------------------------------------
# Domain entity fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_raw() -> Callable[..., RawResult]:
    """Factory for RawResult with a unique magnet per seed."""

    def _make(
        seed: int,
        title: str | None = None,
        *,
        engine_id: str = "clmclm",
        file_size: str | None = "1.0 GB",
        file_list: tuple[str, ...] = (),
    ) -> RawResult:
        return RawResult(
            title=title if title is not None else f"Result {seed}",
            magnet_link=magnet_for(seed),
            engine_id=engine_id,
            file_size=file_size,
            file_list=file_list,
        )

    return _make


@pytest.fixture()
def magnet() -> Callable[..., str]:
    return magnet_for


@pytest.fixture()
def query() -> SearchQuery:
    return SearchQuery(keyword="ubuntu", max_pages=1)


# ---------------------------------------------------------------------------
# Fake ports
# ---------------------------------------------------------------------------


@dataclass
class FakeEngine:
    """In-memory EnginePort."""

    id: str
    kind: EngineKind = EngineKind.CUSTOM
    parsing_mode: ParsingMode = ParsingMode.STRUCTURED
    results: list[RawResult] = field(default_factory=list)
    pages: list[HtmlPage] = field(default_factory=list)
    errors: list[Exception] = field(default_factory=list)
    delay: float = 0.0
    calls: int = 0
    started: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def descriptor(self) -> EngineDescriptor:
        return EngineDescriptor(
            id=self.id, kind=self.kind, parsing_mode=self.parsing_mode, name=self.id
        )

    async def _prelude(self) -> None:
        self.calls += 1
        self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.errors:
            raise self.errors.pop(0)

    async def fetch_structured(
        self, query: SearchQuery, max_pages: int
    ) -> list[RawResult]:
        await self._prelude()
        return list(self.results)

    async def fetch_raw_html(self, query: SearchQuery, max_pages: int) -> list[HtmlPage]:
        await self._prelude()
        return list(self.pages)


class FakeAnalyzer:
    """In-memory AnalysisPort.

    By default every item is analyzed with score 80. ``batch_fn`` and
    ``one_fn`` override the batch and single-item behaviour.
    """

    def __init__(
        self,
        *,
        model_name: str = "fake-model",
        batch_fn: Callable[[list[RawResult]], Any] | None = None,
        one_fn: Callable[[RawResult], Any] | None = None,
        delay: float = 0.0,
    ) -> None:
        self._model_name = model_name
        self._batch_fn = batch_fn
        self._one_fn = one_fn
        self._delay = delay
        self.batch_calls: list[list[RawResult]] = []
        self.one_calls: list[RawResult] = []

    @property
    def model_name(self) -> str:
        return self._model_name

    @staticmethod
    def verdict(item: RawResult, score: Any = 80) -> AnalysisVerdict:
        return AnalysisVerdict(
            clean_title=f"clean {item.title}", tags=("video",), purity_score=score
        )

    async def analyze_batch(self, items: list[RawResult]) -> list[AnalysisVerdict | None]:
        self.batch_calls.append(list(items))
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._batch_fn is not None:
            return self._batch_fn(items)
        return [self.verdict(item) for item in items]

    async def analyze_one(self, item: RawResult) -> AnalysisVerdict:
        self.one_calls.append(item)
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._one_fn is not None:
            return self._one_fn(item)
        return self.verdict(item)


class FakeExtractor:
    """In-memory ExtractionPort keyed by page URL."""

    def __init__(
        self,
        records: dict[str, list[ExtractedRecord]] | None = None,
        *,
        errors: list[MagnetOptError] | None = None,
    ) -> None:
        self.records = records or {}
        self.errors = errors or []
        self.calls: list[str] = []

    async def extract(self, html: str, source_url: str) -> list[ExtractedRecord]:
        self.calls.append(source_url)
        if self.errors:
            raise self.errors.pop(0)
        return list(self.records.get(source_url, []))


@dataclass
class FakeSearchSettings:
    max_concurrent_engines: int = 5
    engine_timeout_seconds: float = 5.0
    fetch_max_attempts: int = 2
    fetch_backoff_seconds: float = 0.0
    fetch_max_backoff_seconds: float = 0.0


FAST_RETRY = RetryPolicy(max_attempts=2, backoff_base=0.0, max_backoff=0.0, timeout=5.0)


@pytest.fixture()
def make_engine() -> Callable[..., FakeEngine]:
    return FakeEngine


@pytest.fixture()
def fake_analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture()
def make_analyzer() -> Callable[..., FakeAnalyzer]:
    return FakeAnalyzer


@pytest.fixture()
def make_extractor() -> Callable[..., FakeExtractor]:
    return FakeExtractor


@pytest.fixture()
def fast_retry() -> RetryPolicy:
    return FAST_RETRY


@pytest.fixture()
def make_orchestrator() -> Callable[..., SearchOrchestrator]:
    """Factory for SearchOrchestrator with fast retries and no backoff."""

    def _make(
        *,
        analyzer: Any = None,
        extractor: Any = None,
        batch_size: int = 10,
        max_failed_batches: int = 3,
        metrics: Any = None,
        **kwargs: Any,
    ) -> SearchOrchestrator:
        extraction = (
            ExtractionClient(extractor, policy=FAST_RETRY) if extractor is not None else None
        )
        return SearchOrchestrator(
            settings=FakeSearchSettings(),
            extraction=extraction,
            analyzer=analyzer,
            batch_settings=BatchSettings(
                batch_size=batch_size,
                max_failed_batches=max_failed_batches,
                retry=FAST_RETRY,
            ),
            metrics=metrics,
            **kwargs,
        )

    return _make
