"""Composition root shared by the HTTP server and the CLI.

``build_services(config)`` owns every long-lived resource (the HTTP
client, throttles, adapters, the concurrency pool) and closes them when
the context exits.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Sequence

import httpx
import structlog

from magnetopt.application.pipeline.analysis_batcher import BatchSettings
from magnetopt.application.pipeline.extraction_client import ExtractionClient
from magnetopt.application.pipeline.retry import RetryPolicy
from magnetopt.application.use_cases.search_run import SearchOrchestrator
from magnetopt.domain.entities.search import SearchQuery, SortOrder
from magnetopt.domain.ports.analysis import AnalysisPort
from magnetopt.domain.ports.engine import EnginePort
from magnetopt.infrastructure.ai import (
    ChatCompletionClient,
    LlmHtmlExtractor,
    LlmResultAnalyzer,
)
from magnetopt.infrastructure.common.rate_limiter import HostRateLimiter, TokenBucket
from magnetopt.infrastructure.concurrency import ConcurrencyPool
from magnetopt.infrastructure.config.schema import AiEndpointConfig, AppConfig
from magnetopt.infrastructure.engines import HeuristicHtmlExtractor, build_engines
from magnetopt.infrastructure.metrics import MetricsCollector

log = structlog.get_logger(__name__)


@dataclass
class Services:
    """Everything a caller needs to run searches."""

    config: AppConfig
    http_client: httpx.AsyncClient
    engines: list[EnginePort]
    orchestrator: SearchOrchestrator
    pool: ConcurrencyPool
    metrics: MetricsCollector

    def new_query(
        self,
        keyword: str,
        *,
        max_pages: int | None = None,
        ai_filter: bool | None = None,
        require_keyword_in_title: bool | None = None,
        engine_ids: Sequence[str] = (),
        priority_keywords: Sequence[str] | None = None,
    ) -> SearchQuery:
        """Build a query, filling unset options from the search config."""
        search = self.config.search
        return SearchQuery(
            keyword=keyword.strip(),
            max_pages=max_pages or search.default_max_pages,
            ai_filter=search.ai_filter if ai_filter is None else ai_filter,
            require_keyword_in_title=(
                search.require_keyword_in_title
                if require_keyword_in_title is None
                else require_keyword_in_title
            ),
            engine_ids=tuple(engine_ids),
            priority_keywords=tuple(
                search.priority_keywords
                if priority_keywords is None
                else priority_keywords
            ),
        )


def _retry_policy(endpoint: AiEndpointConfig) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=endpoint.max_attempts,
        backoff_base=endpoint.backoff_seconds,
        max_backoff=endpoint.max_backoff_seconds,
        timeout=endpoint.timeout_seconds,
    )


def _chat_client(
    endpoint: AiEndpointConfig, http_client: httpx.AsyncClient, name: str
) -> ChatCompletionClient:
    throttle = None
    if endpoint.requests_per_second > 0:
        throttle = TokenBucket(
            rate=endpoint.requests_per_second,
            burst=2,
            adaptive=True,
            name=name,
        )
    return ChatCompletionClient(endpoint, http_client=http_client, throttle=throttle)


def build_extraction(
    config: AppConfig, http_client: httpx.AsyncClient
) -> ExtractionClient | None:
    """Extraction client for HTML engines.

    The model is the primary extractor when it has an API key; the local
    heuristic parser covers empty model replies or stands in entirely
    when no model is configured.
    """
    cfg = config.extraction
    heuristic = HeuristicHtmlExtractor() if cfg.heuristic_fallback else None

    if cfg.enabled:
        extractor = LlmHtmlExtractor(
            _chat_client(cfg, http_client, "extraction"),
            max_html_chars=cfg.max_html_chars,
        )
        return ExtractionClient(
            extractor,
            policy=_retry_policy(cfg),
            fallback=heuristic,
            preview_chars=cfg.preview_chars,
        )

    if heuristic is None:
        return None
    log.info("extraction_model_disabled", fallback="heuristic")
    return ExtractionClient(
        heuristic,
        policy=RetryPolicy(max_attempts=1, timeout=None),
        preview_chars=cfg.preview_chars,
    )


def build_analyzer(
    config: AppConfig, http_client: httpx.AsyncClient
) -> AnalysisPort | None:
    cfg = config.analysis
    if not cfg.enabled:
        log.info("analysis_model_disabled")
        return None
    return LlmResultAnalyzer(
        _chat_client(cfg, http_client, "analysis"),
        max_files_per_item=cfg.max_files_per_item,
    )


@asynccontextmanager
async def build_services(config: AppConfig) -> AsyncIterator[Services]:
    """Wire all components for *config*; close them on exit."""
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(config.http_timeout_seconds),
        headers={"User-Agent": config.http_user_agent},
        follow_redirects=config.http_follow_redirects,
    )
    try:
        metrics = MetricsCollector()
        pool = ConcurrencyPool(
            engine_slots=config.search.max_concurrent_engines,
            ai_slots=config.analysis.max_concurrent_batches,
        )
        engines = build_engines(
            config.engines,
            http_client=http_client,
            rate_limiter=HostRateLimiter(default_rps=2.0, burst=5),
        )
        orchestrator = SearchOrchestrator(
            settings=config.search,
            extraction=build_extraction(config, http_client),
            analyzer=build_analyzer(config, http_client),
            batch_settings=BatchSettings(
                batch_size=config.analysis.batch_size,
                max_failed_batches=config.analysis.max_failed_batches,
                retry=_retry_policy(config.analysis),
            ),
            pool=pool,
            ai_slots=config.analysis.max_concurrent_batches,
            metrics=metrics,
            sort=SortOrder(config.search.sort),
        )
        log.info(
            "services_ready",
            engines=[e.descriptor.id for e in engines],
            extraction_model=config.extraction.model
            if config.extraction.enabled
            else None,
            analysis_model=config.analysis.model if config.analysis.enabled else None,
        )
        yield Services(
            config=config,
            http_client=http_client,
            engines=engines,
            orchestrator=orchestrator,
            pool=pool,
            metrics=metrics,
        )
    finally:
        await http_client.aclose()
        log.info("http_client_closed")
