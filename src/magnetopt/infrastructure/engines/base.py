"""Shared base class for httpx-based search engines.

Handles the parts every engine repeats: page URL fan-out, per-host
throttling, error classification and partial-page tolerance. Subclasses
build page URLs and implement the fetch method matching their parsing
mode.

This base class lives in the *infrastructure* layer because it depends
on ``httpx`` and ``structlog``. The *domain* layer only knows
``EnginePort``; engines inheriting from ``HttpxEngineBase`` satisfy that
Protocol structurally.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx
import structlog

from magnetopt.domain.entities.errors import EngineFetchError, ErrorKind
from magnetopt.domain.entities.search import (
    EngineDescriptor,
    HtmlPage,
    RawResult,
    SearchQuery,
)
from magnetopt.infrastructure.common.http_errors import (
    THROTTLE_STATUS_CODES,
    kind_for_exception,
    kind_for_status,
    parse_retry_after,
)
from magnetopt.infrastructure.common.rate_limiter import HostRateLimiter

DEFAULT_MAX_CONCURRENT_PAGES = 3


@dataclass(frozen=True)
class FetchedPage:
    page: int
    url: str
    html: str


class HttpxEngineBase:
    """Shared base for httpx-based engines.

    Subclasses **must** override:
    - ``page_url()``
    - ``fetch_structured()`` or ``fetch_raw_html()`` (per parsing mode)
    """

    def __init__(
        self,
        descriptor: EngineDescriptor,
        *,
        http_client: httpx.AsyncClient,
        rate_limiter: HostRateLimiter | None = None,
        max_concurrent_pages: int = DEFAULT_MAX_CONCURRENT_PAGES,
    ) -> None:
        self._descriptor = descriptor
        self._client = http_client
        self._rate_limiter = rate_limiter
        self._max_concurrent_pages = max(1, max_concurrent_pages)
        self._log = structlog.get_logger(f"{__name__}.{descriptor.id}")

    @property
    def descriptor(self) -> EngineDescriptor:
        return self._descriptor

    @property
    def engine_id(self) -> str:
        return self._descriptor.id

    def page_url(self, query: SearchQuery, page: int) -> str:
        raise NotImplementedError(f"{type(self).__name__}.page_url() not implemented")

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def _fetch_page(self, url: str) -> str:
        """GET *url*; raise :class:`EngineFetchError` with a kind on failure."""
        if self._rate_limiter is not None:
            await self._rate_limiter.acquire(url)
        try:
            resp = await self._client.get(url)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if self._rate_limiter is not None and status in THROTTLE_STATUS_CODES:
                self._rate_limiter.record_throttle(url)
            raise EngineFetchError(
                self.engine_id,
                f"HTTP {status} for {url}",
                kind=kind_for_status(status),
                retry_after=parse_retry_after(exc.response.headers),
            ) from exc
        except httpx.TimeoutException as exc:
            if self._rate_limiter is not None:
                self._rate_limiter.record_timeout(url)
            raise EngineFetchError(
                self.engine_id, f"timeout fetching {url}", kind=ErrorKind.TRANSIENT
            ) from exc
        except httpx.HTTPError as exc:
            raise EngineFetchError(
                self.engine_id,
                f"{type(exc).__name__} fetching {url}",
                kind=kind_for_exception(exc),
            ) from exc

        if self._rate_limiter is not None:
            self._rate_limiter.record_success(url)
        return resp.text

    async def _fetch_pages(self, query: SearchQuery, max_pages: int) -> list[FetchedPage]:
        """Fetch pages ``1..max_pages`` concurrently.

        Failed pages are skipped. Raises :class:`EngineFetchError` only
        when every page failed; the error is transient if any page
        failure was.
        """
        sem = asyncio.Semaphore(self._max_concurrent_pages)

        async def _one(page: int) -> FetchedPage | EngineFetchError:
            url = self.page_url(query, page)
            async with sem:
                try:
                    html = await self._fetch_page(url)
                except EngineFetchError as exc:
                    self._log.warning(
                        "engine_page_failed",
                        engine=self.engine_id,
                        page=page,
                        kind=exc.kind.value,
                        error=str(exc),
                    )
                    return exc
            return FetchedPage(page=page, url=url, html=html)

        outcomes = await asyncio.gather(*(_one(p) for p in range(1, max_pages + 1)))
        pages = [o for o in outcomes if isinstance(o, FetchedPage)]
        if not pages:
            errors = [o for o in outcomes if isinstance(o, EngineFetchError)]
            kind = (
                ErrorKind.TRANSIENT
                if any(e.is_transient for e in errors)
                else ErrorKind.PERMANENT
            )
            raise EngineFetchError(
                self.engine_id,
                f"all {max_pages} page(s) failed: {errors[0]}",
                kind=kind,
                retry_after=max(
                    (e.retry_after for e in errors if e.retry_after is not None),
                    default=None,
                ),
            )

        self._log.debug(
            "engine_pages_fetched",
            engine=self.engine_id,
            ok=len(pages),
            failed=max_pages - len(pages),
        )
        return sorted(pages, key=lambda p: p.page)

    # ------------------------------------------------------------------
    # EnginePort (subclass implements the one matching its parsing mode)
    # ------------------------------------------------------------------

    async def fetch_structured(
        self, query: SearchQuery, max_pages: int
    ) -> list[RawResult]:
        raise EngineFetchError(
            self.engine_id,
            "engine does not provide structured results",
            kind=ErrorKind.PERMANENT,
        )

    async def fetch_raw_html(self, query: SearchQuery, max_pages: int) -> list[HtmlPage]:
        raise EngineFetchError(
            self.engine_id,
            "engine does not provide raw HTML",
            kind=ErrorKind.PERMANENT,
        )
