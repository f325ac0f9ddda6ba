"""User-defined engines driven by a URL template.

The page HTML is handed to the extraction stage untouched.
"""

from __future__ import annotations

from urllib.parse import quote

import httpx

from magnetopt.domain.entities.search import (
    EngineDescriptor,
    EngineKind,
    HtmlPage,
    ParsingMode,
    SearchQuery,
)
from magnetopt.infrastructure.common.rate_limiter import HostRateLimiter

from .base import HttpxEngineBase


class TemplateEngine(HttpxEngineBase):
    """Fetches ``url_template`` with ``{keyword}`` and ``{page}`` filled in."""

    def __init__(
        self,
        *,
        engine_id: str,
        url_template: str,
        http_client: httpx.AsyncClient,
        name: str = "",
        rate_limiter: HostRateLimiter | None = None,
    ) -> None:
        if "{keyword}" not in url_template:
            raise ValueError(f"url_template for {engine_id!r} lacks {{keyword}}")
        super().__init__(
            EngineDescriptor(
                id=engine_id,
                kind=EngineKind.CUSTOM,
                parsing_mode=ParsingMode.HTML_EXTRACTION,
                name=name or engine_id,
            ),
            http_client=http_client,
            rate_limiter=rate_limiter,
        )
        self.url_template = url_template

    @property
    def paginated(self) -> bool:
        return "{page}" in self.url_template

    def page_url(self, query: SearchQuery, page: int) -> str:
        return self.url_template.replace(
            "{keyword}", quote(query.keyword.strip(), safe="")
        ).replace("{page}", str(page))

    async def fetch_raw_html(self, query: SearchQuery, max_pages: int) -> list[HtmlPage]:
        # Without a {page} placeholder every page would be the same URL.
        pages_to_fetch = max_pages if self.paginated else 1
        return [
            HtmlPage(engine_id=self.engine_id, page=p.page, url=p.url, html=p.html)
            for p in await self._fetch_pages(query, pages_to_fetch)
        ]
