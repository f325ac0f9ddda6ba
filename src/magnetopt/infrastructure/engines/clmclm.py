"""Built-in engine for clmclm.com (structured results, parsed locally)."""

from __future__ import annotations

from urllib.parse import quote, urljoin

import httpx
from bs4 import BeautifulSoup, Tag

from magnetopt.domain.entities.search import (
    EngineDescriptor,
    EngineKind,
    ParsingMode,
    RawResult,
    SearchQuery,
)
from magnetopt.infrastructure.common.parsers import strip_size_suffix
from magnetopt.infrastructure.common.rate_limiter import HostRateLimiter

from .base import HttpxEngineBase

DEFAULT_BASE_URL = "http://clmclm.com"
_SIZE_LABEL = "大小:"


def parse_clmclm_results(html: str, *, base_url: str, engine_id: str) -> list[RawResult]:
    """Parse one clmclm result page.

    Each hit is a ``div.ssbox`` with the title link in ``div.title > h3 > a``,
    the magnet link and a ``大小:`` size span in ``div.sbar``, and the file
    list as ``ul > li`` entries ("name size").
    """
    soup = BeautifulSoup(html, "lxml")
    results: list[RawResult] = []

    for box in soup.select("div.ssbox"):
        title_el = box.select_one("div.title > h3 > a")
        magnet_el = box.select_one('div.sbar a[href^="magnet:"]')
        if title_el is None or magnet_el is None:
            continue

        title = title_el.get_text(strip=True)
        magnet = str(magnet_el.get("href", "")).strip()
        if not magnet:
            continue

        href = title_el.get("href")
        source_url = urljoin(base_url + "/", str(href)) if href else None

        results.append(
            RawResult(
                title=title,
                magnet_link=magnet,
                engine_id=engine_id,
                file_size=_size_from_box(box),
                source_url=source_url,
                file_list=_file_list_from_box(box),
            )
        )
    return results


def _size_from_box(box: Tag) -> str | None:
    for span in box.select("div.sbar span"):
        text = span.get_text(strip=True)
        if text.startswith(_SIZE_LABEL):
            return text[len(_SIZE_LABEL) :].strip() or None
    return None


def _file_list_from_box(box: Tag) -> tuple[str, ...]:
    files: list[str] = []
    for li in box.select("ul > li"):
        text = " ".join(li.get_text(" ", strip=True).split())
        if not text:
            continue
        name = strip_size_suffix(text)
        files.append(name or text)
    return tuple(files)


class ClmclmEngine(HttpxEngineBase):
    """clmclm.com search: ``{base}/search-{keyword}-1-1-{page}.html``."""

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient,
        engine_id: str = "clmclm",
        name: str = "CLMCLM",
        base_url: str | None = None,
        rate_limiter: HostRateLimiter | None = None,
    ) -> None:
        super().__init__(
            EngineDescriptor(
                id=engine_id,
                kind=EngineKind.BUILTIN,
                parsing_mode=ParsingMode.STRUCTURED,
                name=name,
            ),
            http_client=http_client,
            rate_limiter=rate_limiter,
        )
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")

    def page_url(self, query: SearchQuery, page: int) -> str:
        keyword = quote(query.keyword.strip(), safe="")
        return f"{self.base_url}/search-{keyword}-1-1-{page}.html"

    async def fetch_structured(
        self, query: SearchQuery, max_pages: int
    ) -> list[RawResult]:
        results: list[RawResult] = []
        for page in await self._fetch_pages(query, max_pages):
            parsed = parse_clmclm_results(
                page.html, base_url=self.base_url, engine_id=self.engine_id
            )
            self._log.debug(
                "clmclm_page_parsed", page=page.page, count=len(parsed)
            )
            results.extend(parsed)
        return results
