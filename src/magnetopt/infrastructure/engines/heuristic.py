"""Local, model-free extraction of magnet records from arbitrary HTML.

Used when the configured extraction endpoint returns nothing for a page.
Most torrent sites lay results out as table rows, so rows are tried first;
pages without a usable table fall back to every magnet link on the page.
"""

from __future__ import annotations

from urllib.parse import urljoin

import structlog
from bs4 import BeautifulSoup, Tag

from magnetopt.domain.entities.magnet import display_name_from_magnet, parse_magnet
from magnetopt.domain.entities.search import ExtractedRecord
from magnetopt.infrastructure.common.parsers import (
    MAGNET_RE,
    find_magnets,
    looks_like_date,
    looks_like_size,
)

log = structlog.get_logger(__name__)

_MIN_CELL_TITLE = 6


def title_from_magnet(magnet_link: str) -> str:
    """``dn`` parameter if present, else ``Torrent_<first 8 hash chars>``."""
    name = display_name_from_magnet(magnet_link)
    if name:
        return name
    info = parse_magnet(magnet_link)
    if info is not None and info.info_hash:
        return f"Torrent_{info.info_hash[:8]}"
    return "Torrent_unknown"


class HeuristicHtmlExtractor:
    """Implements ``ExtractionPort`` with BeautifulSoup and a magnet regex."""

    async def extract(self, html: str, source_url: str) -> list[ExtractedRecord]:
        return self.parse(html, source_url)

    def parse(self, html: str, source_url: str) -> list[ExtractedRecord]:
        soup = BeautifulSoup(html, "lxml")
        records: list[ExtractedRecord] = []
        for row in soup.select("table tr"):
            record = self._parse_row(row, source_url)
            if record is not None:
                records.append(record)

        if not records:
            records = [
                ExtractedRecord(title=title_from_magnet(link), magnet_link=link)
                for link in find_magnets(html)
            ]

        log.debug("heuristic_extraction", url=source_url, count=len(records))
        return records

    def _parse_row(self, row: Tag, source_url: str) -> ExtractedRecord | None:
        match = MAGNET_RE.search(str(row))
        if match is None:
            return None
        magnet = match.group(0).replace("&amp;", "&")

        cells = row.find_all("td")
        if not cells:
            return None

        title: str | None = None
        link_url: str | None = None
        file_size: str | None = None
        upload_date: str | None = None

        for i, cell in enumerate(cells):
            text = cell.get_text(strip=True)
            if i == 0:
                link = cell.find("a")
                if link is not None:
                    link_text = link.get_text(strip=True)
                    if link_text and not link_text.startswith("magnet:"):
                        title = link_text
                        href = link.get("href")
                        if href:
                            link_url = urljoin(source_url, str(href))
                if title is None and len(text) >= _MIN_CELL_TITLE:
                    title = text
            if file_size is None and looks_like_size(text):
                file_size = text
            if upload_date is None and looks_like_date(text):
                upload_date = text

        return ExtractedRecord(
            title=title or title_from_magnet(magnet),
            magnet_link=magnet,
            file_size=file_size,
            source_url=link_url,
            upload_date=upload_date,
        )
