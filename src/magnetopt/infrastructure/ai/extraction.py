"""LLM-backed implementation of ``ExtractionPort``."""

from __future__ import annotations

from typing import Any
from urllib.parse import urljoin

import structlog

from magnetopt.domain.entities.errors import ErrorKind, ExtractionError
from magnetopt.domain.entities.magnet import is_btih_magnet
from magnetopt.domain.entities.search import ExtractedRecord
from magnetopt.infrastructure.engines.heuristic import title_from_magnet

from .chat_client import AiCallError, ChatCompletionClient
from .prompts import EXTRACTION_SYSTEM, extraction_user_prompt

log = structlog.get_logger(__name__)


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class LlmHtmlExtractor:
    """Asks the extraction model for magnet records found in one page.

    The HTML is truncated to ``max_html_chars``. Entries without a
    BitTorrent magnet link are dropped; relative ``source_url`` values are
    resolved against the page URL.
    """

    def __init__(self, client: ChatCompletionClient, *, max_html_chars: int = 50_000) -> None:
        self._client = client
        self._max_html_chars = max_html_chars

    async def extract(self, html: str, source_url: str) -> list[ExtractedRecord]:
        if len(html) > self._max_html_chars:
            log.debug(
                "extraction_html_truncated",
                source_url=source_url,
                length=len(html),
                limit=self._max_html_chars,
            )
            html = html[: self._max_html_chars]

        try:
            reply = await self._client.complete_json(
                EXTRACTION_SYSTEM, extraction_user_prompt(html, source_url)
            )
        except AiCallError as exc:
            raise ExtractionError(
                str(exc), kind=exc.kind, retry_after=exc.retry_after
            ) from exc

        return self._parse(reply, source_url)

    def _parse(self, reply: Any, source_url: str) -> list[ExtractedRecord]:
        entries = reply.get("results") if isinstance(reply, dict) else reply
        if not isinstance(entries, list):
            raise ExtractionError(
                "extraction reply has no results list", kind=ErrorKind.MALFORMED
            )

        records: list[ExtractedRecord] = []
        skipped = 0
        for entry in entries:
            if not isinstance(entry, dict):
                skipped += 1
                continue
            magnet = _opt_str(entry.get("magnet_link"))
            if magnet is None or not is_btih_magnet(magnet):
                skipped += 1
                continue
            link = _opt_str(entry.get("source_url"))
            records.append(
                ExtractedRecord(
                    title=_opt_str(entry.get("title")) or title_from_magnet(magnet),
                    magnet_link=magnet,
                    file_size=_opt_str(entry.get("file_size")),
                    source_url=urljoin(source_url, link) if link else source_url,
                    upload_date=_opt_str(entry.get("upload_date")),
                )
            )

        if skipped:
            log.debug("extraction_entries_skipped", source_url=source_url, skipped=skipped)
        return records
