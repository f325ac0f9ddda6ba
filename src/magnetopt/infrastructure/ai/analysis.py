"""LLM-backed implementation of ``AnalysisPort``."""

from __future__ import annotations

import json
from typing import Any

import structlog

from magnetopt.domain.entities.errors import AnalysisError, ErrorKind
from magnetopt.domain.entities.search import AnalysisVerdict, RawResult

from .chat_client import AiCallError, ChatCompletionClient
from .prompts import ANALYSIS_SYSTEM, analysis_user_prompt

log = structlog.get_logger(__name__)


def _verdict(entry: Any) -> AnalysisVerdict | None:
    if not isinstance(entry, dict):
        return None
    tags = entry.get("tags")
    return AnalysisVerdict(
        clean_title=str(entry.get("cleaned_title") or entry.get("clean_title") or ""),
        tags=tuple(tags) if isinstance(tags, list) else (),
        purity_score=entry.get("purity_score"),
    )


def _ordered(entries: list[Any], count: int) -> list[Any]:
    """Order *entries* by their ``index`` field when every entry has a valid one."""
    indexes = [e.get("index") if isinstance(e, dict) else None for e in entries]
    valid = all(
        isinstance(i, int) and not isinstance(i, bool) and 0 <= i < count
        for i in indexes
    )
    if not valid or len(set(indexes)) != len(indexes):
        return entries
    return [e for _, e in sorted(zip(indexes, entries), key=lambda p: p[0])]


class LlmResultAnalyzer:
    """Cleans titles, tags and scores results with one chat call per batch.

    Verdicts come back unvalidated; score checking and title fallback are
    done by the analysis stage.
    """

    def __init__(self, client: ChatCompletionClient, *, max_files_per_item: int = 20) -> None:
        self._client = client
        self._max_files = max_files_per_item

    @property
    def model_name(self) -> str:
        return self._client.model

    async def analyze_batch(self, items: list[RawResult]) -> list[AnalysisVerdict | None]:
        entries = await self._call(items)
        return [_verdict(e) for e in _ordered(entries, len(items))]

    async def analyze_one(self, item: RawResult) -> AnalysisVerdict:
        entries = await self._call([item])
        verdict = _verdict(entries[0]) if len(entries) == 1 else None
        if verdict is None:
            raise AnalysisError(
                f"expected one verdict, got {len(entries)}", kind=ErrorKind.MALFORMED
            )
        return verdict

    async def _call(self, items: list[RawResult]) -> list[Any]:
        payload = [
            {
                "index": i,
                "title": item.title,
                "files": list(item.file_list[: self._max_files]),
            }
            for i, item in enumerate(items)
        ]
        try:
            reply = await self._client.complete_json(
                ANALYSIS_SYSTEM,
                analysis_user_prompt(json.dumps(payload, ensure_ascii=False)),
            )
        except AiCallError as exc:
            raise AnalysisError(
                str(exc), kind=exc.kind, retry_after=exc.retry_after
            ) from exc

        entries = reply.get("results") if isinstance(reply, dict) else reply
        if not isinstance(entries, list):
            raise AnalysisError(
                "analysis reply has no results list", kind=ErrorKind.MALFORMED
            )
        log.debug("analysis_reply", model=self.model_name, items=len(items), entries=len(entries))
        return entries
