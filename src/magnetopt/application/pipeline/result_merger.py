"""Incremental, deduplicating merge of search results.

Collision rule for two results with the same :class:`ResultKey`:

1. the more complete analysis status wins
   (analyzed > skipped > fallback_failed > pending);
2. then the higher purity score wins (unscored is lowest);
3. then the earlier arrival is kept.

An entry keeps its first arrival sequence number when it is replaced,
so arrival order (the final sort tie-break) is stable across updates.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass

from magnetopt.domain.entities.magnet import ResultKey
from magnetopt.domain.entities.search import (
    AnalysisStatus,
    EnrichedResult,
    RawResult,
    ResultSnapshot,
    SortOrder,
)


@dataclass(frozen=True)
class MergeReport:
    """What a single :meth:`ResultMerger.merge` call changed."""

    added: tuple[EnrichedResult, ...] = ()
    updated: tuple[EnrichedResult, ...] = ()
    unchanged: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated)


@dataclass
class _Entry:
    result: EnrichedResult
    seq: int


def _score_rank(result: EnrichedResult) -> int:
    return -1 if result.purity_score is None else result.purity_score


def _outranks(new: EnrichedResult, old: EnrichedResult) -> bool:
    new_rank = new.status.completeness
    old_rank = old.status.completeness
    if new_rank != old_rank:
        return new_rank > old_rank
    new_score = _score_rank(new)
    old_score = _score_rank(old)
    if new_score != old_score:
        return new_score > old_score
    return False


class ResultMerger:
    """The single shared mutable collection of a search run.

    Writes are serialized through a lock that is never held across an
    ``await``. Readers get an immutable :class:`ResultSnapshot`.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[ResultKey, _Entry] = {}
        self._seq = 0
        self._version = 0

    @property
    def version(self) -> int:
        return self._version

    def __len__(self) -> int:
        return len(self._entries)

    def merge(
        self,
        incoming: Iterable[RawResult | EnrichedResult],
        *,
        status: AnalysisStatus = AnalysisStatus.PENDING,
    ) -> MergeReport:
        """Fold *incoming* into the collection.

        Raw results are wrapped with *status*. Re-merging a result that
        is already present is a no-op.
        """
        added: list[EnrichedResult] = []
        updated: list[EnrichedResult] = []
        unchanged = 0

        with self._lock:
            for item in incoming:
                result = (
                    item
                    if isinstance(item, EnrichedResult)
                    else EnrichedResult(raw=item, status=status)
                )
                key = result.key
                entry = self._entries.get(key)
                if entry is None:
                    self._seq += 1
                    self._entries[key] = _Entry(result=result, seq=self._seq)
                    added.append(result)
                elif entry.result != result and _outranks(result, entry.result):
                    entry.result = result
                    updated.append(result)
                else:
                    unchanged += 1
            if added or updated:
                self._version += 1

        return MergeReport(
            added=tuple(added),
            updated=tuple(updated),
            unchanged=unchanged,
        )

    def get(self, key: ResultKey) -> EnrichedResult | None:
        with self._lock:
            entry = self._entries.get(key)
            return entry.result if entry is not None else None

    def status_counts(self) -> dict[str, int]:
        with self._lock:
            results = [e.result for e in self._entries.values()]
        counts = {status.value: 0 for status in AnalysisStatus}
        for result in results:
            counts[result.status.value] += 1
        return counts

    def snapshot(
        self,
        sort: SortOrder = SortOrder.SCORE,
        *,
        final: bool = False,
    ) -> ResultSnapshot:
        """Return a consistent, sorted view of the collection.

        All orders are stable; ties keep arrival order.
        """
        with self._lock:
            rows = [(e.seq, e.result) for e in self._entries.values()]
            version = self._version

        rows.sort(key=lambda row: row[0])
        if sort is SortOrder.SCORE:
            rows.sort(
                key=lambda row: (
                    row[1].purity_score is None,
                    -(row[1].purity_score or 0),
                )
            )
        elif sort is SortOrder.SIZE:
            rows.sort(
                key=lambda row: (
                    row[1].size_bytes is None,
                    -(row[1].size_bytes or 0),
                )
            )

        return ResultSnapshot(
            results=tuple(result for _, result in rows),
            version=version,
            final=final,
        )
