"""Port for the content-analysis capability."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from magnetopt.domain.entities.search import AnalysisVerdict, RawResult


@runtime_checkable
class AnalysisPort(Protocol):
    """Cleans titles, tags and scores results.

    ``analyze_batch`` returns one verdict per input item, in input order.
    A response of the wrong length is reported by the caller as malformed.
    """

    @property
    def model_name(self) -> str: ...

    async def analyze_batch(
        self, items: list[RawResult]
    ) -> list[AnalysisVerdict | None]: ...

    async def analyze_one(self, item: RawResult) -> AnalysisVerdict: ...
