"""Port for the structured-extraction capability (HTML -> records)."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from magnetopt.domain.entities.search import ExtractedRecord


@runtime_checkable
class ExtractionPort(Protocol):
    """Turns one HTML page into magnet records.

    Raises ``ExtractionError`` with a kind; never returns partial records
    from a failed call.
    """

    async def extract(self, html: str, source_url: str) -> list[ExtractedRecord]: ...
