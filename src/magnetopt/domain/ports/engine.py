"""Port for search engine adapters."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from magnetopt.domain.entities.search import (
    EngineDescriptor,
    HtmlPage,
    RawResult,
    SearchQuery,
)


@runtime_checkable
class EnginePort(Protocol):
    """A pluggable fetch-and-parse capability.

    Exactly one of the two fetch methods is used per run, chosen by
    ``descriptor.parsing_mode``. Empty results are not an error. Adapters
    raise ``EngineFetchError`` only when no page could be fetched at all.
    """

    @property
    def descriptor(self) -> EngineDescriptor: ...

    async def fetch_structured(
        self, query: SearchQuery, max_pages: int
    ) -> list[RawResult]: ...

    async def fetch_raw_html(
        self, query: SearchQuery, max_pages: int
    ) -> list[HtmlPage]: ...
