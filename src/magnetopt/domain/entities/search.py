"""Search run entities: queries, raw and enriched results, snapshots."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from .magnet import ResultKey, display_name_from_magnet, parse_magnet
from .sizes import parse_size_to_bytes


class EngineKind(str, Enum):
    BUILTIN = "builtin"
    CUSTOM = "custom"


class ParsingMode(str, Enum):
    STRUCTURED = "structured"
    HTML_EXTRACTION = "html-extraction-required"


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    ANALYZED = "analyzed"
    SKIPPED = "skipped"
    FALLBACK_FAILED = "fallback_failed"

    @property
    def is_terminal(self) -> bool:
        return self is not AnalysisStatus.PENDING

    @property
    def completeness(self) -> int:
        """Rank used when two results collide on the same key."""
        return _COMPLETENESS[self]


_COMPLETENESS = {
    AnalysisStatus.ANALYZED: 3,
    AnalysisStatus.SKIPPED: 2,
    AnalysisStatus.FALLBACK_FAILED: 1,
    AnalysisStatus.PENDING: 0,
}


class SortOrder(str, Enum):
    SCORE = "score"
    SIZE = "size"
    ARRIVAL = "arrival"


@dataclass(frozen=True)
class SearchQuery:
    """One user search. Immutable once submitted."""

    keyword: str
    max_pages: int = 3
    ai_filter: bool = True
    require_keyword_in_title: bool = False
    engine_ids: tuple[str, ...] = ()
    priority_keywords: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.keyword or not self.keyword.strip():
            raise ValueError("keyword must not be empty")
        if self.max_pages < 1:
            raise ValueError("max_pages must be >= 1")


@dataclass(frozen=True)
class EngineDescriptor:
    """Read-only description of a search engine."""

    id: str
    kind: EngineKind
    parsing_mode: ParsingMode
    name: str = ""

    @property
    def is_builtin(self) -> bool:
        return self.kind is EngineKind.BUILTIN


@dataclass(frozen=True)
class RawResult:
    """A result exactly as an engine (or the extraction stage) produced it."""

    title: str
    magnet_link: str
    engine_id: str
    file_size: str | None = None
    source_url: str | None = None
    upload_date: str | None = None
    file_list: tuple[str, ...] = ()

    @property
    def key(self) -> ResultKey:
        return ResultKey.for_result(
            title=self.title,
            magnet_link=self.magnet_link,
            file_size=self.file_size,
        )


@dataclass(frozen=True)
class HtmlPage:
    """One fetched result page of an engine that needs extraction."""

    engine_id: str
    page: int
    url: str
    html: str


@dataclass(frozen=True)
class ExtractedRecord:
    """A record returned by the structured-extraction capability."""

    title: str
    magnet_link: str
    file_size: str | None = None
    source_url: str | None = None
    upload_date: str | None = None

    def to_raw(self, engine_id: str) -> RawResult:
        return RawResult(
            title=self.title,
            magnet_link=self.magnet_link,
            engine_id=engine_id,
            file_size=self.file_size,
            source_url=self.source_url,
            upload_date=self.upload_date,
        )


@dataclass(frozen=True)
class AnalysisVerdict:
    """Unvalidated output of the content-analysis capability for one record."""

    clean_title: str
    tags: tuple[str, ...] = ()
    purity_score: Any = None


@dataclass(frozen=True)
class EnrichedResult:
    """A merged result plus whatever the analysis stage learned about it.

    Instances are never mutated. A status change publishes a new instance
    (``dataclasses.replace``) that is merged over the old one.
    """

    raw: RawResult
    status: AnalysisStatus = AnalysisStatus.PENDING
    clean_title: str | None = None
    purity_score: int | None = None
    tags: tuple[str, ...] = ()
    model_name: str | None = None
    error: str | None = None

    @classmethod
    def pending(cls, raw: RawResult) -> EnrichedResult:
        return cls(raw=raw)

    @classmethod
    def skipped(cls, raw: RawResult) -> EnrichedResult:
        return cls(raw=raw, status=AnalysisStatus.SKIPPED)

    @property
    def key(self) -> ResultKey:
        return self.raw.key

    @property
    def display_title(self) -> str:
        if self.clean_title:
            return self.clean_title
        if self.raw.title:
            return self.raw.title
        return display_name_from_magnet(self.raw.magnet_link) or ""

    @property
    def size_bytes(self) -> int | None:
        return parse_size_to_bytes(self.raw.file_size)

    def to_dict(self) -> dict[str, Any]:
        info = parse_magnet(self.raw.magnet_link)
        return {
            "key": str(self.key),
            "title": self.raw.title,
            "display_title": self.display_title,
            "magnet_link": self.raw.magnet_link,
            "info_hash": info.info_hash if info else None,
            "engine_id": self.raw.engine_id,
            "file_size": self.raw.file_size,
            "size_bytes": self.size_bytes,
            "source_url": self.raw.source_url,
            "upload_date": self.raw.upload_date,
            "file_list": list(self.raw.file_list),
            "status": self.status.value,
            "clean_title": self.clean_title,
            "purity_score": self.purity_score,
            "tags": list(self.tags),
            "model_name": self.model_name,
            "error": self.error,
        }


@dataclass(frozen=True)
class ResultSnapshot:
    """Consistent, immutable view of a run's merged collection."""

    results: tuple[EnrichedResult, ...] = ()
    version: int = 0
    final: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "final": self.final,
            "count": len(self.results),
            "results": [r.to_dict() for r in self.results],
        }
