"""Stage 1: structured extraction of magnet records from raw HTML pages."""

from __future__ import annotations

import structlog

from magnetopt.domain.entities.errors import ErrorKind, ExtractionError
from magnetopt.domain.entities.search import ExtractedRecord
from magnetopt.domain.ports.extraction import ExtractionPort

from .retry import RetryPolicy, WorkUnit, call_with_retry

log = structlog.get_logger(__name__)


def content_preview(html: str, limit: int = 200) -> str:
    """Single-line, truncated preview of *html* for log events."""
    flat = " ".join(html.split())
    if len(flat) <= limit:
        return flat
    return flat[:limit] + "..."


class ExtractionClient:
    """Wraps an :class:`ExtractionPort` with retries and failure logging.

    One call per page. Transient errors are retried with capped
    exponential backoff; permanent and malformed errors are raised after
    the first attempt. A failed call yields no records at all.

    When the primary extractor returns nothing and a *fallback* extractor
    is configured, the fallback gets a single try.
    """

    def __init__(
        self,
        extractor: ExtractionPort,
        *,
        policy: RetryPolicy | None = None,
        fallback: ExtractionPort | None = None,
        preview_chars: int = 200,
    ) -> None:
        self._extractor = extractor
        self._policy = policy or RetryPolicy()
        self._fallback = fallback
        self._preview_chars = preview_chars

    async def extract(self, html: str, source_url: str) -> list[ExtractedRecord]:
        if not html or not html.strip():
            log.warning("extraction_empty_content", source_url=source_url)
            raise ExtractionError(
                f"empty page content for {source_url}", kind=ErrorKind.PERMANENT
            )

        unit = WorkUnit(f"extraction:{source_url}")
        try:
            records = await call_with_retry(
                lambda: self._extractor.extract(html, source_url),
                policy=self._policy,
                unit=unit,
                timeout_error=lambda: ExtractionError(
                    "extraction call timed out", kind=ErrorKind.TRANSIENT
                ),
            )
        except ExtractionError as exc:
            log.warning(
                "extraction_failed",
                source_url=source_url,
                kind=exc.kind.value,
                attempts=unit.attempts,
                error=str(exc),
                preview=content_preview(html, self._preview_chars),
            )
            raise
        except Exception as exc:
            log.warning(
                "extraction_failed",
                source_url=source_url,
                kind=ErrorKind.PERMANENT.value,
                attempts=unit.attempts,
                preview=content_preview(html, self._preview_chars),
                exc_info=True,
            )
            kind = getattr(exc, "kind", ErrorKind.PERMANENT)
            raise ExtractionError(str(exc) or type(exc).__name__, kind=kind) from exc

        if not records and self._fallback is not None:
            records = await self._fallback.extract(html, source_url)
            log.info(
                "extraction_fallback_used",
                source_url=source_url,
                count=len(records),
            )

        log.debug("extraction_done", source_url=source_url, count=len(records))
        return records
