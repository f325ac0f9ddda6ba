"""Tests for the retrying extraction client."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from magnetopt.application.pipeline.extraction_client import (
    ExtractionClient,
    content_preview,
)
from magnetopt.domain.entities.errors import ErrorKind, ExtractionError
from magnetopt.domain.entities.search import ExtractedRecord

URL = "https://site.example/search?q=x"
HTML = "<html><body><table><tr><td>row</td></tr></table></body></html>"


def _record(title: str = "Title") -> ExtractedRecord:
    return ExtractedRecord(title=title, magnet_link="magnet:?xt=urn:btih:" + "a" * 40)


class TestContentPreview:
    def test_collapses_whitespace(self) -> None:
        assert content_preview("<a>\n   b</a>") == "<a> b</a>"

    def test_truncates(self) -> None:
        assert content_preview("x" * 50, limit=10) == "x" * 10 + "..."


class TestExtractionClient:
    async def test_records_returned(
        self, make_extractor: Callable[..., Any], fast_retry: Any
    ) -> None:
        extractor = make_extractor({URL: [_record()]})
        client = ExtractionClient(extractor, policy=fast_retry)
        assert await client.extract(HTML, URL) == [_record()]

    async def test_empty_page_is_rejected_without_call(
        self, make_extractor: Callable[..., Any], fast_retry: Any
    ) -> None:
        extractor = make_extractor()
        client = ExtractionClient(extractor, policy=fast_retry)
        with pytest.raises(ExtractionError) as exc_info:
            await client.extract("   ", URL)
        assert exc_info.value.kind is ErrorKind.PERMANENT
        assert extractor.calls == []

    async def test_transient_error_retried(
        self, make_extractor: Callable[..., Any], fast_retry: Any
    ) -> None:
        extractor = make_extractor(
            {URL: [_record()]},
            errors=[ExtractionError("429", kind=ErrorKind.TRANSIENT)],
        )
        client = ExtractionClient(extractor, policy=fast_retry)
        assert len(await client.extract(HTML, URL)) == 1
        assert len(extractor.calls) == 2

    async def test_malformed_reply_fails_the_page(
        self, make_extractor: Callable[..., Any], fast_retry: Any
    ) -> None:
        extractor = make_extractor(
            {URL: [_record()]},
            errors=[ExtractionError("not json", kind=ErrorKind.MALFORMED)],
        )
        client = ExtractionClient(extractor, policy=fast_retry)
        with pytest.raises(ExtractionError, match="not json"):
            await client.extract(HTML, URL)
        assert len(extractor.calls) == 1

    async def test_unexpected_error_is_wrapped(
        self, make_extractor: Callable[..., Any], fast_retry: Any
    ) -> None:
        extractor = make_extractor(errors=[KeyError("results")])
        client = ExtractionClient(extractor, policy=fast_retry)
        with pytest.raises(ExtractionError) as exc_info:
            await client.extract(HTML, URL)
        assert exc_info.value.kind is ErrorKind.PERMANENT
        assert isinstance(exc_info.value.__cause__, KeyError)

    async def test_fallback_used_only_for_empty_reply(
        self, make_extractor: Callable[..., Any], fast_retry: Any
    ) -> None:
        fallback = make_extractor({URL: [_record("from fallback")]})
        client = ExtractionClient(make_extractor(), policy=fast_retry, fallback=fallback)
        records = await client.extract(HTML, URL)
        assert [r.title for r in records] == ["from fallback"]

        primary = make_extractor({URL: [_record("primary")]})
        client = ExtractionClient(primary, policy=fast_retry, fallback=fallback)
        assert [r.title for r in await client.extract(HTML, URL)] == ["primary"]
        assert len(fallback.calls) == 1

    async def test_fallback_not_used_on_failure(
        self, make_extractor: Callable[..., Any], fast_retry: Any
    ) -> None:
        fallback = make_extractor({URL: [_record()]})
        primary = make_extractor(
            errors=[ExtractionError("401", kind=ErrorKind.PERMANENT)]
        )
        client = ExtractionClient(primary, policy=fast_retry, fallback=fallback)
        with pytest.raises(ExtractionError):
            await client.extract(HTML, URL)
        assert fallback.calls == []
