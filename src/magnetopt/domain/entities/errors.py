"""Error taxonomy for the search pipeline."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """How a failure should be treated by the retry/fallback machinery."""

    TRANSIENT = "transient"  # rate limit, timeout, 5xx, connection loss
    PERMANENT = "permanent"  # auth, 4xx, unusable input
    MALFORMED = "malformed"  # response arrived but could not be decoded


class MagnetOptError(Exception):
    """Base error for magnetopt domain/use cases."""

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.PERMANENT,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        # Server-requested delay before the next attempt, in seconds.
        self.retry_after = retry_after

    @property
    def is_transient(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT


class EngineFetchError(MagnetOptError):
    """An engine could not deliver any of its pages."""

    def __init__(
        self,
        engine_id: str,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.PERMANENT,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, kind=kind, retry_after=retry_after)
        self.engine_id = engine_id


class ExtractionError(MagnetOptError):
    """The structured-extraction capability failed for one page."""


class AnalysisError(MagnetOptError):
    """The content-analysis capability failed for a batch or a record."""
