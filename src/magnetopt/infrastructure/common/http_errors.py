"""Mapping of httpx failures onto the pipeline's error kinds."""

from __future__ import annotations

import httpx

from magnetopt.domain.entities.errors import ErrorKind

TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})
THROTTLE_STATUS_CODES = frozenset({429, 503})


def kind_for_status(status_code: int) -> ErrorKind:
    if status_code in TRANSIENT_STATUS_CODES or status_code >= 500:
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


def kind_for_exception(exc: BaseException) -> ErrorKind:
    """Classify an httpx exception.

    Timeouts and transport errors are transient; status errors follow
    :func:`kind_for_status`; anything else is permanent.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        return kind_for_status(exc.response.status_code)
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


def parse_retry_after(headers: httpx.Headers) -> float | None:
    """Parse a ``Retry-After`` header value (seconds form only)."""
    raw = headers.get("retry-after")
    if raw is None:
        return None
    try:
        return float(raw)
    except (ValueError, TypeError):
        return None
