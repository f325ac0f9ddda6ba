"""Common infrastructure utilities."""

from __future__ import annotations

from .http_errors import kind_for_exception, kind_for_status, parse_retry_after
from .parsers import find_magnets, looks_like_date, looks_like_size
from .rate_limiter import HostRateLimiter, TokenBucket

__all__ = [
    "HostRateLimiter",
    "TokenBucket",
    "find_magnets",
    "kind_for_exception",
    "kind_for_status",
    "looks_like_date",
    "looks_like_size",
    "parse_retry_after",
]
