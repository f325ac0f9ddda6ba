"""Token-bucket throttles for outgoing HTTP requests.

Supports adaptive AIMD (Additive Increase / Multiplicative Decrease) rate
adjustment from server feedback (429/503 -> halve, success -> grow).
"""

from __future__ import annotations

import asyncio
import time
from urllib.parse import urlparse

import structlog

log = structlog.get_logger(__name__)


class TokenBucket:
    """Token-bucket rate limiter with optional AIMD adaptive rate.

    - **Success**: rate +10%, capped at *max_rate*.
    - **429/503**: rate halved, floored at *min_rate*.
    - **Timeout**: rate -25%, floored at *min_rate*.

    Args:
        rate: Tokens replenished per second (initial rate). 0 = unlimited.
        burst: Maximum bucket size (allows short bursts).
        adaptive: Enable AIMD rate adaptation.
        min_rate: Lower bound for adaptive rate (rps).
        max_rate: Upper bound for adaptive rate (rps).
        name: Label used in log events.
    """

    def __init__(
        self,
        rate: float,
        burst: int = 5,
        *,
        adaptive: bool = False,
        min_rate: float = 0.2,
        max_rate: float = 20.0,
        name: str = "",
    ) -> None:
        self._rate = rate
        self._burst = burst
        self._tokens = float(burst)
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()
        self._adaptive = adaptive
        self._min_rate = min_rate
        self._max_rate = max_rate
        self._name = name

    @property
    def rate(self) -> float:
        """Current tokens-per-second rate."""
        return self._rate

    async def acquire(self) -> None:
        """Wait until a token is available, then consume it."""
        if self._rate <= 0:
            return

        async with self._lock:
            self._refill()
            while self._tokens < 1.0:
                await asyncio.sleep((1.0 - self._tokens) / self._rate)
                self._refill()
            self._tokens -= 1.0

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(self._burst, self._tokens + elapsed * self._rate)
        self._last_refill = now

    # -- AIMD feedback --------------------------------------------------

    def record_success(self) -> None:
        if not self._adaptive or self._rate <= 0:
            return
        self._rate = min(self._max_rate, self._rate * 1.1)

    def record_throttle(self) -> None:
        if not self._adaptive or self._rate <= 0:
            return
        old = self._rate
        self._rate = max(self._min_rate, self._rate * 0.5)
        log.debug(
            "rate_limit_throttle",
            bucket=self._name,
            old_rps=round(old, 2),
            new_rps=round(self._rate, 2),
        )

    def record_timeout(self) -> None:
        if not self._adaptive or self._rate <= 0:
            return
        old = self._rate
        self._rate = max(self._min_rate, self._rate * 0.75)
        log.debug(
            "rate_limit_timeout",
            bucket=self._name,
            old_rps=round(old, 2),
            new_rps=round(self._rate, 2),
        )


class HostRateLimiter:
    """One adaptive token bucket per target host.

    Args:
        default_rps: Requests per second per host. 0 = unlimited.
        burst: Maximum burst size per host.
    """

    def __init__(
        self,
        default_rps: float = 2.0,
        burst: int = 5,
        *,
        adaptive: bool = True,
    ) -> None:
        self._default_rps = default_rps
        self._burst = burst
        self._adaptive = adaptive
        self._buckets: dict[str, TokenBucket] = {}

    @staticmethod
    def _host(url: str) -> str:
        return (urlparse(url).hostname or "").lower()

    def _bucket(self, host: str) -> TokenBucket:
        bucket = self._buckets.get(host)
        if bucket is None:
            bucket = TokenBucket(
                rate=self._default_rps,
                burst=self._burst,
                adaptive=self._adaptive,
                name=host,
            )
            self._buckets[host] = bucket
        return bucket

    async def acquire(self, url: str) -> None:
        if self._default_rps <= 0:
            return
        host = self._host(url)
        if host:
            await self._bucket(host).acquire()

    def record_success(self, url: str) -> None:
        host = self._host(url)
        if host in self._buckets:
            self._buckets[host].record_success()

    def record_throttle(self, url: str) -> None:
        host = self._host(url)
        if host in self._buckets:
            self._buckets[host].record_throttle()

    def record_timeout(self, url: str) -> None:
        host = self._host(url)
        if host in self._buckets:
            self._buckets[host].record_timeout()
