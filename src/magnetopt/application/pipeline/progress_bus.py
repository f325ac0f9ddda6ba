"""In-process progress event bus for one search run."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import structlog

from magnetopt.domain.entities.progress import Done, ProgressEvent

log = structlog.get_logger(__name__)

_CLOSED = object()


class ProgressBus:
    """Unbounded single-subscriber event stream.

    ``publish`` never blocks. The stream ends after :class:`Done` or when
    the bus is closed. ``close`` without a prior ``Done`` (cancellation)
    drops undelivered events so the subscriber sees nothing further.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False
        self._subscribed = False
        self._published = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def published(self) -> int:
        return self._published

    def publish(self, event: ProgressEvent) -> None:
        if self._closed:
            return
        self._queue.put_nowait(event)
        self._published += 1
        if isinstance(event, Done):
            self._closed = True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            dropped += 1
        self._queue.put_nowait(_CLOSED)
        if dropped:
            log.debug("progress_events_dropped", count=dropped)

    def subscribe(self) -> AsyncIterator[ProgressEvent]:
        if self._subscribed:
            raise RuntimeError("ProgressBus supports a single subscriber")
        self._subscribed = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item  # type: ignore[misc]
            if isinstance(item, Done):
                return
