"""Tests for the single-subscriber progress bus."""

from __future__ import annotations

import pytest

from magnetopt.application.pipeline.progress_bus import ProgressBus
from magnetopt.domain.entities.progress import Done, EngineCompleted, EngineStarted


async def _drain(bus: ProgressBus) -> list[object]:
    return [event async for event in bus.subscribe()]


class TestProgressBus:
    async def test_events_delivered_in_order_until_done(self) -> None:
        bus = ProgressBus()
        bus.publish(EngineStarted(engine_id="a"))
        bus.publish(EngineCompleted(engine_id="a", count=2))
        bus.publish(Done(total_results=2))

        events = await _drain(bus)

        assert [e.kind for e in events] == ["engine_started", "engine_completed", "done"]
        assert bus.closed
        assert bus.published == 3

    async def test_publish_after_done_is_ignored(self) -> None:
        bus = ProgressBus()
        bus.publish(Done(total_results=0))
        bus.publish(EngineStarted(engine_id="late"))
        events = await _drain(bus)
        assert len(events) == 1

    async def test_close_drops_pending_events(self) -> None:
        bus = ProgressBus()
        bus.publish(EngineStarted(engine_id="a"))
        bus.close()
        assert await _drain(bus) == []

    async def test_close_is_idempotent(self) -> None:
        bus = ProgressBus()
        bus.close()
        bus.close()
        assert await _drain(bus) == []

    def test_second_subscriber_rejected(self) -> None:
        bus = ProgressBus()
        bus.subscribe()
        with pytest.raises(RuntimeError, match="single subscriber"):
            bus.subscribe()
