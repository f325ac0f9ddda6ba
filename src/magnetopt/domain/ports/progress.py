"""Port for progress event consumers."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from magnetopt.domain.entities.progress import ProgressEvent


@runtime_checkable
class ProgressSinkPort(Protocol):
    """Receives progress events. ``publish`` must never block."""

    def publish(self, event: ProgressEvent) -> None: ...

    def close(self) -> None: ...
