"""NDJSON rendering of a search run.

Every line is one JSON object with a ``type`` discriminator:

- ``{"type": "run", "run_id": ...}`` (first line)
- ``{"type": "progress", "event": {...}}``
- ``{"type": "snapshot", "snapshot": {...}}``
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

from magnetopt.application.use_cases.search_run import SearchRun
from magnetopt.domain.entities.progress import ProgressEvent
from magnetopt.domain.entities.search import ResultSnapshot

NDJSON_MEDIA_TYPE = "application/x-ndjson"


def ndjson_line(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")) + "\n"


def run_line(run: SearchRun) -> str:
    return ndjson_line({"type": "run", "run_id": run.run_id})


def progress_line(event: ProgressEvent) -> str:
    return ndjson_line({"type": "progress", "event": event.to_dict()})


def snapshot_line(snapshot: ResultSnapshot) -> str:
    return ndjson_line({"type": "snapshot", "snapshot": snapshot.to_dict()})


def run_status(run: SearchRun) -> dict[str, Any]:
    """JSON body for ``GET /search/{run_id}``."""
    return {
        "run_id": run.run_id,
        "keyword": run.query.keyword,
        "finished": run.finished,
        "cancelled": run.cancelled,
        "failed_engines": list(run.failed_engines),
        "snapshot": run.snapshot().to_dict(),
    }


async def stream_run(run: SearchRun) -> AsyncIterator[str]:
    """Interleave progress events and snapshots of *run* as NDJSON lines.

    Ends when both streams end. Closing the generator early cancels the run.
    """
    queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()

    async def _pump(kind: str, source: AsyncIterator[Any]) -> None:
        try:
            async for item in source:
                await queue.put((kind, item))
        finally:
            await queue.put((kind, None))

    pumps = [
        asyncio.create_task(_pump("progress", run.events())),
        asyncio.create_task(_pump("snapshot", run.snapshots())),
    ]
    open_streams = len(pumps)
    try:
        yield run_line(run)
        while open_streams:
            kind, item = await queue.get()
            if item is None:
                open_streams -= 1
            elif kind == "progress":
                yield progress_line(item)
            else:
                yield snapshot_line(item)
    finally:
        for task in pumps:
            task.cancel()
        if open_streams:
            run.cancel()
