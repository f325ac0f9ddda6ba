"""Search endpoints: start a streaming run, inspect it, cancel it."""

from __future__ import annotations

from typing import Any, cast

import structlog
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from magnetopt.application.use_cases.search_run import SearchRun
from magnetopt.interfaces.app_state import AppState

from .presenter import NDJSON_MEDIA_TYPE, run_status, stream_run

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/search", tags=["search"])


class SearchRequest(BaseModel):
    """Body of ``POST /search``. Unset options fall back to the config."""

    keyword: str = Field(min_length=1)
    max_pages: int | None = Field(default=None, ge=1, le=20)
    ai_filter: bool | None = None
    require_keyword_in_title: bool | None = None
    engine_ids: list[str] = Field(default_factory=list)
    priority_keywords: list[str] | None = None


def _get_run(state: AppState, run_id: str) -> SearchRun:
    run = state.runs.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="search run not found")
    return run


@router.post("")
async def start_search(body: SearchRequest, request: Request) -> StreamingResponse:
    """Start a run and stream its progress and snapshots as NDJSON."""
    state = cast(AppState, request.app.state)
    services = state.services

    try:
        query = services.new_query(
            body.keyword,
            max_pages=body.max_pages,
            ai_filter=body.ai_filter,
            require_keyword_in_title=body.require_keyword_in_title,
            engine_ids=body.engine_ids,
            priority_keywords=body.priority_keywords,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    run = services.orchestrator.start(query, services.engines)
    state.runs.add(run)
    log.info("search_request", run_id=run.run_id, keyword=query.keyword)

    return StreamingResponse(
        stream_run(run),
        media_type=NDJSON_MEDIA_TYPE,
        headers={"X-Run-Id": run.run_id},
    )


@router.get("/{run_id}")
async def get_search(run_id: str, request: Request) -> dict[str, Any]:
    """Current snapshot and status of a run."""
    state = cast(AppState, request.app.state)
    return run_status(_get_run(state, run_id))


@router.delete("/{run_id}")
async def cancel_search(run_id: str, request: Request) -> dict[str, Any]:
    """Cancel a run. Results merged so far stay readable."""
    state = cast(AppState, request.app.state)
    run = _get_run(state, run_id)
    run.cancel()
    return {"run_id": run.run_id, "cancelled": run.cancelled, "finished": run.finished}
