"""Runtime metrics endpoint."""

from __future__ import annotations

from typing import Any, cast

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from magnetopt.interfaces.app_state import AppState

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("")
async def stats(request: Request) -> JSONResponse:
    """Return in-memory runtime metrics.

    Includes engine fetch stats, analysis batch stats, run totals and
    concurrency pool utilisation.
    """
    state = cast(AppState, request.app.state)

    data: dict[str, Any] = {}
    services = getattr(state, "services", None)
    if services is not None:
        data.update(services.metrics.snapshot())
        data["concurrency_pool"] = services.pool.snapshot()

    runs = getattr(state, "runs", None)
    if runs is not None:
        data["api_runs"] = {"tracked": len(runs), "active": runs.active()}

    return JSONResponse(content=data)
