"""Composition root: dependency injection via FastAPI lifespan."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, cast

import structlog
from fastapi import FastAPI

from magnetopt.infrastructure.composition import build_services
from magnetopt.interfaces.app_state import AppState
from magnetopt.interfaces.run_registry import RunRegistry

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create shared services on startup; cancel runs and close them on shutdown."""
    state = cast(AppState, app.state)

    async with build_services(state.config) as services:
        state.services = services
        state.runs = RunRegistry()
        log.info("app_startup_complete", engines=len(services.engines))
        try:
            yield
        finally:
            state.runs.cancel_all()
            log.info("app_shutdown_complete")
