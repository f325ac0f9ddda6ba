"""FastAPI application factory (create_app)."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from magnetopt.infrastructure.config import AppConfig
from magnetopt.interfaces.app_state import AppState
from magnetopt.interfaces.composition import lifespan

log = structlog.get_logger(__name__)


def create_app(config: AppConfig) -> FastAPI:
    """Create the FastAPI app. Configuration only; resources come from lifespan()."""
    app = FastAPI(
        title="magnetopt",
        description="Multi-engine magnet link search with AI clean-up",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state = AppState()
    app.state.config = config

    from magnetopt.interfaces.api.search.router import router as search_router
    from magnetopt.interfaces.api.stats.router import router as stats_router

    app.include_router(search_router, prefix="/api/v1")
    app.include_router(stats_router, prefix="/api/v1")

    @app.get("/healthz")
    async def healthz() -> Response:
        """200 once services are wired, 503 until startup completes."""
        services = getattr(app.state, "services", None)
        if services is None:
            return JSONResponse({"status": "starting"}, status_code=503)
        return JSONResponse(
            {
                "status": "ok",
                "engines": [e.descriptor.id for e in services.engines],
                "analysis": services.orchestrator.analysis_enabled,
                "active_runs": app.state.runs.active(),
            }
        )

    @app.middleware("http")
    async def log_requests(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        structlog.contextvars.bind_contextvars(request_id=uuid4().hex[:12])
        t0 = time.perf_counter_ns()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            # Streaming responses are logged when headers go out, not at EOF.
            log.info(
                "http_request",
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=round((time.perf_counter_ns() - t0) / 1_000_000, 2),
            )
            structlog.contextvars.unbind_contextvars("request_id")

    return app
