"""Application state container for FastAPI dependency injection."""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.datastructures import State

from magnetopt.infrastructure.config import AppConfig

if TYPE_CHECKING:
    from magnetopt.infrastructure.composition import Services
    from magnetopt.interfaces.run_registry import RunRegistry


class AppState(State):
    """FastAPI application state with all DI resources.

    Lifecycle managed by composition.py::lifespan().
    """

    # Configuration
    config: AppConfig

    # Wired components (HTTP client, engines, orchestrator, pool, metrics)
    services: Services

    # Runs started through the API
    runs: RunRegistry
