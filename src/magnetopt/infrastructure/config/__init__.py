from __future__ import annotations

from .load import load_config
from .schema import (
    AiEndpointConfig,
    AnalysisConfig,
    AppConfig,
    EngineConfig,
    EnvOverrides,
    ExtractionConfig,
    SearchConfig,
)

__all__ = [
    "AiEndpointConfig",
    "AnalysisConfig",
    "AppConfig",
    "EngineConfig",
    "EnvOverrides",
    "ExtractionConfig",
    "SearchConfig",
    "load_config",
]
