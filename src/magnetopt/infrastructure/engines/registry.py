"""Build engine adapters from configuration."""

from __future__ import annotations

import httpx
import structlog

from magnetopt.domain.ports.engine import EnginePort
from magnetopt.infrastructure.common.rate_limiter import HostRateLimiter
from magnetopt.infrastructure.config.schema import EngineConfig

from .clmclm import ClmclmEngine
from .template import TemplateEngine

log = structlog.get_logger(__name__)

# Built-in engines by id.
_BUILTINS = {"clmclm": ClmclmEngine}


def build_engine(
    config: EngineConfig,
    *,
    http_client: httpx.AsyncClient,
    rate_limiter: HostRateLimiter | None = None,
) -> EnginePort:
    if config.kind == "builtin":
        cls = _BUILTINS.get(config.id)
        if cls is None:
            raise ValueError(f"unknown built-in engine: {config.id!r}")
        return cls(
            http_client=http_client,
            engine_id=config.id,
            name=config.name,
            base_url=config.base_url,
            rate_limiter=rate_limiter,
        )

    assert config.url_template is not None  # enforced by EngineConfig
    return TemplateEngine(
        engine_id=config.id,
        url_template=config.url_template,
        http_client=http_client,
        name=config.name,
        rate_limiter=rate_limiter,
    )


def build_engines(
    configs: list[EngineConfig],
    *,
    http_client: httpx.AsyncClient,
    rate_limiter: HostRateLimiter | None = None,
) -> list[EnginePort]:
    """One adapter per enabled engine config; unusable entries are logged and skipped."""
    engines: list[EnginePort] = []
    for cfg in configs:
        if not cfg.enabled:
            continue
        try:
            engines.append(
                build_engine(cfg, http_client=http_client, rate_limiter=rate_limiter)
            )
        except ValueError as exc:
            log.warning("engine_config_rejected", engine=cfg.id, error=str(exc))
    log.info("engines_built", engines=[e.descriptor.id for e in engines])
    return engines
