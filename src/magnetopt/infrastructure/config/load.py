"""Layered configuration loading.

Layers, lowest to highest: built-in defaults, YAML file, environment
(``MAGNETOPT_*``, optionally seeded from a .env file), CLI overrides.
Every layer is normalized to the sectioned YAML shape before merging, and
the merged mapping is validated once by :class:`AppConfig`.
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Mapping

import structlog
import yaml
from dotenv import load_dotenv

from .defaults import DEFAULT_CONFIG
from .schema import AppConfig, EnvOverrides

log = structlog.get_logger(__name__)

SECTIONS = ("http", "logging", "search", "extraction", "analysis")

# Flat keys (env vars, CLI flags) and the section entry they set.
FLAT_KEYS: dict[str, tuple[str, str]] = {
    "http_timeout_seconds": ("http", "timeout_seconds"),
    "http_follow_redirects": ("http", "follow_redirects"),
    "http_user_agent": ("http", "user_agent"),
    "log_level": ("logging", "level"),
    "log_format": ("logging", "format"),
    "search_max_concurrent_engines": ("search", "max_concurrent_engines"),
    "search_engine_timeout_seconds": ("search", "engine_timeout_seconds"),
    "search_ai_filter": ("search", "ai_filter"),
    "extraction_api_base": ("extraction", "api_base"),
    "extraction_api_key": ("extraction", "api_key"),
    "extraction_model": ("extraction", "model"),
    "analysis_api_base": ("analysis", "api_base"),
    "analysis_api_key": ("analysis", "api_key"),
    "analysis_model": ("analysis", "model"),
    "analysis_batch_size": ("analysis", "batch_size"),
}


def _merge_into(base: dict[str, Any], layer: Mapping[str, Any]) -> dict[str, Any]:
    """Merge *layer* into *base* in place. Nested mappings merge; lists replace."""
    for key, value in layer.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            _merge_into(current, value)
        else:
            base[key] = value
    return base


def _engine_entries(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        raise ValueError(f"engines must be a list, got: {type(value).__name__}")
    entries: list[dict[str, Any]] = []
    for i, entry in enumerate(value):
        if not isinstance(entry, Mapping):
            raise ValueError(f"engines[{i}] must be a mapping")
        entries.append(dict(entry))
    return entries


def _sectioned(data: Mapping[str, Any]) -> dict[str, Any]:
    """Bring one layer into the sectioned shape; unknown keys are dropped."""
    out: dict[str, Any] = {
        section: dict(data[section])
        for section in SECTIONS
        if isinstance(data.get(section), Mapping)
    }
    out.update({k: data[k] for k in ("app_name", "environment") if k in data})
    if "engines" in data:
        out["engines"] = _engine_entries(data["engines"])

    for flat_key, (section, key) in FLAT_KEYS.items():
        if flat_key in data:
            out.setdefault(section, {})[key] = data[flat_key]
    return out


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ValueError(f"config YAML must be a mapping, got: {type(parsed).__name__}")
    return parsed


def load_config(
    *,
    config_path: Path | None = None,
    dotenv_path: Path | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """Build the application config from all layers.

    Reads files only; nothing is created on disk. Raises
    ``FileNotFoundError`` for a missing YAML or .env path, ``ValueError``
    for a malformed YAML layout and ``pydantic.ValidationError`` for
    invalid values.
    """
    if dotenv_path is not None:
        if not dotenv_path.exists():
            raise FileNotFoundError(dotenv_path)
        # Real environment variables win over the .env file.
        load_dotenv(dotenv_path, override=False)

    layers = [_sectioned(deepcopy(DEFAULT_CONFIG))]
    if config_path is not None:
        layers.append(_sectioned(_read_yaml(config_path)))
    layers.append(_sectioned(EnvOverrides().to_update_dict()))
    layers.append(_sectioned(cli_overrides or {}))

    merged: dict[str, Any] = {}
    for layer in layers:
        _merge_into(merged, layer)

    config = AppConfig.model_validate(merged)
    log.debug(
        "config_loaded",
        config_file=str(config_path) if config_path else None,
        engines=[e.id for e in config.enabled_engines],
    )
    return config
