"""Hardcoded default configuration values."""

from __future__ import annotations

from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "app_name": "magnetopt",
    "environment": "dev",
    "http": {
        "timeout_seconds": 20.0,
        "follow_redirects": True,
    },
    "logging": {
        "level": "INFO",
        "format": None,  # Derived from environment in schema.py
    },
    "search": {
        "default_max_pages": 3,
        "max_concurrent_engines": 5,
        "engine_timeout_seconds": 45.0,
        "fetch_max_attempts": 3,
        "ai_filter": True,
        "require_keyword_in_title": False,
        "priority_keywords": [],
    },
    "extraction": {
        "provider": "gemini",
        "model": "gemini-2.0-flash",
        "api_key": None,
        "max_html_chars": 50_000,
    },
    "analysis": {
        "provider": "gemini",
        "model": "gemini-2.0-flash",
        "api_key": None,
        "batch_size": 10,
        "max_concurrent_batches": 2,
        "max_failed_batches": 3,
    },
    "engines": [
        {
            "id": "clmclm",
            "name": "CLMCLM",
            "kind": "builtin",
            "parsing_mode": "structured",
        },
    ],
}
