"""Search engine adapters."""

from __future__ import annotations

from .base import HttpxEngineBase
from .clmclm import ClmclmEngine, parse_clmclm_results
from .heuristic import HeuristicHtmlExtractor, title_from_magnet
from .registry import build_engine, build_engines
from .template import TemplateEngine

__all__ = [
    "ClmclmEngine",
    "HeuristicHtmlExtractor",
    "HttpxEngineBase",
    "TemplateEngine",
    "build_engine",
    "build_engines",
    "parse_clmclm_results",
    "title_from_magnet",
]
