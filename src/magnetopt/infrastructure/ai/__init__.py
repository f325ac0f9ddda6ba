"""Adapters for OpenAI-compatible chat-completions endpoints."""

from __future__ import annotations

from .analysis import LlmResultAnalyzer
from .chat_client import AiCallError, ChatCompletionClient, strip_code_fence
from .extraction import LlmHtmlExtractor

__all__ = [
    "AiCallError",
    "ChatCompletionClient",
    "LlmHtmlExtractor",
    "LlmResultAnalyzer",
    "strip_code_fence",
]
