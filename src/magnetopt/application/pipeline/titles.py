"""Title helpers shared by the orchestrator and the analysis batcher."""

from __future__ import annotations

import re
from collections.abc import Iterable

_AD_MARKER_RE = re.compile(r"\[.*?\]|【.*?】")
_URL_RE = re.compile(r"(?i)(www\.\S+\.\S+|https?://\S+)")
_SPACES_RE = re.compile(r"\s{2,}")


def clean_title_fallback(title: str) -> str:
    """Strip ad markers and URLs from a raw title.

    Used when the analysis capability returns an empty clean title.
    Falls back to the stripped raw title if nothing is left.
    """
    cleaned = _AD_MARKER_RE.sub("", title)
    cleaned = _URL_RE.sub("", cleaned)
    cleaned = _SPACES_RE.sub(" ", cleaned).strip()
    return cleaned or title.strip()


def title_matches_keyword(title: str, keyword: str) -> bool:
    """True when every whitespace token of *keyword* occurs in *title*."""
    haystack = title.casefold()
    tokens = keyword.casefold().split()
    return bool(tokens) and all(token in haystack for token in tokens)


def has_priority_keyword(title: str, keywords: Iterable[str]) -> bool:
    haystack = title.casefold()
    return any(k.strip() and k.strip().casefold() in haystack for k in keywords)


def dedupe_tags(tags: Iterable[object]) -> tuple[str, ...]:
    """Normalise tags to stripped strings, dropping empties and repeats."""
    seen: set[str] = set()
    out: list[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            continue
        text = tag.strip()
        folded = text.casefold()
        if not text or folded in seen:
            continue
        seen.add(folded)
        out.append(text)
    return tuple(out)
