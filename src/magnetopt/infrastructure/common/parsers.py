"""Heuristics for recognising fields in scraped table cells."""

from __future__ import annotations

import re

MAGNET_RE = re.compile(r"magnet:\?xt=urn:btih:[a-fA-F0-9]{40}[^\s\"'<>]*")
_SIZE_UNITS = ("TB", "GB", "MB", "KB")
_SIZE_UNIT_RE = re.compile(r"\s*\d+(?:\.\d+)?\s*[KMGT]B\s*$", re.IGNORECASE)


def looks_like_size(text: str) -> bool:
    """A cell that mentions a size unit and contains a digit."""
    upper = text.upper()
    return any(unit in upper for unit in _SIZE_UNITS) and any(
        ch.isdigit() for ch in text
    )


def looks_like_date(text: str) -> bool:
    """A short cell with dashes and at least four digits (e.g. 2024-01-31)."""
    stripped = text.strip()
    return (
        "-" in stripped
        and 8 <= len(stripped) <= 20
        and sum(ch.isdigit() for ch in stripped) >= 4
    )


def strip_size_suffix(name: str) -> str:
    """Drop a trailing size token from a file-list entry ("a.mkv 1.2 GB")."""
    return _SIZE_UNIT_RE.sub("", name).strip()


def find_magnets(text: str) -> list[str]:
    """All BitTorrent magnet links in *text*, de-duplicated, in order."""
    seen: set[str] = set()
    out: list[str] = []
    for match in MAGNET_RE.finditer(text):
        link = match.group(0).replace("&amp;", "&")
        if link not in seen:
            seen.add(link)
            out.append(link)
    return out
