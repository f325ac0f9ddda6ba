"""Human-readable size strings as found on magnet search sites."""

from __future__ import annotations

import re

_SIZE_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*([KMGT]?i?B)\b", re.IGNORECASE)

_MULTIPLIERS = {
    "B": 1,
    "KB": 1024,
    "MB": 1024**2,
    "GB": 1024**3,
    "TB": 1024**4,
}


def parse_size_to_bytes(size_str: str | None) -> int | None:
    """Parse size string to bytes.

    Supports formats:
        - "1234" (raw bytes)
        - "4.5 GB" / "4,5 GB"
        - "500 MiB"
        - "大小: 1.2 TB" (label prefixes are ignored)

    Returns:
        Size in bytes, or ``None`` when the string holds no size.
    """
    if not size_str:
        return None

    text = size_str.strip()
    if text.isdigit():
        return int(text)

    match = _SIZE_RE.search(text)
    if not match:
        return None

    value = float(match.group(1).replace(",", "."))
    unit = match.group(2).upper().replace("I", "")
    return int(value * _MULTIPLIERS.get(unit, 1))
