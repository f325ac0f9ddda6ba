"""Magnet URI parsing and result identity.

Two results are the same result when their magnet links carry the same
exact-topic BitTorrent hash. Tracker lists and display names do not take
part in identity.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from urllib.parse import parse_qsl, quote

MAGNET_SCHEME = "magnet:?"
BTIH_URN = "urn:btih:"

_HEX_HASH_RE = re.compile(r"^[0-9a-fA-F]{40}$")
_BASE32_HASH_RE = re.compile(r"^[A-Za-z2-7]{32}$")
_WHITESPACE_RE = re.compile(r"\s+")

# Parameters that do not change which torrent a magnet points at.
_NON_IDENTITY_PARAMS = frozenset({"tr", "dn", "ws", "as", "xs"})


@dataclass(frozen=True)
class MagnetInfo:
    """Decoded view of a magnet URI."""

    info_hash: str | None  # lower-case hex, 40 chars
    display_name: str | None
    trackers: tuple[str, ...]
    params: tuple[tuple[str, str], ...]


def _normalize_btih(value: str) -> str | None:
    if not value.lower().startswith(BTIH_URN):
        return None
    digest = value[len(BTIH_URN) :].strip()
    if _HEX_HASH_RE.match(digest):
        return digest.lower()
    if _BASE32_HASH_RE.match(digest):
        try:
            return base64.b32decode(digest.upper()).hex()
        except (binascii.Error, ValueError):
            return None
    return None


def parse_magnet(uri: str | None) -> MagnetInfo | None:
    """Parse *uri* into a :class:`MagnetInfo`.

    Returns ``None`` for anything that is not a ``magnet:?`` URI.
    """
    if not uri:
        return None
    text = uri.strip()
    if not text.lower().startswith(MAGNET_SCHEME):
        return None

    params = tuple(
        (key.lower(), value)
        for key, value in parse_qsl(text[len(MAGNET_SCHEME) :], keep_blank_values=True)
    )

    info_hash: str | None = None
    display_name: str | None = None
    trackers: list[str] = []
    for key, value in params:
        if key == "xt" and info_hash is None:
            info_hash = _normalize_btih(value)
        elif key == "dn" and display_name is None:
            display_name = value.strip() or None
        elif key == "tr" and value:
            trackers.append(value)

    return MagnetInfo(
        info_hash=info_hash,
        display_name=display_name,
        trackers=tuple(trackers),
        params=params,
    )


def is_btih_magnet(uri: str | None) -> bool:
    """True when *uri* is a magnet carrying a valid BitTorrent info hash.

    The ``xt`` parameter may appear anywhere in the query.
    """
    info = parse_magnet(uri)
    return info is not None and info.info_hash is not None


def normalize_magnet_uri(uri: str) -> str:
    """Canonical form of a magnet URI without tracker/display parameters."""
    info = parse_magnet(uri)
    if info is None:
        return uri.strip()
    kept = sorted(
        (key, value) for key, value in info.params if key not in _NON_IDENTITY_PARAMS
    )
    query = "&".join(f"{key}={quote(value, safe=':')}" for key, value in kept)
    return f"{MAGNET_SCHEME}{query}"


def display_name_from_magnet(uri: str | None, *, min_length: int = 6) -> str | None:
    """Return the ``dn`` parameter if it is long enough to be a real title."""
    info = parse_magnet(uri)
    if info is None or info.display_name is None:
        return None
    name = info.display_name
    return name if len(name) >= min_length else None


def _fold(text: str | None) -> str:
    return _WHITESPACE_RE.sub(" ", (text or "").strip()).casefold()


@dataclass(frozen=True, order=True)
class ResultKey:
    """Deduplication identity of a search result.

    ``kind`` is ``btih`` (exact hash), ``uri`` (magnet without a BitTorrent
    hash) or ``title_size`` (no magnet at all).
    """

    kind: str
    value: str

    @classmethod
    def for_result(
        cls,
        *,
        title: str,
        magnet_link: str | None,
        file_size: str | None = None,
    ) -> ResultKey:
        info = parse_magnet(magnet_link)
        if info is not None and info.info_hash:
            return cls("btih", info.info_hash)
        if magnet_link and magnet_link.strip():
            return cls("uri", normalize_magnet_uri(magnet_link))
        return cls("title_size", f"{_fold(title)}|{_fold(file_size)}")

    def __str__(self) -> str:
        return f"{self.kind}:{self.value}"
