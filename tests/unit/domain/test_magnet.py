"""Tests for magnet parsing and result identity."""

from __future__ import annotations

import base64

from magnetopt.domain.entities.magnet import (
    ResultKey,
    display_name_from_magnet,
    is_btih_magnet,
    normalize_magnet_uri,
    parse_magnet,
)

HEX = "0123456789abcdef0123456789abcdef01234567"


class TestParseMagnet:
    def test_hex_hash_lowercased(self) -> None:
        info = parse_magnet(f"magnet:?xt=urn:btih:{HEX.upper()}&dn=Ubuntu+22.04")
        assert info is not None
        assert info.info_hash == HEX
        assert info.display_name == "Ubuntu 22.04"

    def test_base32_hash_converted_to_hex(self) -> None:
        b32 = base64.b32encode(bytes.fromhex(HEX)).decode()
        info = parse_magnet(f"magnet:?xt=urn:btih:{b32}")
        assert info is not None
        assert info.info_hash == HEX

    def test_trackers_collected(self) -> None:
        info = parse_magnet(
            f"magnet:?xt=urn:btih:{HEX}&tr=udp://a:80&tr=udp://b:80"
        )
        assert info is not None
        assert info.trackers == ("udp://a:80", "udp://b:80")

    def test_non_magnet_returns_none(self) -> None:
        assert parse_magnet("https://example.com") is None
        assert parse_magnet("") is None
        assert parse_magnet(None) is None

    def test_magnet_without_btih_has_no_hash(self) -> None:
        info = parse_magnet("magnet:?xt=urn:sha1:abc&dn=x")
        assert info is not None
        assert info.info_hash is None


class TestHelpers:
    def test_is_btih_magnet(self) -> None:
        assert is_btih_magnet(f"magnet:?xt=urn:btih:{HEX}")
        assert not is_btih_magnet("magnet:?dn=foo")
        assert not is_btih_magnet(None)

    def test_is_btih_magnet_with_xt_after_other_params(self) -> None:
        assert is_btih_magnet(f"magnet:?dn=Some+Name&tr=udp://t.test&xt=urn:btih:{HEX}")
        assert not is_btih_magnet("magnet:?dn=x&xt=urn:btih:nothex")
        assert not is_btih_magnet("magnet:?xt=urn:sha1:abc")

    def test_normalize_drops_trackers_and_name(self) -> None:
        a = normalize_magnet_uri("magnet:?xt=urn:sha1:abc&tr=udp://a&dn=One")
        b = normalize_magnet_uri("magnet:?dn=Two&xt=urn:sha1:abc")
        assert a == b == "magnet:?xt=urn:sha1:abc"

    def test_display_name_needs_minimum_length(self) -> None:
        assert display_name_from_magnet(f"magnet:?xt=urn:btih:{HEX}&dn=abc") is None
        assert (
            display_name_from_magnet(f"magnet:?xt=urn:btih:{HEX}&dn=Long+Name")
            == "Long Name"
        )


class TestResultKey:
    def test_same_hash_different_trackers_is_same_key(self) -> None:
        a = ResultKey.for_result(
            title="A", magnet_link=f"magnet:?xt=urn:btih:{HEX}&tr=udp://x"
        )
        b = ResultKey.for_result(
            title="B", magnet_link=f"magnet:?xt=urn:btih:{HEX.upper()}&dn=other"
        )
        assert a == b
        assert str(a) == f"btih:{HEX}"

    def test_non_btih_magnet_uses_normalized_uri(self) -> None:
        key = ResultKey.for_result(
            title="A", magnet_link="magnet:?xt=urn:sha1:abc&tr=udp://x"
        )
        assert key.kind == "uri"

    def test_missing_magnet_uses_title_and_size(self) -> None:
        a = ResultKey.for_result(title="Some  Title", magnet_link="", file_size="1 GB")
        b = ResultKey.for_result(title="some title", magnet_link=None, file_size="1 GB")
        assert a == b
        assert a.kind == "title_size"
