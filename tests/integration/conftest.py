"""Shared fixtures for integration tests.

These tests use real infrastructure components (engines, the chat
completion client, the composition root) with mocked HTTP via respx.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest
import respx


@pytest.fixture()
def respx_mock() -> Iterator[respx.MockRouter]:
    """Explicit respx mock router; requests to unmocked URLs fail."""
    with respx.mock(assert_all_called=False) as router:
        yield router
