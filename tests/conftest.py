"""Shared test fixtures.

Tests never touch the real QuantConnect API: the remote side is an in-memory
fake served through ``httpx.MockTransport``.  Settings are isolated from the
developer's environment and ``.env`` file.
"""

from __future__ import annotations

import os

import pytest

from quantsync.workspace.settings import _get_settings_cached


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop QUANTCONNECT_* variables and invalidate the settings cache."""
    for key in list(os.environ):
        if key.startswith("QUANTCONNECT_"):
            monkeypatch.delenv(key)
    _get_settings_cached.cache_clear()
