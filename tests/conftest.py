"""
Shared test fixtures and configuration for dimcache tests.

This module provides common fixtures used across all test types:
- Isolation from the real ~/.dimcache directory and API key
- A controllable millisecond clock
- Temporary cache directories
- Counting fetch functions
"""

import threading
from typing import Any

import pytest

from dimcache.cache.lookup_cache import LookupCache
from dimcache.config_manager import ConfigManager
from dimcache.upstream_client import API_KEY_ENV_VARS

T0 = 1_700_000_000_000  # fixed epoch milliseconds used as "now" in tests


# ============================================================================
# ISOLATION FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def isolate_user_state(tmp_path, monkeypatch):
    """Keep tests away from the real ~/.dimcache directory and API keys.

    CRITICAL PROTECTION: Tests should NEVER touch a real cache or config.
    """
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_DIR", home / ".dimcache")
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_FILE", home / ".dimcache" / "config.toml")
    monkeypatch.setattr(LookupCache, "DEFAULT_CACHE_DIR", home / ".dimcache" / "cache")
    for name in API_KEY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return home


# ============================================================================
# CLOCK AND CACHE FIXTURES
# ============================================================================


class FakeClock:
    """Manually advanced clock returning epoch milliseconds."""

    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache_dir(tmp_path):
    return tmp_path / "cache"


@pytest.fixture
def cache(cache_dir, clock):
    """LookupCache on a temporary directory with the fake clock."""
    return LookupCache(cache_dir=cache_dir, clock=clock)


# ============================================================================
# FETCH FIXTURES
# ============================================================================


class CountingFetch:
    """Fetch function that records calls and returns canned data.

    Endpoints listed in `failing` raise RuntimeError instead.
    """

    def __init__(self, failing: set[str] | None = None):
        self.calls: list[str] = []
        self.failing = failing or set()
        self._lock = threading.Lock()
        self.called = threading.Event()

    def __call__(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self.calls.append(endpoint)
            self.called.set()
        if endpoint in self.failing:
            raise RuntimeError(f"upstream down for {endpoint}")
        name = endpoint.strip("/")
        return {"status": "success", "data": [f"{name}-{len(self.calls)}"]}

    def count(self, endpoint: str) -> int:
        with self._lock:
            return self.calls.count(endpoint)


@pytest.fixture
def fetch():
    return CountingFetch()


@pytest.fixture
def make_fetch():
    """Factory for CountingFetch with failing endpoints."""
    return CountingFetch
