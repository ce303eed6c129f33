"""
Shared pytest fixtures for nexus-spine tests.

This module provides:
- A controllable clock shared by the cache and circuit breakers
- A recording ``sleep`` so batch pacing is asserted without real waiting
- Fresh cache / breaker registry / content store per test
- Registry and settings isolation
"""

from __future__ import annotations

from collections.abc import Generator

import pytest

from nexus_spine.core.cache import TTLCache
from nexus_spine.core.settings import NexusSettings, clear_settings_cache
from nexus_spine.core.storage import InMemoryContentStore
from nexus_spine.execution.circuit_breaker import CircuitBreakerRegistry
from nexus_spine.framework import registry as adapter_registry


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Stand-in for ``asyncio.sleep`` that records delays and advances a clock."""

    def __init__(self, clock: FakeClock | None = None):
        self.calls: list[float] = []
        self._clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


# =============================================================================
# Time
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps(clock: FakeClock) -> SleepRecorder:
    return SleepRecorder(clock)


# =============================================================================
# Process-wide collaborators (fresh per test)
# =============================================================================


@pytest.fixture
def cache(clock: FakeClock) -> TTLCache:
    return TTLCache(default_ttl_seconds=1800, clock=clock)


@pytest.fixture
def breakers(clock: FakeClock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(clock=clock)


@pytest.fixture
def store() -> InMemoryContentStore:
    return InMemoryContentStore()


@pytest.fixture
def settings() -> NexusSettings:
    """Settings built from defaults only (no environment, no .env file)."""
    return NexusSettings(_env_file=None, user_agent="nexus-spine-tests (tests@example.com)")


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def restore_adapter_registry() -> Generator[None, None, None]:
    """Snapshot the adapter registry so tests can register throwaway adapters."""
    saved = dict(adapter_registry._registry)
    saved_loaded = adapter_registry._loaded
    yield
    adapter_registry._registry.clear()
    adapter_registry._registry.update(saved)
    adapter_registry._loaded = saved_loaded


@pytest.fixture(autouse=True)
def clean_settings_cache() -> Generator[None, None, None]:
    clear_settings_cache()
    yield
    clear_settings_cache()
