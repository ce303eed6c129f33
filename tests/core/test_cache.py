"""Tests for the TTL cache."""

from __future__ import annotations

import pytest

from nexus_spine.core.cache import TTLCache, cache_key


class TestCacheKey:
    def test_source_prefix_and_lowercase_qualifier(self):
        assert cache_key("github-activity", "RocketLabUSA") == "github-activity:rocketlabusa"

    def test_sources_do_not_collide(self):
        assert cache_key("sec-edgar", "PL") != cache_key("fcc-licenses", "PL")


class TestTTLCache:
    """Read path, write path and lazy eviction."""

    def test_get_missing_returns_none(self, cache):
        assert cache.get("nope") is None

    def test_set_then_get(self, cache):
        cache.set("k", {"v": 1})
        assert cache.get("k") == {"v": 1}

    def test_ttl_respected(self, clock):
        """A value set with TTL T is live at T - 1ms and absent at T + 1ms."""
        cache = TTLCache(clock=clock)
        cache.set("sec-edgar:rklb", "summary", ttl_seconds=60.0)

        clock.advance(60.0 - 0.001)
        assert cache.get("sec-edgar:rklb") == "summary"

        clock.advance(0.002)
        assert cache.get("sec-edgar:rklb") is None

    def test_entry_expires_exactly_at_deadline(self, cache, clock):
        cache.set("k", "v", ttl_seconds=10)
        clock.advance(10)
        assert cache.get("k") is None

    def test_expired_entry_is_evicted_on_read(self, cache, clock):
        cache.set("k", "v", ttl_seconds=1)
        clock.advance(5)
        assert cache.size() == 1  # no proactive sweep
        assert cache.get("k") is None
        assert cache.size() == 0

    def test_set_overwrites_wholesale(self, cache, clock):
        cache.set("k", {"a": 1}, ttl_seconds=10)
        clock.advance(8)
        cache.set("k", {"b": 2}, ttl_seconds=10)
        clock.advance(8)
        assert cache.get("k") == {"b": 2}

    def test_default_ttl_used(self, clock):
        cache = TTLCache(default_ttl_seconds=30, clock=clock)
        cache.set("k", "v")
        clock.advance(29)
        assert cache.exists("k")
        clock.advance(2)
        assert not cache.exists("k")

    def test_non_positive_ttl_rejected(self, cache):
        with pytest.raises(ValueError):
            cache.set("k", "v", ttl_seconds=0)
        with pytest.raises(ValueError):
            TTLCache(default_ttl_seconds=-1)

    def test_delete_and_clear(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.delete("a")
        cache.delete("missing")
        assert cache.get("a") is None
        cache.clear()
        assert cache.size() == 0


class TestStaleReadsAndStats:
    def test_get_stale_returns_expired_value_without_evicting(self, cache, clock):
        cache.set("k", "old", ttl_seconds=5)
        clock.advance(10)
        stale = cache.get_stale("k")
        assert stale is not None
        assert stale.value == "old"
        assert stale.is_stale is True
        assert cache.size() == 1

    def test_get_stale_fresh_and_missing(self, cache):
        cache.set("k", "new")
        assert cache.get_stale("k").is_stale is False
        assert cache.get_stale("missing") is None

    def test_stats_count_hits_and_misses(self, cache):
        assert cache.stats().hit_rate is None
        cache.set("k", "v")
        cache.get("k")
        cache.get("k")
        cache.get("other")
        stats = cache.stats()
        assert (stats.size, stats.hits, stats.misses) == (1, 2, 1)
        assert stats.hit_rate == pytest.approx(2 / 3)
        assert stats.to_dict()["hits"] == 2

    def test_clear_resets_counters(self, cache):
        cache.get("k")
        cache.clear()
        assert cache.stats().misses == 0
