"""
Tests for BatchOrchestrator.

Covers partial-failure tolerance, early abort on a source-wide rate limit,
idempotent re-runs through the cache, pacing, breaker interplay and store
failures.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

import pytest

from nexus_spine.core.cache import cache_key
from nexus_spine.core.errors import NetworkError, ParseError, RateLimitError, StorageError
from nexus_spine.core.storage import ContentItem, ContentMeta
from nexus_spine.execution.batch import BatchOrchestrator, BatchSummary, run_adapter
from nexus_spine.execution.circuit_breaker import CircuitState
from nexus_spine.framework.sources.protocol import (
    BreakerConfig,
    EnrichmentAdapter,
    SourceConfig,
)

ENTITIES = ["alpha", "bravo", "charlie", "delta", "echo"]


class FakeFetch:
    """Scripted ``fetch_one``: returns a dict per entity unless told otherwise."""

    def __init__(self, errors: dict[str, Exception] | None = None, absent: set[str] | None = None):
        self.errors = errors or {}
        self.absent = absent or set()
        self.calls: list[str] = []

    async def __call__(self, entity: str):
        self.calls.append(entity)
        if entity in self.errors:
            raise self.errors[entity]
        if entity in self.absent:
            return None
        return {"name": entity}


class FailingStore:
    def __init__(self, error: Exception):
        self.error = error
        self.calls = 0

    async def bulk_upsert(self, collection, items, meta):
        self.calls += 1
        raise self.error


@pytest.fixture
def make_orchestrator(cache, breakers, store, sleeps):
    def _make(source: str = "test-source", **kwargs) -> BatchOrchestrator:
        kwargs.setdefault("store", store)
        return BatchOrchestrator(
            source,
            cache=cache,
            breaker=breakers.get_or_create(source),
            sleep=sleeps,
            **kwargs,
        )

    return _make


# =============================================================================
# Partial failure
# =============================================================================


class TestPartialFailure:
    """One bad entity becomes an error entry, not an aborted batch."""

    @pytest.mark.asyncio
    async def test_batch_partial_failure(self, make_orchestrator, store):
        fetch = FakeFetch(errors={"charlie": ParseError("unexpected payload")})
        summary = await make_orchestrator().run(ENTITIES, fetch, 1.0)

        assert fetch.calls == ENTITIES
        assert summary.fetched == 4
        assert summary.errors == ["test-source: failed to fetch charlie: unexpected payload"]
        assert summary.aborted is False
        assert summary.fetched == summary.total - len(summary.errors)

        assert len(store.upsert_calls) == 1
        _, items, _ = store.upsert_calls[0]
        assert [item.data["name"] for item in items] == ["alpha", "bravo", "delta", "echo"]
        assert summary.stored == 4

    @pytest.mark.asyncio
    async def test_non_rate_limit_errors_never_abort(self, make_orchestrator):
        fetch = FakeFetch(errors={"alpha": NetworkError("reset"), "bravo": NetworkError("reset")})
        summary = await make_orchestrator(abort_on_rate_limit=True).run(ENTITIES, fetch, 0)
        assert len(fetch.calls) == 5
        assert len(summary.errors) == 2
        assert summary.fetched == 3

    @pytest.mark.asyncio
    async def test_error_entry_uses_describe(self, make_orchestrator):
        fetch = FakeFetch(errors={"alpha": NetworkError("boom")})
        orchestrator = make_orchestrator(describe=lambda e: f"entity {e.upper()}")
        summary = await orchestrator.run(["alpha"], fetch, 0)
        assert summary.errors == ["test-source: failed to fetch entity ALPHA: boom"]

    @pytest.mark.asyncio
    async def test_all_failures_skip_store(self, make_orchestrator, store):
        fetch = FakeFetch(errors={e: NetworkError("down") for e in ENTITIES})
        summary = await make_orchestrator().run(ENTITIES, fetch, 0)
        assert summary.fetched == 0
        assert summary.stored == 0
        assert store.upsert_calls == []

    @pytest.mark.asyncio
    async def test_empty_entity_list(self, make_orchestrator, store, sleeps):
        summary = await make_orchestrator().run([], FakeFetch(), 1.0)
        assert summary.total == 0
        assert summary.fetched == 0
        assert sleeps.calls == []
        assert store.upsert_calls == []
        assert summary.completed_at is not None


# =============================================================================
# Rate-limit abort
# =============================================================================


class TestRateLimitAbort:
    @pytest.mark.asyncio
    async def test_batch_aborts_on_rate_limit(self, make_orchestrator, store):
        fetch = FakeFetch(errors={"bravo": RateLimitError("Rate limit exceeded, resets at 1700000000")})
        summary = await make_orchestrator(abort_on_rate_limit=True).run(ENTITIES, fetch, 2.0)

        assert fetch.calls == ["alpha", "bravo"]
        assert len(summary.errors) == 1
        assert "bravo" in summary.errors[0]
        assert summary.aborted is True
        assert summary.fetched == 1
        assert summary.fetched + len(summary.errors) < summary.total

        # Partial results are still upserted
        assert len(store.upsert_calls) == 1
        assert [i.data["name"] for i in store.upsert_calls[0][1]] == ["alpha"]

    @pytest.mark.asyncio
    async def test_abort_does_not_sleep_after_breaking(self, make_orchestrator, sleeps):
        fetch = FakeFetch(errors={"bravo": RateLimitError()})
        await make_orchestrator(abort_on_rate_limit=True).run(ENTITIES, fetch, 2.0)
        assert sleeps.calls == [2.0]

    @pytest.mark.asyncio
    async def test_abort_on_first_entity_stores_nothing(self, make_orchestrator, store):
        fetch = FakeFetch(errors={"alpha": RateLimitError()})
        summary = await make_orchestrator(abort_on_rate_limit=True).run(ENTITIES, fetch, 0)
        assert summary.aborted is True
        assert summary.fetched == 0
        assert store.upsert_calls == []

    @pytest.mark.asyncio
    async def test_rate_limit_is_ordinary_error_when_abort_disabled(self, make_orchestrator):
        fetch = FakeFetch(errors={"bravo": RateLimitError()})
        summary = await make_orchestrator(abort_on_rate_limit=False).run(ENTITIES, fetch, 0)
        assert len(fetch.calls) == 5
        assert summary.aborted is False
        assert summary.fetched == 4

    @pytest.mark.asyncio
    async def test_rate_limit_message_text_alone_does_not_abort(self, make_orchestrator):
        fetch = FakeFetch(errors={"bravo": NetworkError("rate limit exceeded")})
        summary = await make_orchestrator(abort_on_rate_limit=True).run(ENTITIES, fetch, 0)
        assert summary.aborted is False
        assert len(fetch.calls) == 5


# =============================================================================
# Cache
# =============================================================================


class TestCacheReuse:
    @pytest.mark.asyncio
    async def test_idempotent_rerun_uses_cache(self, make_orchestrator, store):
        fetch = FakeFetch()
        orchestrator = make_orchestrator()

        first = await orchestrator.run(ENTITIES, fetch, 1.0)
        assert len(fetch.calls) == 5

        second = await orchestrator.run(ENTITIES, fetch, 1.0)
        assert len(fetch.calls) == 5
        assert second.fetched == first.fetched == 5
        assert second.cache_hits == 5
        assert first.batch_id != second.batch_id

        # Both runs upsert the same keys; no duplicate rows
        assert len(store.upsert_calls) == 2
        assert len(store.rows) == 5
        assert all(row.version == 2 for row in store.rows.values())

    @pytest.mark.asyncio
    async def test_results_cached_with_source_ttl(self, make_orchestrator, cache, clock):
        orchestrator = make_orchestrator(cache_ttl_seconds=60)
        await orchestrator.run(["alpha"], FakeFetch(), 0)
        key = cache_key("test-source", "alpha")
        assert cache.get(key) == {"name": "alpha"}
        clock.advance(60)
        assert cache.get(key) is None

    @pytest.mark.asyncio
    async def test_cache_keys_are_source_prefixed(self, make_orchestrator, cache):
        await make_orchestrator("source-a").run(["Alpha"], FakeFetch(), 0)
        fetch_b = FakeFetch()
        await make_orchestrator("source-b").run(["Alpha"], fetch_b, 0)
        assert fetch_b.calls == ["Alpha"]
        assert cache.exists("source-a:alpha")
        assert cache.exists("source-b:alpha")

    @pytest.mark.asyncio
    async def test_absent_results_are_not_cached(self, make_orchestrator, cache):
        fetch = FakeFetch(absent={"alpha"})
        orchestrator = make_orchestrator()
        first = await orchestrator.run(["alpha"], fetch, 0)
        assert first.skipped == 1
        assert first.fetched == 0
        await orchestrator.run(["alpha"], fetch, 0)
        assert fetch.calls == ["alpha", "alpha"]


# =============================================================================
# Pacing
# =============================================================================


class TestPacing:
    @pytest.mark.asyncio
    async def test_delay_after_every_attempt(self, make_orchestrator, cache, sleeps, clock):
        # Warm two entities so the run mixes hits, misses and a failure
        cache.set(cache_key("test-source", "alpha"), {"name": "alpha"})
        cache.set(cache_key("test-source", "delta"), {"name": "delta"})
        fetch = FakeFetch(errors={"charlie": NetworkError("down")})

        start = clock()
        summary = await make_orchestrator().run(ENTITIES, fetch, 1.5)

        assert sleeps.calls == [1.5] * 5
        assert clock() - start >= (len(ENTITIES) - 1) * 1.5
        assert summary.cache_hits == 2
        assert fetch.calls == ["bravo", "charlie", "echo"]

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_real_sleep_pacing(self, cache, breakers, store):
        orchestrator = BatchOrchestrator(
            "paced", cache=cache, breaker=breakers.get_or_create("paced"), store=store
        )
        delay = 0.02
        started = time.monotonic()
        await orchestrator.run(ENTITIES[:4], FakeFetch(), delay)
        assert time.monotonic() - started >= 3 * delay


# =============================================================================
# Circuit breaker interplay
# =============================================================================


class TestBreakerInterplay:
    @pytest.mark.asyncio
    async def test_open_breaker_skips_without_errors(self, make_orchestrator, breakers):
        fetch = FakeFetch(errors={e: NetworkError("down") for e in ENTITIES[:3]})
        summary = await make_orchestrator().run(ENTITIES, fetch, 0)

        # Three failures open the breaker; the last two are short-circuited
        assert fetch.calls == ENTITIES[:3]
        assert len(summary.errors) == 3
        assert summary.skipped == 2
        assert summary.fetched + len(summary.errors) + summary.skipped == summary.total
        assert breakers.get("test-source").state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_breaker_recovers_on_later_run(self, make_orchestrator, breakers, clock):
        failing = FakeFetch(errors={e: NetworkError("down") for e in ENTITIES})
        orchestrator = make_orchestrator()
        await orchestrator.run(ENTITIES[:3], failing, 0)
        assert breakers.get("test-source").state == CircuitState.OPEN

        clock.advance(300)
        summary = await orchestrator.run(ENTITIES, FakeFetch(), 0)
        assert summary.fetched == 5
        assert breakers.get("test-source").state == CircuitState.CLOSED


# =============================================================================
# Store
# =============================================================================


class TestStore:
    @pytest.mark.asyncio
    async def test_store_receives_collection_and_meta(self, make_orchestrator, store):
        meta = ContentMeta(source_url="https://example.test/")
        orchestrator = make_orchestrator(collection="space-companies", meta=meta)
        await orchestrator.run(["alpha"], FakeFetch(), 0)

        collection, items, got_meta = store.upsert_calls[0]
        assert collection == "space-companies"
        assert got_meta is meta
        assert items == [ContentItem(content_key="test-source:alpha", section=None, data={"name": "alpha"})]

    @pytest.mark.asyncio
    async def test_custom_to_item(self, make_orchestrator, store):
        orchestrator = make_orchestrator(
            to_item=lambda r: ContentItem(content_key=f"custom:{r['name']}", section="s", data=r)
        )
        await orchestrator.run(["alpha"], FakeFetch(), 0)
        assert store.upsert_calls[0][1][0].content_key == "custom:alpha"

    @pytest.mark.asyncio
    async def test_store_failure_wrapped_in_storage_error(self, make_orchestrator):
        failing = FailingStore(RuntimeError("disk full"))
        with pytest.raises(StorageError) as exc_info:
            await make_orchestrator(store=failing).run(ENTITIES, FakeFetch(), 0)
        assert failing.calls == 1
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert "disk full" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_storage_error_propagates_unchanged(self, make_orchestrator):
        original = StorageError("constraint failed")
        with pytest.raises(StorageError) as exc_info:
            await make_orchestrator(store=FailingStore(original)).run(["alpha"], FakeFetch(), 0)
        assert exc_info.value is original


# =============================================================================
# Summary
# =============================================================================


class TestBatchSummary:
    def test_to_dict(self):
        summary = BatchSummary(source="sec-edgar", total=3, fetched=2, errors=["x"])
        data = summary.to_dict()
        assert data["source"] == "sec-edgar"
        assert data["attempted"] == 3
        assert data["errors"] == ["x"]
        assert data["duration_seconds"] is None
        assert len(data["batch_id"]) == 12


# =============================================================================
# Adapter wiring
# =============================================================================


@dataclass
class Launch:
    site: str


class LaunchSitesAdapter(EnrichmentAdapter[str, Launch]):
    default_config = SourceConfig(
        name="launch-sites",
        delay_seconds=0.5,
        cache_ttl_seconds=120,
        breaker=BreakerConfig(failure_threshold=2, reset_timeout=60),
        abort_on_rate_limit=True,
        section="sites",
        source_url="https://sites.example/",
    )

    def __init__(self, *args, rate_limit_on: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.rate_limit_on = rate_limit_on

    def entities(self):
        return ["Vandenberg", "Cape Canaveral", "Wallops"]

    def entity_key(self, entity):
        return entity

    async def fetch_one(self, entity):
        if entity == self.rate_limit_on:
            raise RateLimitError()
        return self.result(entity, Launch(site=entity))


class TestForAdapter:
    @pytest.mark.asyncio
    async def test_run_adapter_uses_adapter_config(self, cache, breakers, store, sleeps):
        adapter = LaunchSitesAdapter(settings=None)
        summary = await run_adapter(
            adapter, cache=cache, breakers=breakers, store=store, content_ttl_hours=24, sleep=sleeps
        )

        assert summary.source == "launch-sites"
        assert summary.fetched == 3
        assert sleeps.calls == [0.5, 0.5, 0.5]

        breaker = breakers.get("launch-sites")
        assert breaker.failure_threshold == 2
        assert breaker.reset_timeout == 60

        collection, items, meta = store.upsert_calls[0]
        assert collection == "company-enrichment"
        assert [i.content_key for i in items] == [
            "launch-sites:vandenberg",
            "launch-sites:cape-canaveral",
            "launch-sites:wallops",
        ]
        assert items[0].section == "sites"
        assert items[0].data["site"] == "Vandenberg"
        assert "fetchedAt" in items[0].data
        assert meta.source_url == "https://sites.example/"
        assert meta.expires_at is not None

        assert cache.exists("launch-sites:cape canaveral")

    @pytest.mark.asyncio
    async def test_adapter_abort_flag_is_honored(self, cache, breakers, store, sleeps):
        adapter = LaunchSitesAdapter(rate_limit_on="Cape Canaveral")
        summary = await run_adapter(adapter, cache=cache, breakers=breakers, store=store, sleep=sleeps)
        assert summary.aborted is True
        assert summary.fetched == 1
        assert store.upsert_calls[0][2].expires_at is None

    def test_for_adapter_exposes_breaker_and_flag(self, cache, breakers, store):
        orchestrator = BatchOrchestrator.for_adapter(
            LaunchSitesAdapter(), cache=cache, breakers=breakers, store=store
        )
        assert orchestrator.abort_on_rate_limit is True
        assert orchestrator.breaker is breakers.get("launch-sites")
