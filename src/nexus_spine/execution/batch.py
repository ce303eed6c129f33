"""
Batch orchestrator: drives one source across its whole entity list.

For each entity, in the configured order, the orchestrator checks the TTL
cache, fetches through the source's circuit breaker on a miss, waits the
source's delay, and collects successes and per-entity errors. After the
loop it hands every result to the content store in one ``bulk_upsert``
and returns a :class:`BatchSummary`.

Manifesto:
    - **Adapter-agnostic:** Takes a fetch function, an entity list and
      config. Knows nothing about SEC filings or GitHub orgs
    - **Partial-failure tolerant:** One bad entity is an error entry, not
      an aborted batch
    - **Backpressure on rate limits:** A ``RateLimitError`` ends the batch
      early for sources configured with ``abort_on_rate_limit``
    - **Predictable pacing:** The delay follows every attempt, cache hits
      included
    - **Sequential:** One fetch at a time per source; concurrency lives
      *between* sources (see :mod:`nexus_spine.execution.runner`)

Architecture:
    ::

        for entity in entities:
            cache.get(key) ── hit ──► results += value
                │ miss
                ▼
            breaker.execute(fetch_one(entity), fallback=None)
                ├─ value     → cache.set(key, value, ttl); results += value
                ├─ None      → skipped (absent or short-circuited)
                └─ raises    → errors += "{source}: failed to fetch ...: msg"
                                 RateLimitError + abort_on_rate_limit → break
            await sleep(delay)
        if results: stored = store.bulk_upsert(collection, items, meta)

Examples:
    >>> orchestrator = BatchOrchestrator.for_adapter(
    ...     adapter, cache=cache, breakers=registry, store=store,
    ... )
    >>> summary = await orchestrator.run(adapter.entities(), adapter.fetch_one, 1.5)
    >>> summary.fetched, summary.stored, summary.errors

Tags:
    batch, orchestrator, rate-limiting, partial-failure, backpressure,
    circuit-breaker, ttl-cache

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from nexus_spine.core.cache import TTLCache, cache_key
from nexus_spine.core.errors import StorageError, is_rate_limited
from nexus_spine.core.logging import LogContext, get_logger
from nexus_spine.core.storage import ContentItem, ContentMeta, ContentStore
from nexus_spine.core.timestamps import utc_now
from nexus_spine.execution.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry
from nexus_spine.framework.sources.protocol import DEFAULT_COLLECTION

if TYPE_CHECKING:
    from nexus_spine.framework.sources.protocol import EnrichmentAdapter

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class BatchSummary:
    """Outcome of one batch run.

    ``fetched`` counts entities with a result (cache hit or live fetch).
    ``skipped`` counts entities the upstream reported absent or the breaker
    short-circuited; neither is an error. Unless ``aborted``,
    ``fetched + len(errors) + skipped == total``.
    """

    source: str
    total: int
    fetched: int = 0
    stored: int = 0
    errors: list[str] = field(default_factory=list)
    skipped: int = 0
    cache_hits: int = 0
    aborted: bool = False
    batch_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None

    @property
    def attempted(self) -> int:
        """Entities that reached an outcome (result, error or skip)."""
        return self.fetched + len(self.errors) + self.skipped

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Serialise for logging / CLI output."""
        return {
            "batch_id": self.batch_id,
            "source": self.source,
            "total": self.total,
            "attempted": self.attempted,
            "fetched": self.fetched,
            "stored": self.stored,
            "skipped": self.skipped,
            "cache_hits": self.cache_hits,
            "aborted": self.aborted,
            "errors": list(self.errors),
            "duration_seconds": self.duration_seconds,
        }


def _default_item(key: str, result: Any) -> ContentItem:
    payload = result.payload() if hasattr(result, "payload") else result
    return ContentItem(
        content_key=key,
        section=None,
        data=payload if isinstance(payload, dict) else {"value": payload},
    )


class BatchOrchestrator:
    """Runs one source's entities through cache, breaker, pacing and store.

    Parameters
    ----------
    source : str
        Source name, used in error entries and log context.
    cache : TTLCache
        Shared process-wide cache. Keys must be source-prefixed.
    breaker : CircuitBreaker
        This source's breaker (from the shared registry).
    store : ContentStore
        Receives one ``bulk_upsert`` per run when anything was fetched.
    cache_ttl_seconds : float, optional
        TTL for newly fetched results (cache default when omitted).
    key_for : callable, optional
        Entity → cache key. Defaults to ``cache_key(source, str(entity))``.
    describe : callable, optional
        Entity → human-readable identity for error entries.
    to_item : callable, optional
        Result → :class:`ContentItem`. By default the cache key becomes the
        content key and the result (or its ``payload()``) the data.
    abort_on_rate_limit : bool
        Stop the loop on the first ``RateLimitError``.
    sleep : callable
        Awaitable delay function (``asyncio.sleep``; tests inject a recorder).
    """

    def __init__(
        self,
        source: str,
        *,
        cache: TTLCache,
        breaker: CircuitBreaker,
        store: ContentStore,
        cache_ttl_seconds: float | None = None,
        key_for: Callable[[Any], str] | None = None,
        describe: Callable[[Any], str] | None = None,
        to_item: Callable[[Any], ContentItem] | None = None,
        collection: str = DEFAULT_COLLECTION,
        meta: ContentMeta | None = None,
        abort_on_rate_limit: bool = False,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.source = source
        self._cache = cache
        self._breaker = breaker
        self._store = store
        self._cache_ttl = cache_ttl_seconds
        self._key_for = key_for or (lambda entity: cache_key(source, str(entity)))
        self._describe = describe or str
        self._to_item = to_item
        self._collection = collection
        self._meta = meta or ContentMeta()
        self._abort_on_rate_limit = abort_on_rate_limit
        self._sleep = sleep

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def abort_on_rate_limit(self) -> bool:
        return self._abort_on_rate_limit

    @classmethod
    def for_adapter(
        cls,
        adapter: EnrichmentAdapter,
        *,
        cache: TTLCache,
        breakers: CircuitBreakerRegistry,
        store: ContentStore,
        content_ttl_hours: int | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> BatchOrchestrator:
        """Wire an orchestrator from an adapter's :class:`SourceConfig`."""
        config = adapter.config
        breaker = breakers.get_or_create(
            config.name,
            failure_threshold=config.breaker.failure_threshold,
            reset_timeout=config.breaker.reset_timeout,
        )
        expires_at = None
        if content_ttl_hours is not None:
            expires_at = utc_now() + timedelta(hours=content_ttl_hours)

        def to_item(result: Any) -> ContentItem:
            return ContentItem(
                content_key=adapter.content_key(result),
                section=config.section,
                data=result.payload(),
            )

        return cls(
            config.name,
            cache=cache,
            breaker=breaker,
            store=store,
            cache_ttl_seconds=config.cache_ttl_seconds,
            key_for=adapter.cache_key,
            describe=adapter.describe,
            to_item=to_item,
            collection=config.collection,
            meta=ContentMeta(source_type="api", source_url=config.source_url, expires_at=expires_at),
            abort_on_rate_limit=config.abort_on_rate_limit,
            sleep=sleep,
        )

    async def run(
        self,
        entities: Sequence[Any],
        fetch_one: Callable[[Any], Awaitable[Any]],
        delay_seconds: float,
    ) -> BatchSummary:
        """Process ``entities`` in order and persist what was obtained.

        Raises:
            StorageError: If the final bulk upsert fails. Per-entity fetch
                errors never propagate; they are collected in ``errors``.
        """
        summary = BatchSummary(source=self.source, total=len(entities))
        results: list[tuple[str, Any]] = []

        async with LogContext(source=self.source, batch_id=summary.batch_id):
            logger.info(
                "batch.start",
                entities=summary.total,
                delay_seconds=delay_seconds,
                breaker_state=self._breaker.state.value,
            )

            for entity in entities:
                key = self._key_for(entity)

                cached = self._cache.get(key)
                if cached is not None:
                    results.append((key, cached))
                    summary.cache_hits += 1
                    logger.debug("batch.cache_hit", key=key)
                else:
                    try:
                        value = await self._breaker.execute(
                            lambda entity=entity: fetch_one(entity), fallback=None
                        )
                    except Exception as e:
                        message = f"{self.source}: failed to fetch {self._describe(entity)}: {e}"
                        summary.errors.append(message)
                        logger.error(
                            "batch.entity_failed",
                            entity=self._describe(entity),
                            error=str(e),
                            error_type=type(e).__name__,
                        )
                        if self._abort_on_rate_limit and is_rate_limited(e):
                            summary.aborted = True
                            logger.warning(
                                "batch.aborted",
                                reason="rate_limited",
                                fetched=len(results),
                                unattempted=summary.total - summary.attempted,
                            )
                            break
                    else:
                        if value is None:
                            summary.skipped += 1
                            logger.debug(
                                "batch.entity_skipped",
                                entity=self._describe(entity),
                                breaker_state=self._breaker.state.value,
                            )
                        else:
                            self._cache.set(key, value, ttl_seconds=self._cache_ttl)
                            results.append((key, value))

                summary.fetched = len(results)
                await self._sleep(delay_seconds)

            summary.fetched = len(results)

            if results:
                summary.stored = await self._persist(results, summary)

            summary.completed_at = utc_now()
            logger.info(
                "batch.complete",
                fetched=summary.fetched,
                stored=summary.stored,
                errors=len(summary.errors),
                skipped=summary.skipped,
                cache_hits=summary.cache_hits,
                aborted=summary.aborted,
                duration_seconds=summary.duration_seconds,
            )

        return summary

    async def _persist(self, results: list[tuple[str, Any]], summary: BatchSummary) -> int:
        items = [
            self._to_item(result) if self._to_item else _default_item(key, result)
            for key, result in results
        ]
        try:
            stored = await self._store.bulk_upsert(self._collection, items, self._meta)
        except Exception as e:
            logger.error(
                "batch.store_failed",
                collection=self._collection,
                items=len(items),
                error=str(e),
            )
            if isinstance(e, StorageError):
                raise
            raise StorageError(
                f"{self.source}: failed to store {len(items)} items: {e}", cause=e
            ).with_context(source_name=self.source, fetched=summary.fetched) from e

        logger.info("batch.stored", collection=self._collection, stored=stored)
        return stored


async def run_adapter(
    adapter: EnrichmentAdapter,
    *,
    cache: TTLCache,
    breakers: CircuitBreakerRegistry,
    store: ContentStore,
    content_ttl_hours: int | None = None,
    sleep: Sleep = asyncio.sleep,
) -> BatchSummary:
    """Run ``adapter`` over its full entity list with its own delay."""
    orchestrator = BatchOrchestrator.for_adapter(
        adapter,
        cache=cache,
        breakers=breakers,
        store=store,
        content_ttl_hours=content_ttl_hours,
        sleep=sleep,
    )
    return await orchestrator.run(
        adapter.entities(), adapter.fetch_one, adapter.config.delay_seconds
    )


__all__ = ["BatchOrchestrator", "BatchSummary", "run_adapter"]
