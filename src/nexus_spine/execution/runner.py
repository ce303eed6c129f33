"""
Multi-source enrichment runner.

Holds the process-wide collaborators (one cache, one breaker registry, one
content store) and runs adapters through :class:`BatchOrchestrator`.
Entities of one source are fetched sequentially; independent sources run
concurrently because each has its own breaker and cache key prefix.

Architecture:
    ::

        create_runner(settings)
            TTLCache ─┐
            CircuitBreakerRegistry ─┼──► EnrichmentRunner
            SqliteContentStore ─┘         ├── run(adapter)
                                          ├── run_many(adapters)  gather
                                          └── status()            health view

Tags:
    runner, enrichment, concurrency, health

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

from nexus_spine.core.cache import TTLCache
from nexus_spine.core.logging import get_logger
from nexus_spine.core.settings import NexusSettings
from nexus_spine.core.storage import ContentStore, SqliteContentStore
from nexus_spine.execution.batch import BatchSummary, Sleep, run_adapter
from nexus_spine.execution.circuit_breaker import CircuitBreakerRegistry
from nexus_spine.framework.sources.protocol import EnrichmentAdapter

logger = get_logger(__name__)


class EnrichmentRunner:
    """Runs enrichment adapters against shared cache, breakers and store."""

    def __init__(
        self,
        cache: TTLCache,
        breakers: CircuitBreakerRegistry,
        store: ContentStore,
        *,
        content_ttl_hours: int | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.cache = cache
        self.breakers = breakers
        self.store = store
        self._content_ttl_hours = content_ttl_hours
        self._sleep = sleep

    async def run(self, adapter: EnrichmentAdapter) -> BatchSummary:
        """Run one adapter over its full entity list."""
        return await run_adapter(
            adapter,
            cache=self.cache,
            breakers=self.breakers,
            store=self.store,
            content_ttl_hours=self._content_ttl_hours,
            sleep=self._sleep,
        )

    async def run_many(
        self, adapters: Sequence[EnrichmentAdapter]
    ) -> dict[str, BatchSummary | Exception]:
        """Run independent sources concurrently.

        A failure in one source (typically a ``StorageError`` from its
        upsert) is returned in place of its summary; the others finish.
        """
        logger.info("runner.start", sources=[adapter.name for adapter in adapters])
        outcomes = await asyncio.gather(
            *(self.run(adapter) for adapter in adapters),
            return_exceptions=True,
        )

        results: dict[str, BatchSummary | Exception] = {}
        for adapter, outcome in zip(adapters, outcomes, strict=True):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, Exception):
                logger.error(
                    "runner.source_failed",
                    source=adapter.name,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
            results[adapter.name] = outcome

        logger.info(
            "runner.complete",
            succeeded=sum(1 for r in results.values() if isinstance(r, BatchSummary)),
            failed=sum(1 for r in results.values() if isinstance(r, Exception)),
        )
        return results

    def status(self) -> dict[str, Any]:
        """Breaker health for every source seen so far, plus cache stats."""
        return {
            "breakers": [status.to_dict() for status in self.breakers.status()],
            "cache": self.cache.stats().to_dict(),
        }


def create_runner(settings: NexusSettings, *, store: ContentStore | None = None) -> EnrichmentRunner:
    """Build a runner with fresh process-wide collaborators from ``settings``."""
    if store is None:
        store = SqliteContentStore(
            settings.database_path,
            content_ttl_hours=settings.content_ttl_hours,
        )
    return EnrichmentRunner(
        cache=TTLCache(),
        breakers=CircuitBreakerRegistry(),
        store=store,
        content_ttl_hours=settings.content_ttl_hours,
    )


__all__ = ["EnrichmentRunner", "create_runner"]
