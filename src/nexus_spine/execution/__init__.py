"""nexus-spine execution: the resilience layer around enrichment sources.

ARCHITECTURE
────────────
::

    EnrichmentRunner (one per process)
      ├── TTLCache                ─ shared, source-prefixed keys
      ├── CircuitBreakerRegistry  ─ one breaker per source name
      └── ContentStore            ─ one bulk upsert per batch
      │
      ▼
    BatchOrchestrator (one per run)
      cache → breaker.execute(fetch_one) → sleep(delay) → bulk_upsert
"""

from nexus_spine.execution.batch import BatchOrchestrator, BatchSummary, run_adapter
from nexus_spine.execution.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitBreakerStatus,
    CircuitState,
    CircuitStats,
)
from nexus_spine.execution.runner import EnrichmentRunner, create_runner

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitBreakerStatus",
    "CircuitState",
    "CircuitStats",
    # Batch
    "BatchOrchestrator",
    "BatchSummary",
    "run_adapter",
    # Runner
    "EnrichmentRunner",
    "create_runner",
]
