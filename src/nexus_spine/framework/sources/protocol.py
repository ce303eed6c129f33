"""
Enrichment adapter interface.

An adapter is a small configuration object: it knows its entity list, how
to fetch one entity, and how to map the response into a canonical record.
It knows nothing about batching, caching or circuit breaking; the
orchestrator applies those uniformly to every adapter.

Manifesto:
    - **Adapters are configuration, not loops:** No adapter contains a batch
      loop, a cache or a breaker
    - **Absent is not an error:** An unknown entity (404) is returned as
      ``None``, never raised
    - **Typed failures:** Adapters raise :mod:`nexus_spine.core.errors`
      types, so the orchestrator can tell a rate limit from a bad payload

Architecture:
    ::

        SourceConfig ── name, delay, cache TTL, timeout, BreakerConfig,
             │          abort_on_rate_limit, collection/section
             ▼
        EnrichmentAdapter[E, T] (ABC)
          entities()        → Sequence[E]   fixed order
          entity_key(e)     → str           cache / content qualifier
          describe(e)       → str           used in error strings
          fetch_one(e)      → EnrichmentResult[T] | None
          content_key(r)    → str           "{source}:{slug}"

Examples:
    >>> @register_adapter("launch-sites")
    ... class LaunchSites(EnrichmentAdapter[str, SiteSummary]):
    ...     default_config = SourceConfig(name="launch-sites", delay_seconds=1.0)
    ...     def entities(self): return ["Vandenberg", "Wallops"]
    ...     def entity_key(self, entity): return entity
    ...     async def fetch_one(self, entity): ...

Tags:
    adapter, protocol, enrichment, source, interface

Doc-Types:
    - API Reference
    - Extension Guide
"""

from __future__ import annotations

import dataclasses
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

from nexus_spine.core.cache import DEFAULT_TTL_SECONDS, cache_key
from nexus_spine.core.timestamps import to_iso8601, utc_now

if TYPE_CHECKING:
    from nexus_spine.core.settings import NexusSettings, SourceSettings
    from nexus_spine.framework.sources.http import HttpJsonClient

E = TypeVar("E")
T = TypeVar("T")

DEFAULT_COLLECTION = "company-enrichment"


def slugify(value: str) -> str:
    """Lowercase and hyphenate whitespace: ``"Rocket Lab"`` → ``"rocket-lab"``."""
    return re.sub(r"\s+", "-", value.strip().lower())


@dataclass(frozen=True)
class BreakerConfig:
    """Circuit breaker settings for one source."""

    failure_threshold: int = 3
    reset_timeout: float = 300.0


@dataclass(frozen=True)
class SourceConfig:
    """Static configuration of one enrichment source.

    Attributes:
        name: Source name; also the breaker name and cache key prefix
        delay_seconds: Pause after every entity (rate limiting)
        cache_ttl_seconds: How long a fetched result stays cached
        request_timeout: Per-request timeout in seconds
        breaker: Circuit breaker settings
        abort_on_rate_limit: End the batch early on a ``RateLimitError``
        collection: Content store collection the results land in
        section: Content store section for this source
        source_url: Provenance URL recorded with stored content
    """

    name: str
    delay_seconds: float = 1.0
    cache_ttl_seconds: float = DEFAULT_TTL_SECONDS
    request_timeout: float = 15.0
    breaker: BreakerConfig = field(default_factory=BreakerConfig)
    abort_on_rate_limit: bool = False
    collection: str = DEFAULT_COLLECTION
    section: str | None = None
    source_url: str | None = None

    def with_overrides(self, overrides: SourceSettings) -> SourceConfig:
        """Return a copy with every non-``None`` override applied."""
        changes: dict[str, Any] = {}
        for attr in ("delay_seconds", "cache_ttl_seconds", "request_timeout", "abort_on_rate_limit"):
            value = getattr(overrides, attr)
            if value is not None:
                changes[attr] = value

        breaker_changes: dict[str, Any] = {}
        if overrides.failure_threshold is not None:
            breaker_changes["failure_threshold"] = overrides.failure_threshold
        if overrides.reset_timeout_seconds is not None:
            breaker_changes["reset_timeout"] = overrides.reset_timeout_seconds
        if breaker_changes:
            changes["breaker"] = dataclasses.replace(self.breaker, **breaker_changes)

        if not changes:
            return self
        return dataclasses.replace(self, **changes)


@dataclass
class EnrichmentResult(Generic[T]):
    """One fully-mapped record from an adapter, stamped with its fetch time."""

    source: str
    entity_key: str
    record: T
    fetched_at: datetime = field(default_factory=utc_now)

    def payload(self) -> dict[str, Any]:
        """JSON-ready content: the record's fields plus ``fetchedAt``."""
        if dataclasses.is_dataclass(self.record) and not isinstance(self.record, type):
            data = dataclasses.asdict(self.record)
        elif isinstance(self.record, dict):
            data = dict(self.record)
        else:
            data = {"value": self.record}
        data["fetchedAt"] = to_iso8601(self.fetched_at)
        return data


class EnrichmentAdapter(ABC, Generic[E, T]):
    """Base class for enrichment sources.

    Subclasses set ``default_config`` and implement ``entities``,
    ``entity_key`` and ``fetch_one``. ``build_adapter`` applies settings
    overrides to ``default_config`` before construction.
    """

    default_config: ClassVar[SourceConfig]
    description: ClassVar[str] = ""
    source_name: ClassVar[str] = ""  # set by @register_adapter

    def __init__(
        self,
        config: SourceConfig | None = None,
        *,
        client: HttpJsonClient | None = None,
        settings: NexusSettings | None = None,
    ):
        self.config = config or self.default_config
        self._client = client
        self._settings = settings

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def settings(self) -> NexusSettings:
        if self._settings is None:
            from nexus_spine.core.settings import get_settings

            self._settings = get_settings()
        return self._settings

    @property
    def client(self) -> HttpJsonClient:
        """HTTP client, created on first use with this source's timeout."""
        if self._client is None:
            from nexus_spine.framework.sources.http import HttpJsonClient

            self._client = HttpJsonClient(
                timeout=self.config.request_timeout,
                user_agent=self.settings.user_agent,
            )
        return self._client

    @abstractmethod
    def entities(self) -> Sequence[E]:
        """Static entity list, processed in this order."""

    @abstractmethod
    def entity_key(self, entity: E) -> str:
        """Stable qualifier for ``entity`` (ticker, org, assignee, ...)."""

    def cache_key(self, entity: E) -> str:
        return cache_key(self.name, self.entity_key(entity))

    def describe(self, entity: E) -> str:
        """Human-readable identity used in batch error entries."""
        return self.entity_key(entity)

    @abstractmethod
    async def fetch_one(self, entity: E) -> EnrichmentResult[T] | None:
        """Fetch and map one entity; ``None`` when the upstream has no such entity."""

    def content_key(self, result: EnrichmentResult[T]) -> str:
        return f"{self.name}:{slugify(result.entity_key)}"

    def result(self, entity: E, record: T) -> EnrichmentResult[T]:
        """Wrap a mapped record for this source."""
        return EnrichmentResult(source=self.name, entity_key=self.entity_key(entity), record=record)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, entities={len(self.entities())})"


__all__ = [
    "DEFAULT_COLLECTION",
    "BreakerConfig",
    "EnrichmentAdapter",
    "EnrichmentResult",
    "SourceConfig",
    "slugify",
]
