"""
Enrichment source package.

Provides the adapter interface and the shared HTTP client.
"""

from nexus_spine.framework.registry import (
    clear_adapter_registry,
    get_adapter_class,
    list_adapters,
    register_adapter,
)
from nexus_spine.framework.sources.http import HttpJsonClient
from nexus_spine.framework.sources.protocol import (
    DEFAULT_COLLECTION,
    BreakerConfig,
    EnrichmentAdapter,
    EnrichmentResult,
    SourceConfig,
    slugify,
)

__all__ = [
    # Types
    "BreakerConfig",
    "SourceConfig",
    "EnrichmentResult",
    "DEFAULT_COLLECTION",
    "slugify",
    # Base class
    "EnrichmentAdapter",
    # HTTP
    "HttpJsonClient",
    # Registry
    "register_adapter",
    "get_adapter_class",
    "list_adapters",
    "clear_adapter_registry",
]
