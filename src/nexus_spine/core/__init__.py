"""
Core primitives: errors, logging, settings, timestamps, cache, storage.
"""

from nexus_spine.core.cache import TTLCache, cache_key
from nexus_spine.core.errors import (
    ConfigError,
    NexusError,
    RateLimitError,
    SourceError,
    StorageError,
    TransientError,
)
from nexus_spine.core.logging import configure_logging, get_logger
from nexus_spine.core.settings import NexusSettings, get_settings
from nexus_spine.core.storage import (
    ContentItem,
    ContentMeta,
    ContentStore,
    InMemoryContentStore,
    SqliteContentStore,
)

__all__ = [
    # Cache
    "TTLCache",
    "cache_key",
    # Errors
    "NexusError",
    "TransientError",
    "RateLimitError",
    "SourceError",
    "ConfigError",
    "StorageError",
    # Logging
    "configure_logging",
    "get_logger",
    # Settings
    "NexusSettings",
    "get_settings",
    # Storage
    "ContentItem",
    "ContentMeta",
    "ContentStore",
    "InMemoryContentStore",
    "SqliteContentStore",
]
