"""Adapter registry for registering and discovering enrichment sources.

Manifesto:
    A central registry lets the runner and CLI find adapters by source
    name (``"sec-edgar"``) without import-time coupling to every domain
    module.

Tags:
    nexus-spine, framework, registry, adapter-discovery, lookup

Doc-Types:
    api-reference
"""

from __future__ import annotations

import importlib
from collections.abc import Callable
from typing import TYPE_CHECKING

from nexus_spine.core.errors import UnknownSourceError
from nexus_spine.core.logging import get_logger

if TYPE_CHECKING:
    from nexus_spine.framework.sources.protocol import EnrichmentAdapter

logger = get_logger(__name__)

_BUILTIN_ADAPTER_MODULES = ("nexus_spine.domains.enrichment",)

_registry: dict[str, type[EnrichmentAdapter]] = {}
_loaded: bool = False


def register_adapter(name: str) -> Callable[[type[EnrichmentAdapter]], type[EnrichmentAdapter]]:
    """Decorator to register an adapter class under a source name."""

    def decorator(cls: type[EnrichmentAdapter]) -> type[EnrichmentAdapter]:
        if name in _registry and _registry[name] is not cls:
            raise ValueError(f"Adapter '{name}' is already registered")
        cls.source_name = name
        _registry[name] = cls
        logger.debug(
            "adapter_registered",
            name=name,
            cls=cls.__name__,
            description=getattr(cls, "description", ""),
        )
        return cls

    return decorator


def _ensure_loaded() -> None:
    """Import the built-in adapter modules once so they self-register.

    Modules imported before a ``clear_adapter_registry()`` do not run their
    decorators again, so their ``ADAPTERS`` are re-added here.
    """
    global _loaded
    if not _loaded:
        _loaded = True
        for module_name in _BUILTIN_ADAPTER_MODULES:
            module = importlib.import_module(module_name)
            for cls in getattr(module, "ADAPTERS", ()):
                _registry.setdefault(cls.source_name, cls)
        logger.debug("adapter_registry_loaded", registered=len(_registry))


def get_adapter_class(name: str) -> type[EnrichmentAdapter]:
    """Get an adapter class by source name.

    Raises:
        UnknownSourceError: If nothing is registered under ``name``.
    """
    _ensure_loaded()
    if name not in _registry:
        raise UnknownSourceError(name, available=sorted(_registry))
    return _registry[name]


def list_adapters() -> list[str]:
    """List all registered source names."""
    _ensure_loaded()
    return sorted(_registry.keys())


def clear_adapter_registry() -> None:
    """Clear registry (for testing)."""
    global _loaded
    _registry.clear()
    _loaded = False


__all__ = [
    "clear_adapter_registry",
    "get_adapter_class",
    "list_adapters",
    "register_adapter",
]
