"""
Built-in enrichment sources for the space-industry content store.

Importing this package registers every adapter below with the adapter
registry.

| source            | upstream               | delay | abort on rate limit |
|-------------------|------------------------|-------|---------------------|
| sec-edgar         | data.sec.gov           | 1.5 s | no                  |
| github-activity   | api.github.com         | 2.0 s | yes                 |
| uspto-patents     | api.patentsview.org    | 2.0 s | no                  |
| fcc-licenses      | data.fcc.gov           | 1.5 s | no                  |
"""

from __future__ import annotations

from nexus_spine.core.settings import NexusSettings
from nexus_spine.domains.enrichment.fcc_licenses import FccLicensesAdapter
from nexus_spine.domains.enrichment.github_activity import GitHubActivityAdapter
from nexus_spine.domains.enrichment.sec_edgar import SecEdgarAdapter
from nexus_spine.domains.enrichment.uspto_patents import UsptoPatentsAdapter
from nexus_spine.framework.registry import get_adapter_class
from nexus_spine.framework.sources.http import HttpJsonClient
from nexus_spine.framework.sources.protocol import EnrichmentAdapter

ADAPTERS = (
    SecEdgarAdapter,
    GitHubActivityAdapter,
    UsptoPatentsAdapter,
    FccLicensesAdapter,
)


def build_adapter(
    name: str,
    settings: NexusSettings,
    client: HttpJsonClient | None = None,
) -> EnrichmentAdapter:
    """Construct the adapter registered as ``name`` with settings overrides applied.

    Raises:
        UnknownSourceError: If no adapter is registered under ``name``.
    """
    cls = get_adapter_class(name)
    config = cls.default_config.with_overrides(settings.source_settings(name))
    return cls(config, client=client, settings=settings)


__all__ = [
    "ADAPTERS",
    "FccLicensesAdapter",
    "GitHubActivityAdapter",
    "SecEdgarAdapter",
    "UsptoPatentsAdapter",
    "build_adapter",
]
