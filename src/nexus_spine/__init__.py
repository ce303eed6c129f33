"""
nexus-spine - resilient data enrichment for the space-industry dashboard.

Packages:
- nexus_spine.core: errors, logging, settings, cache, content store
- nexus_spine.execution: circuit breaker, batch orchestrator, runner
- nexus_spine.framework: adapter interface, registry, HTTP client
- nexus_spine.domains.enrichment: the built-in enrichment sources
- nexus_spine.cli: the ``nexus-spine`` command
"""

__version__ = "0.1.0"
