"""
Centralized settings for nexus-spine.

One validated, cached settings object. Every field can be set through a
``NEXUS_*`` environment variable or a ``.env`` file; per-source overrides
use the nested delimiter::

    NEXUS_LOG_LEVEL=DEBUG
    NEXUS_DATABASE_PATH=/var/lib/nexus/content.db
    NEXUS_SOURCES__GITHUB_ACTIVITY__DELAY_SECONDS=3
    NEXUS_SOURCES__SEC_EDGAR__ABORT_ON_RATE_LIMIT=true

Tags:
    configuration, settings, pydantic, environment

Doc-Types:
    api-reference
"""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SourceSettings(BaseModel):
    """Per-source overrides. ``None`` means "keep the adapter's default"."""

    delay_seconds: float | None = Field(default=None, ge=0)
    cache_ttl_seconds: float | None = Field(default=None, gt=0)
    request_timeout: float | None = Field(default=None, gt=0)
    failure_threshold: int | None = Field(default=None, ge=1)
    reset_timeout_seconds: float | None = Field(default=None, gt=0)
    abort_on_rate_limit: bool | None = None


def _normalize_source_name(name: str) -> str:
    return name.strip().lower().replace("-", "_")


class NexusSettings(BaseSettings):
    """nexus-spine configuration (``NEXUS_*`` environment variables)."""

    model_config = SettingsConfigDict(
        env_prefix="NEXUS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console", pattern="^(console|json)$")

    # ── Content store ────────────────────────────────────────────
    database_path: str = Field(default="data/nexus_content.db")
    content_ttl_hours: int = Field(default=720, gt=0, description="Freshness window stamped on upserted content")

    # ── Upstream identity ────────────────────────────────────────
    user_agent: str = Field(default="nexus-spine enrichment (ops@nexus-spine.dev)")
    github_token: str | None = Field(default=None)

    # ── Per-source overrides ─────────────────────────────────────
    sources: dict[str, SourceSettings] = Field(default_factory=dict)

    def source_settings(self, name: str) -> SourceSettings:
        """Return overrides for ``name``; ``sec-edgar`` and ``SEC_EDGAR`` are the same source."""
        wanted = _normalize_source_name(name)
        for key, value in self.sources.items():
            if _normalize_source_name(key) == wanted:
                return value
        return SourceSettings()


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, NexusSettings] = {}


def get_settings(*, reload: bool = False) -> NexusSettings:
    """Return the cached settings instance, building it on first use."""
    if reload or "default" not in _settings_cache:
        _settings_cache["default"] = NexusSettings()
    return _settings_cache["default"]


def clear_settings_cache() -> None:
    """Drop the cached settings (for tests)."""
    _settings_cache.clear()


__all__ = [
    "NexusSettings",
    "SourceSettings",
    "clear_settings_cache",
    "get_settings",
]
