"""
Content store: where enriched records land.

The batch orchestrator hands each run's successful records to a
:class:`ContentStore` in a single ``bulk_upsert`` call. Upserts are
idempotent per ``content_key``, so re-running a batch after a partial
failure refreshes rows instead of duplicating them (at-least-once delivery
with idempotent writes).

Architecture:
    ::

        ContentStore (Protocol)
          async bulk_upsert(collection, items, meta) -> int
        ├── InMemoryContentStore    tests and dry runs
        └── SqliteContentStore      sqlite3, ``dynamic_content`` table

    SQLite work runs in a worker thread (``asyncio.to_thread``) so the
    event loop driving the batch never blocks on disk I/O.

Schema (``dynamic_content``):
    content_key  TEXT PRIMARY KEY NOT NULL
    module       TEXT     collection, e.g. "company-enrichment"
    section      TEXT     e.g. "sec-filings", "github"
    data         TEXT     JSON payload
    source_type  TEXT     "api"
    source_url   TEXT
    expires_at   TEXT     ISO-8601, refreshed_at + content_ttl_hours
    refreshed_at TEXT     ISO-8601
    is_active    INTEGER
    version      INTEGER  incremented on every update

Tags:
    storage, sqlite, upsert, idempotency, content-store

Doc-Types:
    - API Reference
    - Data Model
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Protocol

from nexus_spine.core.errors import StorageError
from nexus_spine.core.logging import get_logger
from nexus_spine.core.timestamps import from_iso8601, to_iso8601, utc_now

logger = get_logger(__name__)

DEFAULT_CONTENT_TTL_HOURS = 720


@dataclass(frozen=True)
class ContentItem:
    """One record to persist, keyed by ``content_key``."""

    content_key: str
    section: str | None
    data: dict[str, Any]


@dataclass(frozen=True)
class ContentMeta:
    """Provenance attached to every item in a bulk upsert."""

    source_type: str = "api"
    source_url: str | None = None
    expires_at: datetime | None = None


@dataclass
class ContentRow:
    """A stored content row as read back from a store."""

    content_key: str
    collection: str
    section: str | None
    data: dict[str, Any]
    source_type: str
    source_url: str | None
    refreshed_at: datetime
    expires_at: datetime
    is_active: bool = True
    version: int = 1


class ContentStore(Protocol):
    """Outbound persistence boundary of a batch run."""

    async def bulk_upsert(
        self,
        collection: str,
        items: Sequence[ContentItem],
        meta: ContentMeta,
    ) -> int:
        """Insert-or-update ``items``; return how many were stored."""
        ...


# ------------------------------------------------------------------ #
# In-Memory Store
# ------------------------------------------------------------------ #


@dataclass
class InMemoryContentStore:
    """Dict-backed store for tests and ``--dry-run`` style usage."""

    content_ttl_hours: int = DEFAULT_CONTENT_TTL_HOURS
    rows: dict[str, ContentRow] = field(default_factory=dict)
    upsert_calls: list[tuple[str, list[ContentItem], ContentMeta]] = field(default_factory=list)

    async def bulk_upsert(
        self,
        collection: str,
        items: Sequence[ContentItem],
        meta: ContentMeta,
    ) -> int:
        self.upsert_calls.append((collection, list(items), meta))
        now = utc_now()
        expires_at = meta.expires_at or now + timedelta(hours=self.content_ttl_hours)
        for item in items:
            previous = self.rows.get(item.content_key)
            self.rows[item.content_key] = ContentRow(
                content_key=item.content_key,
                collection=collection,
                section=item.section,
                data=item.data,
                source_type=meta.source_type,
                source_url=meta.source_url,
                refreshed_at=now,
                expires_at=expires_at,
                version=previous.version + 1 if previous else 1,
            )
        return len(items)

    def get(self, content_key: str) -> ContentRow | None:
        row = self.rows.get(content_key)
        if row is None or not row.is_active:
            return None
        return row

    def list(self, collection: str, section: str | None = None) -> list[ContentRow]:
        return sorted(
            (
                row
                for row in self.rows.values()
                if row.collection == collection
                and row.is_active
                and (section is None or row.section == section)
            ),
            key=lambda row: row.content_key,
        )


# ------------------------------------------------------------------ #
# SQLite Store
# ------------------------------------------------------------------ #

_SCHEMA = """
CREATE TABLE IF NOT EXISTS dynamic_content (
    content_key  TEXT PRIMARY KEY NOT NULL,
    module       TEXT NOT NULL,
    section      TEXT,
    data         TEXT NOT NULL,
    source_type  TEXT NOT NULL,
    source_url   TEXT,
    expires_at   TEXT NOT NULL,
    refreshed_at TEXT NOT NULL,
    is_active    INTEGER NOT NULL DEFAULT 1,
    version      INTEGER NOT NULL DEFAULT 1
);
CREATE INDEX IF NOT EXISTS idx_dynamic_content_module
    ON dynamic_content (module, section);
"""

_UPSERT = """
INSERT INTO dynamic_content (
    content_key, module, section, data, source_type, source_url,
    expires_at, refreshed_at, is_active, version
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, 1)
ON CONFLICT (content_key) DO UPDATE SET
    module = excluded.module,
    section = excluded.section,
    data = excluded.data,
    source_type = excluded.source_type,
    source_url = excluded.source_url,
    expires_at = excluded.expires_at,
    refreshed_at = excluded.refreshed_at,
    is_active = 1,
    version = dynamic_content.version + 1
"""

_COLUMNS = (
    "content_key, module, section, data, source_type, source_url, "
    "expires_at, refreshed_at, is_active, version"
)


class SqliteContentStore:
    """SQLite-backed content store.

    One connection is shared behind a lock; each public coroutine runs its
    SQL in a worker thread. ``bulk_upsert`` is a single transaction: either
    every item lands or none does.

    Example:
        store = SqliteContentStore("data/nexus_content.db")
        stored = await store.bulk_upsert("company-enrichment", items, ContentMeta(source_url=url))
    """

    def __init__(
        self,
        path: str | Path = ":memory:",
        *,
        content_ttl_hours: int = DEFAULT_CONTENT_TTL_HOURS,
    ):
        self._path = str(path)
        self._content_ttl_hours = content_ttl_hours
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            self._conn.executescript(_SCHEMA)

    @property
    def path(self) -> str:
        return self._path

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ── Writes ───────────────────────────────────────────────────

    async def bulk_upsert(
        self,
        collection: str,
        items: Sequence[ContentItem],
        meta: ContentMeta,
    ) -> int:
        """Upsert all items in one transaction.

        Raises:
            StorageError: If SQLite rejects the write (nothing is stored).
        """
        if not items:
            return 0
        return await asyncio.to_thread(self._bulk_upsert_sync, collection, list(items), meta)

    def _bulk_upsert_sync(
        self,
        collection: str,
        items: list[ContentItem],
        meta: ContentMeta,
    ) -> int:
        now = utc_now()
        expires_at = meta.expires_at or now + timedelta(hours=self._content_ttl_hours)
        params = [
            (
                item.content_key,
                collection,
                item.section,
                json.dumps(item.data, default=str),
                meta.source_type,
                meta.source_url,
                to_iso8601(expires_at),
                to_iso8601(now),
            )
            for item in items
        ]
        try:
            with self._lock, self._conn:
                self._conn.executemany(_UPSERT, params)
        except sqlite3.Error as e:
            raise StorageError(
                f"Failed to upsert {len(items)} items into {collection!r}: {e}",
                cause=e,
            ).with_context(collection=collection) from e

        logger.debug("content_store.upserted", collection=collection, items=len(items))
        return len(items)

    async def expire_stale(self, collection: str | None = None) -> int:
        """Mark rows past ``expires_at`` inactive. Returns rows changed."""
        return await asyncio.to_thread(self._expire_stale_sync, collection)

    def _expire_stale_sync(self, collection: str | None) -> int:
        sql = "UPDATE dynamic_content SET is_active = 0 WHERE is_active = 1 AND expires_at < ?"
        params: list[Any] = [to_iso8601(utc_now())]
        if collection is not None:
            sql += " AND module = ?"
            params.append(collection)
        with self._lock, self._conn:
            cursor = self._conn.execute(sql, params)
        if cursor.rowcount:
            logger.info("content_store.expired", collection=collection or "all", rows=cursor.rowcount)
        return cursor.rowcount

    # ── Reads ────────────────────────────────────────────────────

    def get(self, content_key: str) -> ContentRow | None:
        """Return an active row by key, or ``None``."""
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM dynamic_content WHERE content_key = ?",
                (content_key,),
            ).fetchone()
        if row is None or not row["is_active"]:
            return None
        return _to_content_row(row)

    def list(self, collection: str, section: str | None = None) -> list[ContentRow]:
        """Return active rows of a collection, ordered by key."""
        sql = f"SELECT {_COLUMNS} FROM dynamic_content WHERE module = ? AND is_active = 1"
        params: list[Any] = [collection]
        if section is not None:
            sql += " AND section = ?"
            params.append(section)
        sql += " ORDER BY content_key"
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [_to_content_row(row) for row in rows]


def _to_content_row(row: sqlite3.Row) -> ContentRow:
    return ContentRow(
        content_key=row["content_key"],
        collection=row["module"],
        section=row["section"],
        data=json.loads(row["data"]),
        source_type=row["source_type"],
        source_url=row["source_url"],
        refreshed_at=from_iso8601(row["refreshed_at"]),
        expires_at=from_iso8601(row["expires_at"]),
        is_active=bool(row["is_active"]),
        version=row["version"],
    )


__all__ = [
    "DEFAULT_CONTENT_TTL_HOURS",
    "ContentItem",
    "ContentMeta",
    "ContentRow",
    "ContentStore",
    "InMemoryContentStore",
    "SqliteContentStore",
]
