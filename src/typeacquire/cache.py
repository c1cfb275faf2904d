"""SQLite cache of registry metadata (packuments) with stale fallback.

All cache operations catch ``aiosqlite.Error`` internally and degrade
gracefully: read failures return ``None`` (treated as cache miss by callers),
write failures are logged and ignored (fetched metadata is still returned).
Infrastructure errors never cross the MetadataCache class boundary.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import aiosqlite
import structlog

if TYPE_CHECKING:
    from typeacquire.models.cache import PackumentCacheEntry

log = structlog.get_logger()

_CREATE_PACKUMENT_TABLE = """
CREATE TABLE IF NOT EXISTS packument_cache (
    name        TEXT PRIMARY KEY,
    content     TEXT NOT NULL,
    fetched_at  TEXT NOT NULL,
    expires_at  TEXT NOT NULL
)
"""

_CREATE_PACKUMENT_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_packument_expires ON packument_cache(expires_at)"
)


class MetadataCache:
    """SQLite-backed registry metadata cache."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_PACKUMENT_TABLE)
        await self._db.execute(_CREATE_PACKUMENT_INDEX)
        await self._db.commit()

    async def get_packument(self, name: str) -> PackumentCacheEntry | None:
        """Read a packument. Returns ``None`` on cache miss or read failure."""
        try:
            cursor = await self._db.execute(
                "SELECT name, content, fetched_at, expires_at FROM packument_cache WHERE name = ?",
                (name,),
            )
            row = await cursor.fetchone()
            if row is None:
                return None

            from typeacquire.models.cache import PackumentCacheEntry

            fetched_at = datetime.fromisoformat(row[2])
            expires_at = datetime.fromisoformat(row[3])
            stale = datetime.now(UTC) > expires_at

            return PackumentCacheEntry(
                name=row[0],
                content=json.loads(row[1]),
                fetched_at=fetched_at,
                expires_at=expires_at,
                stale=stale,
            )
        except (aiosqlite.Error, json.JSONDecodeError):
            log.warning("cache_read_error", key=f"packument:{name}", exc_info=True)
            return None

    async def set_packument(self, name: str, content: dict[str, Any], ttl_hours: int) -> None:
        """Write a packument. Non-fatal on failure."""
        try:
            now = datetime.now(UTC)
            expires_at = now + timedelta(hours=ttl_hours)
            await self._db.execute(
                "INSERT OR REPLACE INTO packument_cache (name, content, fetched_at, expires_at) "
                "VALUES (?, ?, ?, ?)",
                (name, json.dumps(content), now.isoformat(), expires_at.isoformat()),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_write_error", key=f"packument:{name}", exc_info=True)

    async def cleanup_expired(self) -> int:
        """Delete entries expired more than 7 days ago. Non-fatal on failure."""
        try:
            cutoff = (datetime.now(UTC) - timedelta(days=7)).isoformat()
            cursor = await self._db.execute(
                "DELETE FROM packument_cache WHERE expires_at < ?", (cutoff,)
            )
            deleted = cursor.rowcount
            await self._db.commit()
            log.info("cache_cleanup_complete", packument_deleted=deleted)
            return deleted
        except aiosqlite.Error:
            log.warning("cache_cleanup_error", exc_info=True)
            return 0
