"""SQLite durable tier for articles, the folder taxonomy and cache status."""

from __future__ import annotations

import json
import os
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Tuple

import aiosqlite

from kb_service.core.config import settings
from kb_service.core.errors import CacheError
from kb_service.core.logging import get_logger
from kb_service.models.cache import CacheEntry, CacheHealth, CacheStatus, CacheType
from kb_service.models.folders import CategoryRecord, FolderRecord

logger = get_logger(__name__)


def _to_epoch(value: Optional[datetime]) -> Optional[float]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _from_epoch(value: Optional[float]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


class DurableCacheStore:
    """Durable storage shared by the article and folder caches.

    Every operation opens its own connection. Storage failures are raised
    as ``CacheError`` so the caches can decide how to degrade.
    """

    def __init__(self, db_path: Optional[str] = None) -> None:
        self.db_path = db_path or settings.database_path
        self._initialized = False

    @asynccontextmanager
    async def _connect(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                yield db
        except (sqlite3.Error, OSError) as e:
            raise CacheError(f"Durable store {operation} failed: {e}", operation=operation) from e

    async def initialize(self) -> None:
        """Ensure the database file and tables exist."""
        if self._initialized:
            return

        directory = os.path.dirname(self.db_path)
        if directory:
            try:
                os.makedirs(directory, exist_ok=True)
            except OSError as e:
                raise CacheError(f"Cannot create cache directory {directory}: {e}", operation="initialize") from e

        async with self._connect("initialize") as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS article_cache (
                    article_id TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    cached_at REAL NOT NULL,
                    expires_at REAL NOT NULL
                )
                """
            )
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_article_cache_expires ON article_cache(expires_at)"
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS category_cache (
                    category_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT,
                    created_at_source TEXT,
                    updated_at_source TEXT,
                    cached_at REAL NOT NULL
                )
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS folder_cache (
                    folder_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT,
                    category_id TEXT NOT NULL,
                    category_name TEXT,
                    visibility TEXT NOT NULL,
                    created_at_source TEXT,
                    updated_at_source TEXT,
                    cached_at REAL NOT NULL
                )
                """
            )
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_folder_cache_category ON folder_cache(category_id)"
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS cache_status (
                    cache_type TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    last_refresh REAL,
                    refresh_duration_ms INTEGER,
                    total_records INTEGER NOT NULL DEFAULT 0,
                    error_message TEXT,
                    updated_at REAL NOT NULL
                )
                """
            )
            await db.commit()

        self._initialized = True
        logger.info("Durable cache store initialized at %s", self.db_path)

    # Articles

    async def get_article(self, article_id: str) -> Optional[CacheEntry]:
        """Stored entry for an article, expired or not."""
        await self.initialize()
        async with self._connect("get_article") as db:
            async with db.execute(
                "SELECT article_id, payload, cached_at, expires_at FROM article_cache WHERE article_id = ?",
                (article_id,),
            ) as cursor:
                row = await cursor.fetchone()

        if row is None:
            return None
        try:
            return CacheEntry(
                key=row["article_id"],
                payload=json.loads(row["payload"]),
                cached_at=_from_epoch(row["cached_at"]),
                expires_at=_from_epoch(row["expires_at"]),
            )
        except ValueError as e:
            raise CacheError(f"Corrupt cache row for article {article_id}: {e}", operation="get_article") from e

    async def upsert_article(self, entry: CacheEntry) -> None:
        await self.initialize()
        async with self._connect("upsert_article") as db:
            await db.execute(
                """
                INSERT INTO article_cache (article_id, payload, cached_at, expires_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(article_id) DO UPDATE SET
                    payload=excluded.payload,
                    cached_at=excluded.cached_at,
                    expires_at=excluded.expires_at
                """,
                (
                    entry.key,
                    json.dumps(entry.payload),
                    _to_epoch(entry.cached_at),
                    _to_epoch(entry.expires_at),
                ),
            )
            await db.commit()

    async def delete_article(self, article_id: str) -> bool:
        await self.initialize()
        async with self._connect("delete_article") as db:
            cursor = await db.execute(
                "DELETE FROM article_cache WHERE article_id = ?", (article_id,)
            )
            await db.commit()
            return cursor.rowcount > 0

    async def delete_expired_articles(self, now: datetime) -> int:
        """Delete entries with ``expires_at < now``. Returns the count."""
        await self.initialize()
        async with self._connect("delete_expired_articles") as db:
            cursor = await db.execute(
                "DELETE FROM article_cache WHERE expires_at < ?", (_to_epoch(now),)
            )
            await db.commit()
            return cursor.rowcount

    async def clear_articles(self) -> int:
        await self.initialize()
        async with self._connect("clear_articles") as db:
            cursor = await db.execute("DELETE FROM article_cache")
            await db.commit()
            return cursor.rowcount

    async def article_stats(self, now: datetime) -> Dict[str, Any]:
        await self.initialize()
        async with self._connect("article_stats") as db:
            async with db.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    SUM(CASE WHEN expires_at > ? THEN 1 ELSE 0 END) AS active,
                    MIN(cached_at) AS oldest,
                    MAX(cached_at) AS newest
                FROM article_cache
                """,
                (_to_epoch(now),),
            ) as cursor:
                row = await cursor.fetchone()

        total = row["total"] or 0
        active = row["active"] or 0
        return {
            "total_articles": total,
            "active_articles": active,
            "expired_articles": total - active,
            "oldest_cache_entry": _from_epoch(row["oldest"]),
            "newest_cache_entry": _from_epoch(row["newest"]),
        }

    # Folder taxonomy

    async def replace_taxonomy(
        self,
        folders: Iterable[FolderRecord],
        categories: Iterable[CategoryRecord],
        now: datetime,
    ) -> Tuple[int, int]:
        """Swap the cached taxonomy for a fresh one in one transaction."""
        folder_rows = [
            (
                f.folder_id, f.name, f.description, f.category_id, f.category_name,
                f.visibility.value, f.created_at_source, f.updated_at_source, _to_epoch(now),
            )
            for f in folders
        ]
        category_rows = [
            (
                c.category_id, c.name, c.description,
                c.created_at_source, c.updated_at_source, _to_epoch(now),
            )
            for c in categories
        ]

        await self.initialize()
        async with self._connect("replace_taxonomy") as db:
            await db.execute("DELETE FROM folder_cache")
            await db.execute("DELETE FROM category_cache")
            await db.executemany(
                """
                INSERT OR REPLACE INTO category_cache (
                    category_id, name, description, created_at_source,
                    updated_at_source, cached_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                category_rows,
            )
            await db.executemany(
                """
                INSERT OR REPLACE INTO folder_cache (
                    folder_id, name, description, category_id, category_name,
                    visibility, created_at_source, updated_at_source, cached_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                folder_rows,
            )
            await db.commit()

        return len(folder_rows), len(category_rows)

    async def clear_taxonomy(self) -> None:
        await self.initialize()
        async with self._connect("clear_taxonomy") as db:
            await db.execute("DELETE FROM folder_cache")
            await db.execute("DELETE FROM category_cache")
            await db.commit()

    @staticmethod
    def _folder_from_row(row: aiosqlite.Row) -> FolderRecord:
        return FolderRecord(
            folder_id=row["folder_id"],
            name=row["name"],
            description=row["description"],
            category_id=row["category_id"],
            category_name=row["category_name"],
            visibility=row["visibility"],
            created_at_source=row["created_at_source"],
            updated_at_source=row["updated_at_source"],
        )

    async def list_folders(self, category_id: Optional[str] = None) -> List[FolderRecord]:
        """Cached folders ordered by category name, then name."""
        query = "SELECT * FROM folder_cache"
        params: List[Any] = []
        if category_id is not None:
            query += " WHERE category_id = ?"
            params.append(str(category_id))
        query += " ORDER BY category_name COLLATE NOCASE, name COLLATE NOCASE"

        await self.initialize()
        async with self._connect("list_folders") as db:
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        return [self._folder_from_row(row) for row in rows]

    async def list_categories(self) -> List[CategoryRecord]:
        await self.initialize()
        async with self._connect("list_categories") as db:
            async with db.execute(
                "SELECT * FROM category_cache ORDER BY name COLLATE NOCASE"
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            CategoryRecord(
                category_id=row["category_id"],
                name=row["name"],
                description=row["description"],
                created_at_source=row["created_at_source"],
                updated_at_source=row["updated_at_source"],
            )
            for row in rows
        ]

    async def find_folders_by_name(
        self,
        name: str,
        category_id: str,
        exclude_folder_id: Optional[str] = None,
    ) -> List[FolderRecord]:
        """Folders of one category whose name matches case-insensitively.

        Names are compared with ``str.casefold`` so non-ASCII case
        differences match too.
        """
        query = "SELECT * FROM folder_cache WHERE category_id = ?"
        params: List[Any] = [str(category_id)]
        if exclude_folder_id is not None:
            query += " AND folder_id != ?"
            params.append(str(exclude_folder_id))

        await self.initialize()
        async with self._connect("find_folders_by_name") as db:
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()

        wanted = name.strip().casefold()
        return [
            self._folder_from_row(row) for row in rows
            if (row["name"] or "").strip().casefold() == wanted
        ]

    async def count_taxonomy(self) -> Tuple[int, int]:
        """(folders, categories) currently cached."""
        await self.initialize()
        async with self._connect("count_taxonomy") as db:
            async with db.execute("SELECT COUNT(*) FROM folder_cache") as cursor:
                folders = (await cursor.fetchone())[0]
            async with db.execute("SELECT COUNT(*) FROM category_cache") as cursor:
                categories = (await cursor.fetchone())[0]
        return folders, categories

    # Cache status

    async def get_status(self, cache_type: CacheType) -> Optional[CacheStatus]:
        await self.initialize()
        async with self._connect("get_status") as db:
            async with db.execute(
                "SELECT * FROM cache_status WHERE cache_type = ?", (cache_type.value,)
            ) as cursor:
                row = await cursor.fetchone()
        return self._status_from_row(row) if row else None

    async def list_statuses(self) -> List[CacheStatus]:
        await self.initialize()
        async with self._connect("list_statuses") as db:
            async with db.execute("SELECT * FROM cache_status ORDER BY cache_type") as cursor:
                rows = await cursor.fetchall()
        return [self._status_from_row(row) for row in rows]

    async def upsert_status(self, status: CacheStatus) -> None:
        await self.initialize()
        async with self._connect("upsert_status") as db:
            await db.execute(
                """
                INSERT INTO cache_status (
                    cache_type, status, last_refresh, refresh_duration_ms,
                    total_records, error_message, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(cache_type) DO UPDATE SET
                    status=excluded.status,
                    last_refresh=excluded.last_refresh,
                    refresh_duration_ms=excluded.refresh_duration_ms,
                    total_records=excluded.total_records,
                    error_message=excluded.error_message,
                    updated_at=excluded.updated_at
                """,
                (
                    status.cache_type.value,
                    status.status.value,
                    _to_epoch(status.last_refresh),
                    status.refresh_duration_ms,
                    status.total_records,
                    status.error_message,
                    _to_epoch(status.updated_at),
                ),
            )
            await db.commit()

    @staticmethod
    def _status_from_row(row: aiosqlite.Row) -> CacheStatus:
        return CacheStatus(
            cache_type=CacheType(row["cache_type"]),
            status=CacheHealth(row["status"]),
            last_refresh=_from_epoch(row["last_refresh"]),
            refresh_duration_ms=row["refresh_duration_ms"],
            total_records=row["total_records"],
            error_message=row["error_message"],
            updated_at=_from_epoch(row["updated_at"]),
        )
