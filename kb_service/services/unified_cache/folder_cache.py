"""Folder and category cache backed by the durable store.

The whole taxonomy is cached as one unit: a refresh pulls every folder and
category from the engine and replaces both tables. Refreshes happen when
the cache is empty, has never been refreshed, is older than the stale
threshold, or when a caller forces one.
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, Optional

from kb_service.core.errors import CacheError, KnowledgeBaseError
from kb_service.core.logging import get_logger
from kb_service.models.cache import CacheType
from kb_service.models.folders import FolderCacheInfo, FolderListing
from kb_service.services.kb_client.client import KnowledgeBaseClient
from kb_service.services.unified_cache.durable_store import DurableCacheStore
from kb_service.services.unified_cache.status_ledger import CacheStatusLedger
from kb_service.utils.clock import utcnow

logger = get_logger(__name__)

SOURCE_DATABASE_CACHE = "database_cache"
SOURCE_ORIGIN_DIRECT = "origin_direct"


class RefreshLatch:
    """Non-blocking in-process latch.

    ``try_acquire()`` yields False immediately when the latch is held, and
    always releases on exit, including on error or cancellation.
    """

    def __init__(self) -> None:
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    @asynccontextmanager
    async def try_acquire(self) -> AsyncIterator[bool]:
        if self._held:
            yield False
            return

        self._held = True
        try:
            yield True
        finally:
            self._held = False


class FolderCache:
    """Read-through cache for the folder/category taxonomy."""

    def __init__(
        self,
        client: KnowledgeBaseClient,
        store: DurableCacheStore,
        ledger: Optional[CacheStatusLedger] = None,
        stale_threshold_minutes: float = 60,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.store = store
        self.ledger = ledger or CacheStatusLedger(store, clock=clock)
        self.stale_threshold_minutes = stale_threshold_minutes
        self._clock = clock
        self._latch = RefreshLatch()

    @property
    def refresh_in_progress(self) -> bool:
        return self._latch.held

    async def get_all_folders(self, force_refresh: bool = False) -> FolderListing:
        """All cached folders and categories, refreshing first when needed.

        Falls back to an uncached engine call if the cache layer fails.
        """
        try:
            status = await self.ledger.get(CacheType.FOLDERS)
            needs_refresh = (
                force_refresh
                or status is None
                or status.total_records == 0
                or status.is_stale(self.stale_threshold_minutes, self._clock())
            )

            if needs_refresh:
                logger.info("Folder cache is stale or empty, refreshing")
                await self.refresh_folder_cache()
                status = await self.ledger.get(CacheType.FOLDERS)

            folders = await self.store.list_folders()
            categories = await self.store.list_categories()
        except KnowledgeBaseError as e:
            logger.error("Folder cache unavailable, falling back to engine: %s", e)
            return await self.get_folders_from_origin()

        last_refresh = status.last_refresh if status else None
        return FolderListing(
            success=True,
            folders=folders,
            categories=categories,
            cache_info=FolderCacheInfo(
                source=SOURCE_DATABASE_CACHE,
                last_refresh=last_refresh.isoformat() if last_refresh else None,
                is_stale=status.is_stale(self.stale_threshold_minutes, self._clock()) if status else True,
            ),
        )

    async def refresh_folder_cache(self) -> bool:
        """Replace the cached taxonomy with a fresh copy from the engine.

        Only one refresh runs at a time; a call made while another refresh
        is in flight returns False without doing anything.

        Raises:
            KnowledgeBaseError: The engine call or the store write failed. The
                failure is recorded in the ledger first.
        """
        async with self._latch.try_acquire() as acquired:
            if not acquired:
                logger.info("Folder cache refresh already in progress, skipping")
                return False

            start = time.monotonic()
            await self.ledger.mark_refreshing()

            try:
                folders, categories = await self.client.list_all_folders()
                await self.store.replace_taxonomy(folders, categories, self._clock())

                duration_ms = int((time.monotonic() - start) * 1000)
                await self.ledger.mark_healthy(CacheType.FOLDERS, len(folders), duration_ms)
                await self.ledger.mark_healthy(CacheType.CATEGORIES, len(categories), duration_ms)
            except Exception as e:
                logger.error("Folder cache refresh failed: %s", e)
                try:
                    await self.ledger.mark_error(str(e))
                except CacheError as ledger_error:
                    logger.error("Could not record refresh failure: %s", ledger_error)
                raise

            logger.info(
                "Folder cache refreshed in %dms: %d folders, %d categories",
                duration_ms, len(folders), len(categories),
            )
            return True

    async def get_folders_from_origin(self, category_id: Optional[str] = None) -> FolderListing:
        """Uncached listing straight from the engine. Never raises."""
        start = time.monotonic()
        try:
            folders, categories = await self.client.list_all_folders()
        except KnowledgeBaseError as e:
            logger.error("Engine folder listing failed: %s", e)
            return FolderListing(
                success=False,
                error=str(e),
                cache_info=FolderCacheInfo(source=SOURCE_ORIGIN_DIRECT),
            )

        if category_id is not None:
            folders = [f for f in folders if f.category_id == str(category_id)]

        return FolderListing(
            success=True,
            folders=folders,
            categories=categories,
            cache_info=FolderCacheInfo(
                source=SOURCE_ORIGIN_DIRECT,
                fetch_duration_ms=int((time.monotonic() - start) * 1000),
            ),
        )

    async def get_folders_by_category(self, category_id: str) -> FolderListing:
        """Cached folders of one category, ordered by name."""
        try:
            folders = await self.store.list_folders(category_id=str(category_id))
        except CacheError as e:
            logger.error("Folder cache lookup for category %s failed: %s", category_id, e)
            return await self.get_folders_from_origin(category_id=category_id)

        return FolderListing(
            success=True,
            folders=folders,
            cache_info=FolderCacheInfo(source=SOURCE_DATABASE_CACHE),
        )

    async def validate_folder_name_unique(
        self,
        name: str,
        category_id: str,
        exclude_folder_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Check that no folder in the category already uses ``name``.

        Comparison is case-insensitive and ignores surrounding whitespace.

        Raises:
            KnowledgeBaseError: Both the cache and the engine were unavailable.
        """
        try:
            existing = await self.store.find_folders_by_name(name, category_id, exclude_folder_id)
        except CacheError as e:
            logger.error("Folder name check falling back to engine: %s", e)
            folders, _ = await self.client.list_all_folders()
            wanted = name.strip().casefold()
            existing = [
                f for f in folders
                if f.category_id == str(category_id)
                and f.name.strip().casefold() == wanted
                and (exclude_folder_id is None or f.folder_id != str(exclude_folder_id))
            ]

        return {
            "is_unique": not existing,
            "existing_folders": [{"folder_id": f.folder_id, "name": f.name} for f in existing],
        }

    async def get_cache_stats(self) -> Dict[str, Any]:
        try:
            folders, categories = await self.store.count_taxonomy()
            statuses = await self.ledger.all()
        except CacheError as e:
            logger.error("Failed to read folder cache stats: %s", e)
            return {"success": False, "error": str(e)}

        return {
            "success": True,
            "stats": {
                "folders_cached": folders,
                "categories_cached": categories,
                "cache_status": [s.model_dump(mode="json") for s in statuses],
            },
        }

    async def clear_cache(self) -> None:
        """Empty both domains and mark them empty in the ledger.

        Raises:
            CacheError: If the store is unavailable.
        """
        await self.store.clear_taxonomy()
        await self.ledger.mark_empty()
        logger.info("Folder cache cleared")
