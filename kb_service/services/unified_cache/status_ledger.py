"""Durable ledger of each cache domain's refresh state."""

from datetime import datetime
from typing import Callable, Iterable, List, Optional

from kb_service.core.logging import get_logger
from kb_service.models.cache import CacheHealth, CacheStatus, CacheType
from kb_service.services.unified_cache.durable_store import DurableCacheStore
from kb_service.utils.clock import utcnow

logger = get_logger(__name__)

BOTH_DOMAINS = (CacheType.FOLDERS, CacheType.CATEGORIES)


class CacheStatusLedger:
    """One row per cache domain, overwritten on every refresh cycle.

    Transitions: empty -> refreshing -> healthy | error, and
    healthy -> refreshing when the domain goes stale. Ledger writes raise
    ``CacheError`` like the rest of the durable tier.
    """

    def __init__(
        self,
        store: DurableCacheStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self._clock = clock

    async def get(self, cache_type: CacheType) -> Optional[CacheStatus]:
        return await self.store.get_status(cache_type)

    async def all(self) -> List[CacheStatus]:
        return await self.store.list_statuses()

    async def _update(self, cache_type: CacheType, **changes) -> CacheStatus:
        current = await self.store.get_status(cache_type) or CacheStatus(cache_type=cache_type)
        updated = current.model_copy(update={**changes, "updated_at": self._clock()})
        await self.store.upsert_status(updated)
        logger.debug("Cache status %s -> %s", cache_type.value, updated.status.value)
        return updated

    async def mark_refreshing(self, cache_types: Iterable[CacheType] = BOTH_DOMAINS) -> None:
        for cache_type in cache_types:
            await self._update(cache_type, status=CacheHealth.REFRESHING, error_message=None)

    async def mark_healthy(
        self,
        cache_type: CacheType,
        total_records: int,
        refresh_duration_ms: int,
    ) -> CacheStatus:
        return await self._update(
            cache_type,
            status=CacheHealth.HEALTHY,
            last_refresh=self._clock(),
            refresh_duration_ms=refresh_duration_ms,
            total_records=total_records,
            error_message=None,
        )

    async def mark_error(
        self,
        message: str,
        cache_types: Iterable[CacheType] = BOTH_DOMAINS,
    ) -> None:
        """Record a failed refresh; the previous refresh time is kept."""
        for cache_type in cache_types:
            await self._update(cache_type, status=CacheHealth.ERROR, error_message=message)

    async def mark_empty(self, cache_types: Iterable[CacheType] = BOTH_DOMAINS) -> None:
        for cache_type in cache_types:
            await self._update(
                cache_type,
                status=CacheHealth.EMPTY,
                total_records=0,
                last_refresh=self._clock(),
                error_message=None,
            )
