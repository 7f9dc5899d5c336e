"""Two-tier article cache: Redis fast tier first, SQLite durable tier second.

Cache failures never reach the caller; they are logged and reported as a
miss, ``False`` or ``0`` so the caller can fall back to the engine.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from kb_service.core.config import Settings, settings as default_settings
from kb_service.core.errors import CacheError
from kb_service.core.logging import get_logger
from kb_service.models.articles import ArticleRecord, CachedArticle, SearchResult
from kb_service.models.cache import CacheEntry
from kb_service.services.unified_cache.backends.base import ICacheBackend
from kb_service.services.unified_cache.durable_store import DurableCacheStore
from kb_service.services.unified_cache.key_generator import CacheKeyGenerator
from kb_service.utils.clock import utcnow

logger = get_logger(__name__)

SOURCE_FAST_TIER = "fast_tier"
SOURCE_DURABLE = "durable"


@dataclass
class ArticleCacheConfig:
    """TTLs and timers for the article cache."""

    article_ttl: int = 300  # 5 minutes
    search_ttl: int = 180  # 3 minutes
    min_promotion_ttl: int = 60  # Durable hits are promoted for at least this long
    cleanup_interval_minutes: int = 30

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "ArticleCacheConfig":
        config = config or default_settings
        return cls(
            article_ttl=config.article_cache_ttl,
            search_ttl=config.search_cache_ttl,
            min_promotion_ttl=config.min_promotion_ttl,
            cleanup_interval_minutes=config.cleanup_interval_minutes,
        )


class ArticleCache:
    """Read-through/write-through cache for single articles.

    Usage:
        cache = ArticleCache(backend, store)

        hit = await cache.check_article_cache("5000123")
        if hit is None:
            record = await client.get_article("5000123")
            await cache.save_article_cache("5000123", record)
    """

    def __init__(
        self,
        backend: ICacheBackend,
        store: DurableCacheStore,
        config: Optional[ArticleCacheConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.backend = backend
        self.store = store
        self.config = config or ArticleCacheConfig()
        self.key_generator = CacheKeyGenerator
        self._clock = clock
        self._cleanup_task: Optional[asyncio.Task] = None

    def set_default_ttl(self, ttl_seconds: int) -> None:
        if ttl_seconds > 0:
            self.config.article_ttl = ttl_seconds
            logger.info("Article cache TTL set to %ds", ttl_seconds)

    # Lookups

    async def check_article_cache(self, article_id: str) -> Optional[CachedArticle]:
        """Return a live cached article, or None on miss, expiry or error."""
        if not article_id:
            logger.warning("Article cache lookup without an article id")
            return None

        now = self._clock()

        if self.backend.enabled:
            hit = await self._check_fast_tier(article_id, now)
            if hit is not None:
                return hit
            logger.debug("Fast tier miss for article %s", article_id)

        try:
            entry = await self.store.get_article(article_id)
        except CacheError as e:
            logger.error("Durable cache lookup failed for article %s: %s", article_id, e)
            return None

        if entry is None or not entry.is_valid(now):
            logger.debug("Article %s not cached or expired", article_id)
            return None

        try:
            record = ArticleRecord.model_validate(entry.payload)
        except ValidationError as e:
            logger.warning("Discarding malformed durable entry for %s: %s", article_id, e)
            return None

        if self.backend.enabled:
            remaining = int((entry.expires_at - now).total_seconds())
            ttl = max(remaining, self.config.min_promotion_ttl)
            await self.backend.set(
                self.key_generator.article(article_id),
                self._fast_tier_payload(record, entry.cached_at, entry.expires_at),
                ttl,
            )
            logger.debug("Promoted article %s to fast tier for %ds", article_id, ttl)

        return CachedArticle(
            record=record,
            cached_at=entry.cached_at,
            expires_at=entry.expires_at,
            source=SOURCE_DURABLE,
        )

    async def _check_fast_tier(self, article_id: str, now: datetime) -> Optional[CachedArticle]:
        key = self.key_generator.article(article_id)
        data = await self.backend.get(key)
        if not data:
            return None

        try:
            cached = CachedArticle(
                record=ArticleRecord.model_validate(data["article"]),
                cached_at=data["cached_at"],
                expires_at=data["expires_at"],
                source=SOURCE_FAST_TIER,
            )
        except (KeyError, TypeError, ValidationError) as e:
            logger.warning("Discarding malformed fast tier entry for %s: %s", article_id, e)
            await self.backend.delete(key)
            return None

        if cached.expires_at <= now:
            await self.backend.delete(key)
            return None
        return cached

    @staticmethod
    def _fast_tier_payload(
        record: ArticleRecord, cached_at: datetime, expires_at: datetime
    ) -> Dict[str, Any]:
        return {
            "article": record.model_dump(),
            "cached_at": cached_at.isoformat(),
            "expires_at": expires_at.isoformat(),
        }

    # Writes

    async def save_article_cache(
        self,
        article_id: str,
        record: ArticleRecord,
        ttl_seconds: Optional[int] = None,
    ) -> bool:
        """Write an article to both tiers.

        Returns:
            True if at least one tier stored it.
        """
        if not article_id or record is None:
            logger.warning("Refusing to cache article without id or data")
            return False

        ttl = self.config.article_ttl if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            logger.warning("Refusing to cache article %s with non-positive TTL %s", article_id, ttl)
            return False

        cached_at = self._clock()
        expires_at = cached_at + timedelta(seconds=ttl)

        fast_ok = False
        if self.backend.enabled:
            fast_ok = await self.backend.set(
                self.key_generator.article(article_id),
                self._fast_tier_payload(record, cached_at, expires_at),
                ttl,
            )

        durable_ok = False
        try:
            await self.store.upsert_article(
                CacheEntry(
                    key=article_id,
                    payload=record.model_dump(),
                    cached_at=cached_at,
                    expires_at=expires_at,
                )
            )
            durable_ok = True
        except CacheError as e:
            logger.error("Durable cache save failed for article %s: %s", article_id, e)

        logger.debug(
            "Cached article %s for %ds (fast tier: %s, durable: %s)",
            article_id, ttl, fast_ok, durable_ok,
        )
        return fast_ok or durable_ok

    async def invalidate_article(self, article_id: str) -> bool:
        """Remove an article from both tiers."""
        if not article_id:
            return False

        fast_ok = await self.backend.delete(self.key_generator.article(article_id))

        durable_ok = False
        try:
            await self.store.delete_article(article_id)
            durable_ok = True
        except CacheError as e:
            logger.error("Durable cache delete failed for article %s: %s", article_id, e)

        logger.info("Invalidated article %s", article_id)
        return fast_ok or durable_ok

    async def clear_expired_cache(self) -> int:
        """Delete durable entries past their expiry. The fast tier expires on its own."""
        try:
            cleared = await self.store.delete_expired_articles(self._clock())
        except CacheError as e:
            logger.error("Expired cache sweep failed: %s", e)
            return 0

        if cleared:
            logger.info("Cleared %d expired article cache entries", cleared)
        return cleared

    async def clear_all_cache(self) -> Dict[str, Any]:
        """Drop every cached article and search result from both tiers."""
        results: Dict[str, Any] = {
            "fast_tier": {"cleared": 0},
            "durable": {"cleared": 0, "error": None},
        }

        results["fast_tier"]["cleared"] = (
            await self.backend.clear_pattern(self.key_generator.article_pattern())
            + await self.backend.clear_pattern(self.key_generator.search_pattern())
        )

        try:
            results["durable"]["cleared"] = await self.store.clear_articles()
        except CacheError as e:
            logger.error("Durable cache clear failed: %s", e)
            results["durable"]["error"] = str(e)

        logger.info("Cleared article cache: %s", results)
        return results

    # Search results

    @staticmethod
    def _search_params(page: int, per_page: int) -> Dict[str, int]:
        return {"page": page, "per_page": per_page}

    async def cache_search_results(self, result: SearchResult, ttl: Optional[int] = None) -> bool:
        """Keep a search result set in the fast tier only."""
        if not result.query or not self.backend.enabled:
            return False

        key = self.key_generator.search(
            result.query, result.category, self._search_params(result.page, result.per_page)
        )
        return await self.backend.set(
            key, result.model_dump(mode="json"), ttl or self.config.search_ttl
        )

    async def get_cached_search_results(
        self,
        query: str,
        category: Optional[str] = None,
        page: int = 1,
        per_page: int = 10,
    ) -> Optional[SearchResult]:
        if not query or not self.backend.enabled:
            return None

        cached = await self.backend.get(
            self.key_generator.search(query, category, self._search_params(page, per_page))
        )
        if not isinstance(cached, dict):
            return None
        if str(cached.get("query", "")).strip().lower() != query.strip().lower():
            return None

        try:
            return SearchResult.model_validate(cached)
        except ValidationError as e:
            logger.warning("Discarding malformed cached search for %r: %s", query, e)
            return None

    # Stats

    async def get_cache_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "total_articles": 0,
            "active_articles": 0,
            "expired_articles": 0,
            "oldest_cache_entry": None,
            "newest_cache_entry": None,
            "fast_tier": {
                "enabled": self.backend.enabled,
                **self.backend.get_health_status(),
            },
            "config": {
                "default_ttl_seconds": self.config.article_ttl,
                "search_ttl_seconds": self.config.search_ttl,
                "use_fast_tier": self.backend.use_fast_tier,
            },
            "timestamp": self._clock().isoformat(),
        }

        try:
            stats.update(await self.store.article_stats(self._clock()))
        except CacheError as e:
            logger.error("Failed to read article cache stats: %s", e)
            stats["error"] = str(e)

        return stats

    # Periodic cleanup

    def schedule_cleanup(self, interval_minutes: Optional[float] = None) -> asyncio.Task:
        """Start a background task sweeping expired entries every interval."""
        interval = interval_minutes or self.config.cleanup_interval_minutes
        if self._cleanup_task and not self._cleanup_task.done():
            return self._cleanup_task

        self._cleanup_task = asyncio.create_task(self._cleanup_loop(interval * 60))
        logger.info("Scheduled article cache cleanup every %s minutes", interval)
        return self._cleanup_task

    async def _cleanup_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            cleared = await self.clear_expired_cache()
            logger.info("Scheduled cleanup removed %d entries", cleared)

    async def stop_cleanup(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
