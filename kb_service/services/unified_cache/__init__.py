"""Two-tier cache for articles and the folder taxonomy.

Tiers:
- Fast tier: Redis (or the in-memory backend), TTL based
- Durable tier: SQLite, consulted on fast tier misses and outages

Usage:
    store = DurableCacheStore("./data/kb_cache.db")
    backend = RedisBackend.from_settings()
    await backend.connect()

    articles = ArticleCache(backend, store)
    folders = FolderCache(client, store)
"""

from kb_service.services.unified_cache.article_cache import ArticleCache, ArticleCacheConfig
from kb_service.services.unified_cache.durable_store import DurableCacheStore
from kb_service.services.unified_cache.folder_cache import FolderCache, RefreshLatch
from kb_service.services.unified_cache.key_generator import CacheKeyGenerator
from kb_service.services.unified_cache.status_ledger import CacheStatusLedger

__all__ = [
    "ArticleCache",
    "ArticleCacheConfig",
    "CacheKeyGenerator",
    "CacheStatusLedger",
    "DurableCacheStore",
    "FolderCache",
    "RefreshLatch",
]
