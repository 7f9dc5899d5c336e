"""Knowledge base service: the request/response surface used by route handlers.

Composes the engine client with the article and folder caches. Callers get
plain dictionaries and never see cache internals.
"""

from typing import Any, Dict, Optional

from kb_service.core.logging import get_logger
from kb_service.services.kb_client.client import DEFAULT_PER_PAGE, KnowledgeBaseClient
from kb_service.services.unified_cache.article_cache import ArticleCache
from kb_service.services.unified_cache.folder_cache import FolderCache

logger = get_logger(__name__)


class KnowledgeBaseService:
    """Cached access to search, articles and the folder taxonomy."""

    def __init__(
        self,
        client: KnowledgeBaseClient,
        article_cache: ArticleCache,
        folder_cache: FolderCache,
    ):
        self.client = client
        self.article_cache = article_cache
        self.folder_cache = folder_cache

    async def search(
        self,
        query: str,
        category: Optional[str] = None,
        page: int = 1,
        per_page: int = DEFAULT_PER_PAGE,
        broaden: bool = True,
    ) -> Dict[str, Any]:
        """Search articles, serving repeated queries from the fast tier.

        First pages of free-form questions go through the broadening search;
        later pages are plain paginated searches.

        Raises:
            KnowledgeBaseError: The engine call failed and nothing was cached.
        """
        if not query or not query.strip():
            raise ValueError("Search query is required")

        cached = await self.article_cache.get_cached_search_results(query, category, page, per_page)
        if cached is not None:
            logger.debug("Search cache hit for %r", query)
            return {**cached.model_dump(mode="json"), "source": "cache"}

        if broaden and page == 1:
            result = await self.client.search_articles(query, category, per_page=per_page)
        else:
            result = await self.client.search_knowledge_base(query, category, page, per_page)

        # Cache under the caller's query, not the rewritten one
        result = result.model_copy(update={"query": query, "page": page, "per_page": per_page})
        await self.article_cache.cache_search_results(result)
        return {**result.model_dump(mode="json"), "source": "live"}

    async def get_article(self, article_id: str) -> Dict[str, Any]:
        """One article, from cache when possible.

        Raises:
            ValueError: If ``article_id`` is empty.
            ArticleNotFoundError: If the engine does not know the article.
            KnowledgeBaseError: The engine call failed and nothing was cached.
        """
        if not article_id:
            raise ValueError("Article ID is required")
        article_id = str(article_id)

        hit = await self.article_cache.check_article_cache(article_id)
        if hit is not None:
            return {
                "article": hit.record.model_dump(mode="json"),
                "source": "cache",
                "cache_tier": hit.source,
                "cached_at": hit.cached_at.isoformat(),
                "expires_at": hit.expires_at.isoformat(),
            }

        record = await self.client.get_article(article_id)
        await self.article_cache.save_article_cache(article_id, record)
        return {"article": record.model_dump(mode="json"), "source": "live"}

    async def list_folders(self, force_refresh: bool = False) -> Dict[str, Any]:
        listing = await self.folder_cache.get_all_folders(force_refresh=force_refresh)
        return {
            **listing.model_dump(mode="json"),
            "total_folders": listing.total_folders,
            "total_categories": listing.total_categories,
        }

    async def list_folders_by_category(self, category_id: str) -> Dict[str, Any]:
        listing = await self.folder_cache.get_folders_by_category(category_id)
        return {
            **listing.model_dump(mode="json"),
            "category_id": str(category_id),
            "count": listing.total_folders,
        }

    async def list_categories(self) -> Dict[str, Any]:
        listing = await self.folder_cache.get_all_folders()
        return {
            "success": listing.success,
            "categories": [c.model_dump(mode="json") for c in listing.categories],
            "count": listing.total_categories,
            "source": listing.cache_info.source,
        }

    async def validate_folder_name(
        self, name: str, category_id: str, exclude_folder_id: Optional[str] = None
    ) -> Dict[str, Any]:
        if not name or not name.strip():
            raise ValueError("Folder name is required")
        return await self.folder_cache.validate_folder_name_unique(name, category_id, exclude_folder_id)

    async def invalidate_article(self, article_id: str) -> bool:
        return await self.article_cache.invalidate_article(article_id)

    async def clear_expired_cache(self) -> int:
        return await self.article_cache.clear_expired_cache()

    async def get_cache_stats(self) -> Dict[str, Any]:
        stats = await self.article_cache.get_cache_stats()
        stats["folder_cache"] = await self.folder_cache.get_cache_stats()
        return stats

    async def get_health(self) -> Dict[str, Any]:
        """Engine connectivity plus client and fast tier configuration."""
        return {
            "engine": await self.client.test_connection(),
            "client": self.client.get_health_status(),
            "fast_tier": self.article_cache.backend.get_health_status(),
        }
