"""Dependency injection container for service management.

The container owns the durable store, the fast-tier backend and the engine
client, and wires them into the caches and the knowledge base service.
Nothing in the package holds these as module-level globals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, TYPE_CHECKING

from kb_service.core.logging import get_logger

if TYPE_CHECKING:
    from kb_service.core.config import Settings
    from kb_service.services.kb_client.client import KnowledgeBaseClient
    from kb_service.services.knowledge_base import KnowledgeBaseService
    from kb_service.services.unified_cache.article_cache import ArticleCache
    from kb_service.services.unified_cache.backends.base import ICacheBackend
    from kb_service.services.unified_cache.durable_store import DurableCacheStore
    from kb_service.services.unified_cache.folder_cache import FolderCache

logger = get_logger(__name__)


class ServiceNotInitializedError(Exception):
    """Raised when accessing a service that hasn't been initialized."""

    def __init__(self, service_name: str):
        super().__init__(f"Service '{service_name}' has not been initialized. "
                         f"Call container.initialize() first.")
        self.service_name = service_name


@dataclass
class ServiceContainer:
    """Centralized container for dependency injection.

    Services set through the ``set_*`` methods before ``initialize()`` are
    used as-is instead of being built from settings.

    Usage:
        container = ServiceContainer()
        await container.initialize(settings)

        kb = container.knowledge_base
        result = await kb.search("lanyard colours")

        await container.shutdown()
    """

    _store: Optional[DurableCacheStore] = field(default=None, repr=False)
    _backend: Optional[ICacheBackend] = field(default=None, repr=False)
    _client: Optional[KnowledgeBaseClient] = field(default=None, repr=False)
    _article_cache: Optional[ArticleCache] = field(default=None, repr=False)
    _folder_cache: Optional[FolderCache] = field(default=None, repr=False)
    _knowledge_base: Optional[KnowledgeBaseService] = field(default=None, repr=False)
    _initialized: bool = field(default=False, repr=True)
    _settings: Optional[Settings] = field(default=None, repr=False)

    async def initialize(self, settings: Settings, start_cleanup: bool = False) -> None:
        """Initialize all services.

        Args:
            settings: Application settings.
            start_cleanup: Start the periodic expired-article sweep.

        Raises:
            Exception: If a required service fails to initialize.
        """
        if self._initialized:
            logger.warning("Container already initialized, skipping")
            return

        self._settings = settings
        logger.info("Initializing service container...")

        try:
            # Import here to avoid circular imports
            from kb_service.services.kb_client.client import KnowledgeBaseClient
            from kb_service.services.knowledge_base import KnowledgeBaseService
            from kb_service.services.unified_cache.article_cache import (
                ArticleCache,
                ArticleCacheConfig,
            )
            from kb_service.services.unified_cache.durable_store import DurableCacheStore
            from kb_service.services.unified_cache.folder_cache import FolderCache
            from kb_service.services.unified_cache.status_ledger import CacheStatusLedger

            if self._store is None:
                self._store = DurableCacheStore(settings.database_path)
            await self._store.initialize()
            logger.info("Durable cache store initialized")

            if self._backend is None:
                self._backend = self._create_backend(settings)
            if settings.enable_fast_tier and not self._backend.connected:
                await self._connect_backend(settings)
            logger.info("Fast tier backend ready (enabled=%s)", self._backend.enabled)

            if self._client is None:
                self._client = KnowledgeBaseClient.from_settings(settings)
            logger.info("Knowledge base client initialized (%s mode)", self._client.mode)

            self._article_cache = ArticleCache(
                self._backend,
                self._store,
                ArticleCacheConfig.from_settings(settings),
            )
            self._folder_cache = FolderCache(
                self._client,
                self._store,
                CacheStatusLedger(self._store),
                stale_threshold_minutes=settings.folder_stale_threshold_minutes,
            )
            self._knowledge_base = KnowledgeBaseService(
                self._client, self._article_cache, self._folder_cache
            )

            if start_cleanup:
                self._article_cache.schedule_cleanup(settings.cleanup_interval_minutes)

            self._initialized = True
            logger.info("Service container initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize service container: {e}")
            await self.shutdown()
            raise

    @staticmethod
    def _create_backend(settings: Settings) -> ICacheBackend:
        from kb_service.services.unified_cache.backends.memory_backend import MemoryBackend
        from kb_service.services.unified_cache.backends.redis_backend import RedisBackend

        if settings.fast_tier_backend == "memory":
            return MemoryBackend(default_ttl=settings.article_cache_ttl)
        return RedisBackend.from_settings(settings)

    async def _connect_backend(self, settings: Settings) -> None:
        from kb_service.services.unified_cache.backends.redis_backend import RedisBackend

        if isinstance(self._backend, RedisBackend):
            self._backend.on_max_retries(
                lambda error: logger.warning("Fast tier gave up reconnecting: %s", error)
            )
            await self._backend.initialize(timeout=settings.redis_init_timeout)
        else:
            await self._backend.connect()

    async def shutdown(self) -> None:
        """Shutdown all services and cleanup resources."""
        logger.info("Shutting down service container...")

        if self._article_cache:
            try:
                await self._article_cache.stop_cleanup()
            except Exception as e:
                logger.error(f"Error stopping cache cleanup: {e}")

        if self._backend:
            try:
                await self._backend.disconnect()
                logger.info("Fast tier disconnected")
            except Exception as e:
                logger.error(f"Error disconnecting fast tier: {e}")

        if self._client:
            try:
                await self._client.close()
                logger.info("Knowledge base client closed")
            except Exception as e:
                logger.error(f"Error closing knowledge base client: {e}")

        self._initialized = False
        logger.info("Service container shut down")

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            raise ServiceNotInitializedError("settings")
        return self._settings

    @property
    def store(self) -> DurableCacheStore:
        if self._store is None:
            raise ServiceNotInitializedError("store")
        return self._store

    @property
    def backend(self) -> ICacheBackend:
        if self._backend is None:
            raise ServiceNotInitializedError("backend")
        return self._backend

    @property
    def client(self) -> KnowledgeBaseClient:
        if self._client is None:
            raise ServiceNotInitializedError("client")
        return self._client

    @property
    def article_cache(self) -> ArticleCache:
        if self._article_cache is None:
            raise ServiceNotInitializedError("article_cache")
        return self._article_cache

    @property
    def folder_cache(self) -> FolderCache:
        if self._folder_cache is None:
            raise ServiceNotInitializedError("folder_cache")
        return self._folder_cache

    @property
    def knowledge_base(self) -> KnowledgeBaseService:
        """Get the knowledge base service instance."""
        if self._knowledge_base is None:
            raise ServiceNotInitializedError("knowledge_base")
        return self._knowledge_base

    def set_store(self, store: DurableCacheStore) -> None:
        """Set the durable store (for testing)."""
        self._store = store

    def set_backend(self, backend: ICacheBackend) -> None:
        """Set the fast tier backend (for testing)."""
        self._backend = backend

    def set_client(self, client: KnowledgeBaseClient) -> None:
        """Set the engine client (for testing)."""
        self._client = client


# Module-level container instance
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """Get the global service container instance.

    Raises:
        RuntimeError: If the container hasn't been created yet.
    """
    global _container
    if _container is None:
        raise RuntimeError(
            "Service container not created. Call set_container() first "
            "or use the FastAPI app.state.container."
        )
    return _container


def set_container(container: ServiceContainer) -> None:
    global _container
    _container = container
