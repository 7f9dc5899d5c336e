"""Fast-tier backends.

- RedisBackend: Redis with a supervised connection
- MemoryBackend: in-memory, for tests and local development
"""

from kb_service.services.unified_cache.backends.base import ICacheBackend, CacheStats
from kb_service.services.unified_cache.backends.redis_backend import RedisBackend, ConnectionState
from kb_service.services.unified_cache.backends.memory_backend import MemoryBackend

__all__ = [
    "ICacheBackend",
    "CacheStats",
    "RedisBackend",
    "ConnectionState",
    "MemoryBackend",
]
