"""In-memory fast-tier backend for tests and Redis-less development."""

import copy
import fnmatch
import time
from dataclasses import dataclass
from typing import Optional, Any, Callable, List, Dict

from kb_service.core.logging import get_logger
from kb_service.services.unified_cache.backends.base import ICacheBackend, CacheStats

logger = get_logger(__name__)


@dataclass
class MemoryEntry:
    """A stored value with optional expiration."""

    value: Any
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        if self.expires_at is None:
            return False
        return now >= self.expires_at


class MemoryBackend(ICacheBackend):
    """In-memory backend that mimics the Redis backend's behavior.

    Values are deep-copied on the way in and out, so callers cannot mutate
    what is stored.
    """

    def __init__(
        self,
        default_ttl: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._storage: Dict[str, MemoryEntry] = {}
        self._connected = False
        self._use_fast_tier = True
        self._stats = CacheStats()
        self._default_ttl = default_ttl
        self._clock = clock

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def use_fast_tier(self) -> bool:
        return self._use_fast_tier

    def set_usage(self, enabled: bool) -> None:
        self._use_fast_tier = enabled

    @property
    def stats(self) -> CacheStats:
        return self._stats

    async def connect(self) -> bool:
        self._connected = True
        return True

    async def disconnect(self) -> None:
        """Disconnect and drop everything stored."""
        self._connected = False
        self._storage.clear()

    def _live_entry(self, key: str) -> Optional[MemoryEntry]:
        entry = self._storage.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._storage[key]
            self._stats.evictions += 1
            return None
        return entry

    async def get(self, key: str) -> Optional[Any]:
        if not self._connected:
            return None

        entry = self._live_entry(key)
        if entry is None:
            self._stats.record_miss()
            return None

        self._stats.record_hit()
        return copy.deepcopy(entry.value)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self._connected:
            return False

        if ttl is not None and ttl <= 0:
            logger.warning("Refusing to cache %s with non-positive TTL %s", key, ttl)
            return False
        ttl = ttl if ttl is not None else self._default_ttl
        expires_at = self._clock() + ttl if ttl is not None else None
        self._storage[key] = MemoryEntry(value=copy.deepcopy(value), expires_at=expires_at)
        return True

    async def delete(self, key: str) -> bool:
        if not self._connected:
            return False
        return self._storage.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        if not self._connected:
            return False
        return self._live_entry(key) is not None

    async def keys(self, pattern: str = "*") -> List[str]:
        if not self._connected:
            return []
        return [
            key for key in list(self._storage)
            if fnmatch.fnmatchcase(key, pattern) and self._live_entry(key) is not None
        ]

    async def clear_pattern(self, pattern: str) -> int:
        if not self._connected:
            return 0
        matched = await self.keys(pattern)
        for key in matched:
            del self._storage[key]
        return len(matched)

    def get_health_status(self) -> Dict[str, Any]:
        return {
            "backend": "memory",
            "connected": self._connected,
            "use_fast_tier": self._use_fast_tier,
            "entries": len(self._storage),
        }

    # Testing utilities

    def get_entry_count(self) -> int:
        """Number of stored entries, expired ones included."""
        return len(self._storage)

    def get_raw_entry(self, key: str) -> Optional[MemoryEntry]:
        return self._storage.get(key)
