"""Base interface for fast-tier cache backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Any, List, Dict


@dataclass
class CacheStats:
    """Statistics for cache performance monitoring."""

    hits: int = 0
    misses: int = 0
    errors: int = 0
    evictions: int = 0

    @property
    def total_requests(self) -> int:
        """Total number of cache requests."""
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        if self.total_requests == 0:
            return 0.0
        return self.hits / self.total_requests

    def record_hit(self) -> None:
        self.hits += 1

    def record_miss(self) -> None:
        self.misses += 1

    def record_error(self) -> None:
        self.errors += 1

    def reset(self) -> None:
        """Reset all statistics."""
        self.hits = 0
        self.misses = 0
        self.errors = 0
        self.evictions = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "evictions": self.evictions,
            "hit_rate": round(self.hit_rate, 4),
        }


class ICacheBackend(ABC):
    """Abstract base class for fast-tier backends.

    Operations never raise: when the backend is unusable they return
    ``None``, ``False``, ``[]`` or ``0``. Keys are given without the
    backend's key prefix.
    """

    @property
    @abstractmethod
    def connected(self) -> bool:
        """Whether the backend currently holds a working connection."""
        ...

    @property
    @abstractmethod
    def use_fast_tier(self) -> bool:
        """Operator toggle for cache reads and writes."""
        ...

    @abstractmethod
    def set_usage(self, enabled: bool) -> None:
        """Turn cache use on or off without touching the connection."""
        ...

    @property
    def enabled(self) -> bool:
        """Connected and switched on; what the caches consult."""
        return self.connected and self.use_fast_tier

    @property
    @abstractmethod
    def stats(self) -> CacheStats:
        """Get cache statistics."""
        ...

    @abstractmethod
    async def connect(self) -> bool:
        """Connect to the backend. Returns True when usable."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect from the backend."""
        ...

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Get a value, or None if missing or unavailable."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store a JSON-serializable value.

        Args:
            key: The cache key.
            value: The value to cache.
            ttl: Time-to-live in seconds; the backend default when None.
                A TTL of zero or less is refused.

        Returns:
            True if stored.
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key. True if something was deleted."""
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def keys(self, pattern: str = "*") -> List[str]:
        """Keys matching a glob pattern, without the key prefix."""
        ...

    @abstractmethod
    async def clear_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern. Returns the count."""
        ...

    @abstractmethod
    def get_health_status(self) -> Dict[str, Any]:
        """Connection summary for diagnostics."""
        ...
