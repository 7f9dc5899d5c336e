"""Cache entry and cache status models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


class CacheType(str, Enum):
    """Cache domains tracked by the status ledger."""
    FOLDERS = "folders"
    CATEGORIES = "categories"


class CacheHealth(str, Enum):
    """Refresh state of a cache domain."""
    EMPTY = "empty"
    REFRESHING = "refreshing"
    HEALTHY = "healthy"
    ERROR = "error"


class CacheEntry(BaseModel):
    """A durable cache row holding an opaque JSON payload."""

    key: str
    payload: Any
    cached_at: datetime
    expires_at: datetime

    @model_validator(mode="after")
    def check_window(self) -> "CacheEntry":
        if self.expires_at <= self.cached_at:
            raise ValueError("expires_at must be later than cached_at")
        return self

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """Valid only while now < expires_at."""
        now = now or datetime.now(timezone.utc)
        return now < self.expires_at


class CacheStatus(BaseModel):
    """One ledger row per cache domain."""

    cache_type: CacheType
    status: CacheHealth = CacheHealth.EMPTY
    last_refresh: Optional[datetime] = None
    refresh_duration_ms: Optional[int] = None
    total_records: int = 0
    error_message: Optional[str] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def age_minutes(self, now: Optional[datetime] = None) -> Optional[float]:
        """Minutes since the last refresh, or None if never refreshed."""
        if self.last_refresh is None:
            return None
        now = now or datetime.now(timezone.utc)
        return (now - self.last_refresh).total_seconds() / 60

    def is_stale(self, threshold_minutes: float, now: Optional[datetime] = None) -> bool:
        """A domain that was never refreshed is stale."""
        age = self.age_minutes(now)
        if age is None:
            return True
        return age > threshold_minutes
