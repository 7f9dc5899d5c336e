"""Shared test fixtures for knowledge base service tests."""

import fnmatch
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from kb_service.models.articles import ArticleRecord
from kb_service.models.folders import CategoryRecord, FolderRecord
from kb_service.services.unified_cache.backends.memory_backend import MemoryBackend
from kb_service.services.unified_cache.durable_store import DurableCacheStore


# ============================================================================
# Clock
# ============================================================================

class FakeClock:
    """Manually advanced clock usable as a datetime or epoch source."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def time(self) -> float:
        return self.current.timestamp()

    def advance(self, seconds: float = 0, minutes: float = 0) -> None:
        self.current += timedelta(seconds=seconds, minutes=minutes)


@pytest.fixture
def clock():
    return FakeClock()


# ============================================================================
# Redis
# ============================================================================

class FakeRedis:
    """In-process stand-in for ``redis.asyncio.Redis``."""

    def __init__(self, fail_ping: bool = False, corrupt_reads: bool = False):
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.fail_ping = fail_ping
        self.fail_commands = False
        self.corrupt_reads = corrupt_reads
        self.closed = False

    def _check(self) -> None:
        if self.fail_commands:
            raise RedisConnectionError("connection reset")

    async def ping(self) -> bool:
        if self.fail_ping:
            raise RedisConnectionError("connection refused")
        return True

    async def get(self, key: str) -> Optional[str]:
        self._check()
        if self.corrupt_reads:
            return None
        return self.data.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        self._check()
        self.data[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def setex(self, key: str, ttl: timedelta, value: str) -> bool:
        self._check()
        self.data[key] = value
        self.ttls[key] = int(ttl.total_seconds())
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        return sum(1 for key in keys if self.data.pop(key, None) is not None)

    async def exists(self, key: str) -> int:
        self._check()
        return int(key in self.data)

    async def scan_iter(self, match: str = "*"):
        self._check()
        for key in list(self.data):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def info(self, section: str) -> Dict[str, Any]:
        self._check()
        return {"section": section}

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_redis():
    return FakeRedis()


# ============================================================================
# Cache Fixtures
# ============================================================================

@pytest.fixture
def memory_backend(clock):
    """Create a fresh memory backend driven by the fake clock."""
    return MemoryBackend(clock=clock.time)


@pytest.fixture
async def connected_memory_backend(memory_backend):
    """Create a connected memory backend."""
    await memory_backend.connect()
    yield memory_backend
    await memory_backend.disconnect()


@pytest.fixture
async def durable_store(tmp_path):
    """SQLite store in a temporary directory."""
    store = DurableCacheStore(str(tmp_path / "cache" / "kb_cache.db"))
    await store.initialize()
    return store


# ============================================================================
# Sample Data
# ============================================================================

@pytest.fixture
def sample_article():
    return ArticleRecord(
        id="5000123",
        title="Lanyard colours",
        content="Our tubular lanyards come in 12 colours.",
        url="https://support.example.com/support/solutions/articles/5000123",
        full_content_available=True,
    )


@pytest.fixture
def sample_categories() -> List[CategoryRecord]:
    return [
        CategoryRecord(category_id="1", name="Products"),
        CategoryRecord(category_id="2", name="Shipping"),
    ]


@pytest.fixture
def sample_folders() -> List[FolderRecord]:
    return [
        FolderRecord(folder_id="10", name="Lanyards", category_id="1", category_name="Products", visibility=1),
        FolderRecord(folder_id="11", name="Badge holders", category_id="1", category_name="Products", visibility=2),
        FolderRecord(folder_id="20", name="International", category_id="2", category_name="Shipping", visibility=3),
    ]


# ============================================================================
# Mock Service Fixtures
# ============================================================================

@pytest.fixture
def mock_kb_client(sample_folders, sample_categories):
    """Create a mock engine client returning the sample taxonomy."""
    mock = MagicMock()
    mock.mode = "stdio"
    mock.list_all_folders = AsyncMock(return_value=(sample_folders, sample_categories))
    mock.list_categories = AsyncMock(return_value=sample_categories)
    mock.search_knowledge_base = AsyncMock()
    mock.search_articles = AsyncMock()
    mock.get_article = AsyncMock()
    mock.test_connection = AsyncMock(return_value={"success": True, "status": "connected"})
    mock.get_health_status = MagicMock(return_value={"mode": "stdio"})
    mock.close = AsyncMock()
    return mock
