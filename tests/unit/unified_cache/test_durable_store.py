"""Tests for the SQLite durable store."""

from datetime import datetime, timedelta, timezone

import aiosqlite
import pytest

from kb_service.core.errors import CacheError
from kb_service.models.cache import CacheEntry, CacheHealth, CacheStatus, CacheType
from kb_service.models.folders import FolderRecord
from kb_service.services.unified_cache.durable_store import DurableCacheStore

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def entry(article_id: str, ttl: int = 300, cached_at: datetime = NOW) -> CacheEntry:
    return CacheEntry(
        key=article_id,
        payload={"id": article_id, "title": f"Article {article_id}"},
        cached_at=cached_at,
        expires_at=cached_at + timedelta(seconds=ttl),
    )


class TestArticleRows:
    """Tests for article cache rows."""

    @pytest.mark.asyncio
    async def test_upsert_and_get(self, durable_store):
        await durable_store.upsert_article(entry("1"))

        stored = await durable_store.get_article("1")

        assert stored.payload["title"] == "Article 1"
        assert stored.cached_at == NOW
        assert stored.expires_at == NOW + timedelta(seconds=300)

    @pytest.mark.asyncio
    async def test_upsert_replaces(self, durable_store):
        await durable_store.upsert_article(entry("1", ttl=60))
        await durable_store.upsert_article(entry("1", ttl=600))

        stored = await durable_store.get_article("1")
        assert stored.expires_at == NOW + timedelta(seconds=600)

    @pytest.mark.asyncio
    async def test_missing(self, durable_store):
        assert await durable_store.get_article("nope") is None

    @pytest.mark.asyncio
    async def test_corrupt_payload_raises_cache_error(self, durable_store):
        await durable_store.upsert_article(entry("1"))
        async with aiosqlite.connect(durable_store.db_path) as db:
            await db.execute("UPDATE article_cache SET payload = ? WHERE article_id = ?", ("{not json", "1"))
            await db.commit()

        with pytest.raises(CacheError):
            await durable_store.get_article("1")

    @pytest.mark.asyncio
    async def test_delete(self, durable_store):
        await durable_store.upsert_article(entry("1"))
        assert await durable_store.delete_article("1") is True
        assert await durable_store.delete_article("1") is False

    @pytest.mark.asyncio
    async def test_delete_expired_is_idempotent(self, durable_store):
        await durable_store.upsert_article(entry("old", ttl=10))
        await durable_store.upsert_article(entry("new", ttl=600))
        later = NOW + timedelta(seconds=60)

        assert await durable_store.delete_expired_articles(later) == 1
        assert await durable_store.delete_expired_articles(later) == 0
        assert await durable_store.get_article("new") is not None

    @pytest.mark.asyncio
    async def test_article_stats(self, durable_store):
        await durable_store.upsert_article(entry("old", ttl=10))
        await durable_store.upsert_article(entry("new", ttl=600, cached_at=NOW + timedelta(seconds=5)))

        stats = await durable_store.article_stats(NOW + timedelta(seconds=60))

        assert stats["total_articles"] == 2
        assert stats["active_articles"] == 1
        assert stats["expired_articles"] == 1
        assert stats["oldest_cache_entry"] == NOW
        assert stats["newest_cache_entry"] == NOW + timedelta(seconds=5)

    @pytest.mark.asyncio
    async def test_clear_articles(self, durable_store):
        await durable_store.upsert_article(entry("1"))
        await durable_store.upsert_article(entry("2"))
        assert await durable_store.clear_articles() == 2


class TestTaxonomyRows:
    """Tests for the folder and category tables."""

    @pytest.mark.asyncio
    async def test_replace_taxonomy(self, durable_store, sample_folders, sample_categories):
        counts = await durable_store.replace_taxonomy(sample_folders, sample_categories, NOW)

        assert counts == (3, 2)
        assert await durable_store.count_taxonomy() == (3, 2)

    @pytest.mark.asyncio
    async def test_replace_drops_old_rows(self, durable_store, sample_folders, sample_categories):
        await durable_store.replace_taxonomy(sample_folders, sample_categories, NOW)
        await durable_store.replace_taxonomy(sample_folders[:1], sample_categories[:1], NOW)

        assert await durable_store.count_taxonomy() == (1, 1)

    @pytest.mark.asyncio
    async def test_list_folders_ordering(self, durable_store, sample_folders, sample_categories):
        await durable_store.replace_taxonomy(sample_folders, sample_categories, NOW)

        folders = await durable_store.list_folders()

        assert [f.name for f in folders] == ["Badge holders", "Lanyards", "International"]
        assert folders[2].visibility.value == "private"

    @pytest.mark.asyncio
    async def test_list_folders_by_category(self, durable_store, sample_folders, sample_categories):
        await durable_store.replace_taxonomy(sample_folders, sample_categories, NOW)

        folders = await durable_store.list_folders(category_id="2")

        assert [f.folder_id for f in folders] == ["20"]

    @pytest.mark.asyncio
    async def test_find_folders_by_name(self, durable_store, sample_folders, sample_categories):
        await durable_store.replace_taxonomy(sample_folders, sample_categories, NOW)

        assert [f.folder_id for f in await durable_store.find_folders_by_name("  LANYARDS ", "1")] == ["10"]
        assert await durable_store.find_folders_by_name("Lanyards", "1", exclude_folder_id="10") == []
        assert await durable_store.find_folders_by_name("Lanyards", "2") == []

    @pytest.mark.asyncio
    async def test_find_folders_by_name_non_ascii(self, durable_store, sample_categories):
        folders = [FolderRecord(folder_id="30", name="Café menus", category_id="1")]
        await durable_store.replace_taxonomy(folders, sample_categories, NOW)

        assert [f.folder_id for f in await durable_store.find_folders_by_name("CAFÉ MENUS", "1")] == ["30"]

    @pytest.mark.asyncio
    async def test_clear_taxonomy(self, durable_store, sample_folders, sample_categories):
        await durable_store.replace_taxonomy(sample_folders, sample_categories, NOW)
        await durable_store.clear_taxonomy()
        assert await durable_store.count_taxonomy() == (0, 0)


class TestStatusRows:
    @pytest.mark.asyncio
    async def test_upsert_and_get(self, durable_store):
        status = CacheStatus(
            cache_type=CacheType.FOLDERS,
            status=CacheHealth.HEALTHY,
            last_refresh=NOW,
            refresh_duration_ms=120,
            total_records=3,
            updated_at=NOW,
        )
        await durable_store.upsert_status(status)

        stored = await durable_store.get_status(CacheType.FOLDERS)

        assert stored == status
        assert await durable_store.get_status(CacheType.CATEGORIES) is None
        assert len(await durable_store.list_statuses()) == 1


class TestStoreErrors:
    @pytest.mark.asyncio
    async def test_unusable_path_raises_cache_error(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        store = DurableCacheStore(str(blocker / "kb_cache.db"))

        with pytest.raises(CacheError):
            await store.get_article("1")

    def test_rejects_inverted_window(self):
        with pytest.raises(ValueError):
            CacheEntry(key="1", payload={}, cached_at=NOW, expires_at=NOW)
