"""Tests for the ServiceContainer dependency injection system."""

import pytest
from fastapi import FastAPI

from kb_service.core import container as container_module
from kb_service.core import lifecycle
from kb_service.core.config import Settings
from kb_service.core.container import (
    ServiceContainer,
    ServiceNotInitializedError,
    get_container,
    set_container,
)
from kb_service.core.errors import CacheError
from kb_service.services.knowledge_base import KnowledgeBaseService
from kb_service.services.unified_cache.backends.memory_backend import MemoryBackend
from kb_service.services.unified_cache.backends.redis_backend import RedisBackend


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        database_path=str(tmp_path / "kb_cache.db"),
        fast_tier_backend="memory",
        transport="http",
        server_url="http://engine.test",
    )


class TestServiceContainer:
    """Tests for container wiring and teardown."""

    def test_properties_before_initialize(self):
        container = ServiceContainer()

        assert container.is_initialized is False
        with pytest.raises(ServiceNotInitializedError) as exc_info:
            _ = container.knowledge_base
        assert exc_info.value.service_name == "knowledge_base"

    @pytest.mark.asyncio
    async def test_initialize_wires_services(self, test_settings, mock_kb_client):
        container = ServiceContainer()
        container.set_client(mock_kb_client)

        await container.initialize(test_settings)

        assert container.is_initialized
        assert isinstance(container.knowledge_base, KnowledgeBaseService)
        assert isinstance(container.backend, MemoryBackend)
        assert container.backend.enabled is True
        assert container.article_cache.store is container.store
        assert container.folder_cache.client is mock_kb_client
        assert container.settings is test_settings

        await container.shutdown()
        assert container.is_initialized is False
        assert container.backend.connected is False
        mock_kb_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_initialize_twice_is_noop(self, test_settings, mock_kb_client):
        container = ServiceContainer()
        container.set_client(mock_kb_client)

        await container.initialize(test_settings)
        knowledge_base = container.knowledge_base
        await container.initialize(test_settings)

        assert container.knowledge_base is knowledge_base
        await container.shutdown()

    @pytest.mark.asyncio
    async def test_fast_tier_disabled(self, test_settings, mock_kb_client):
        test_settings.enable_fast_tier = False
        container = ServiceContainer()
        container.set_client(mock_kb_client)

        await container.initialize(test_settings)

        assert container.backend.enabled is False
        await container.shutdown()

    @pytest.mark.asyncio
    async def test_injected_backend_is_connected(self, test_settings, mock_kb_client):
        backend = MemoryBackend()
        container = ServiceContainer()
        container.set_client(mock_kb_client)
        container.set_backend(backend)

        await container.initialize(test_settings)

        assert container.backend is backend
        assert backend.connected is True
        await container.shutdown()

    @pytest.mark.asyncio
    async def test_cleanup_task_started(self, test_settings, mock_kb_client):
        container = ServiceContainer()
        container.set_client(mock_kb_client)

        await container.initialize(test_settings, start_cleanup=True)
        task = container.article_cache._cleanup_task

        assert task is not None and not task.done()
        await container.shutdown()
        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_failed_initialize_shuts_down(self, test_settings, mock_kb_client, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        test_settings.database_path = str(blocker / "kb_cache.db")
        container = ServiceContainer()
        container.set_client(mock_kb_client)

        with pytest.raises(CacheError):
            await container.initialize(test_settings)

        assert container.is_initialized is False
        mock_kb_client.close.assert_awaited_once()

    def test_redis_backend_selected(self, test_settings):
        test_settings.fast_tier_backend = "redis"
        assert isinstance(ServiceContainer._create_backend(test_settings), RedisBackend)


class TestGlobalContainer:
    def test_get_container_before_set(self, monkeypatch):
        monkeypatch.setattr(container_module, "_container", None)
        with pytest.raises(RuntimeError):
            get_container()

    def test_set_and_get(self, monkeypatch):
        monkeypatch.setattr(container_module, "_container", None)
        container = ServiceContainer()
        set_container(container)
        assert get_container() is container


class TestLifespan:
    @pytest.mark.asyncio
    async def test_lifespan_exposes_service(self, test_settings, monkeypatch):
        monkeypatch.setattr(lifecycle, "settings", test_settings)
        monkeypatch.setattr(lifecycle, "setup_logging", lambda: None)
        monkeypatch.setattr(container_module, "_container", None)
        app = FastAPI(lifespan=lifecycle.lifespan)

        async with lifecycle.lifespan(app):
            assert isinstance(app.state.knowledge_base, KnowledgeBaseService)
            assert get_container() is app.state.container
            assert app.state.container.client.mode == "http"

        assert app.state.container.is_initialized is False
