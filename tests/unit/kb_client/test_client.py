"""Tests for the knowledge base engine client."""

import json
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from kb_service.core.config import Settings
from kb_service.core.errors import (
    ArticleNotFoundError,
    ParseError,
    RpcTimeoutError,
    TransportError,
    UpstreamError,
)
from kb_service.models.articles import ArticleRecord
from kb_service.models.rpc import RpcErrorInfo, RpcRequest, RpcResponse
from kb_service.services.kb_client.client import KnowledgeBaseClient
from kb_service.services.kb_client.normalizer import from_result_payload
from kb_service.services.kb_client.transports import BaseTransport
from kb_service.utils.retry import RetryConfig, RetryManager


class FakeTransport(BaseTransport):
    """Transport answering from a per-method handler table."""

    mode = "stdio"

    def __init__(self, handlers: Optional[Dict[str, Callable[[RpcRequest], Any]]] = None):
        self.handlers = handlers or {}
        self.requests: List[RpcRequest] = []
        self.closed = False

    async def send(self, request: RpcRequest, timeout: float) -> RpcResponse:
        self.requests.append(request)
        outcome = self.handlers[request.method](request)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, RpcResponse):
            return outcome
        return from_result_payload(outcome)

    async def close(self) -> None:
        self.closed = True


def search_text(count: int, start_id: int = 100) -> str:
    lines = [f"**Page 1 of 1** ({count} articles on this page, {count} total)", ""]
    for n in range(1, count + 1):
        lines += [f"{n}. **Article {n}**", f"   🆔 Article ID: {start_id + n}", f"   📄 Excerpt {n}", ""]
    return "\n".join(lines)


def content(text: str) -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": text}]}


def error(message: str) -> RpcResponse:
    return RpcResponse(error=RpcErrorInfo(message=message))


@pytest.fixture
def config():
    return Settings(
        transport="stdio",
        rpc_max_retries=3,
        rpc_retry_delay=1.0,
        article_url_template="https://kb.example.com/a/{id}",
    )


@pytest.fixture
def sleep():
    return AsyncMock()


def make_client(transport: FakeTransport, config: Settings, sleep: AsyncMock) -> KnowledgeBaseClient:
    retry = RetryManager(RetryConfig(max_retries=config.rpc_max_retries, base_delay=1.0), sleep=sleep)
    return KnowledgeBaseClient(transport, config=config, retry_manager=retry)


class TestCall:
    """Tests for the retrying call path."""

    @pytest.mark.asyncio
    async def test_retries_transport_errors(self, config, sleep):
        attempts = []

        def flaky(request):
            attempts.append(request)
            if len(attempts) < 3:
                return TransportError("engine crashed", exit_code=1)
            return content("ok")

        client = make_client(FakeTransport({"search_knowledge_base": flaky}), config, sleep)

        result = await client.call("search_knowledge_base", {"query": "x"})

        assert result.text == "ok"
        assert len(attempts) == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, config, sleep):
        transport = FakeTransport({"search_knowledge_base": lambda r: RpcTimeoutError("slow", timeout=30)})
        client = make_client(transport, config, sleep)

        with pytest.raises(RpcTimeoutError):
            await client.call("search_knowledge_base", {"query": "x"})

        assert len(transport.requests) == 4

    @pytest.mark.asyncio
    async def test_upstream_errors_are_not_retried(self, config, sleep):
        transport = FakeTransport({"get_article": lambda r: error("Invalid arguments")})
        client = make_client(transport, config, sleep)

        with pytest.raises(UpstreamError):
            await client.call("get_article", {"article_id": "1"})

        assert len(transport.requests) == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_request_ids_increase(self, config, sleep):
        transport = FakeTransport({"list_categories": lambda r: []})
        client = make_client(transport, config, sleep)

        await client.call("list_categories")
        await client.call("list_categories")

        assert [r.request_id for r in transport.requests] == [1, 2]


class TestSearch:
    """Tests for search and query broadening."""

    @pytest.mark.asyncio
    async def test_search_knowledge_base(self, config, sleep):
        transport = FakeTransport({"search_knowledge_base": lambda r: content(search_text(2))})
        client = make_client(transport, config, sleep)

        result = await client.search_knowledge_base("lanyards", category="5", page=2, per_page=20)

        assert transport.requests[0].params == {"query": "lanyards", "category": "5", "page": 2, "per_page": 20}
        assert result.total_results == 2
        assert result.articles_on_page == 2
        assert result.articles[0].url == "https://kb.example.com/a/101"

    @pytest.mark.asyncio
    async def test_default_paging_params_are_omitted(self, config, sleep):
        transport = FakeTransport({"search_knowledge_base": lambda r: content(search_text(1))})
        client = make_client(transport, config, sleep)

        await client.search_knowledge_base("lanyards")

        assert transport.requests[0].params == {"query": "lanyards"}

    @pytest.mark.asyncio
    async def test_broadens_when_keyword_search_is_thin(self, config, sleep):
        def handler(request):
            query = request.params["query"]
            return content(search_text(1 if query == "tubular lanyards" else 4))

        transport = FakeTransport({"search_knowledge_base": handler})
        client = make_client(transport, config, sleep)

        result = await client.search_articles("Can I get tubular lanyards in red?")

        queries = [r.params["query"] for r in transport.requests]
        assert queries == ["tubular lanyards", "tubular lanyards red"]
        assert len(result.articles) == 4

    @pytest.mark.asyncio
    async def test_keeps_narrow_result_when_enough(self, config, sleep):
        transport = FakeTransport({"search_knowledge_base": lambda r: content(search_text(5))})
        client = make_client(transport, config, sleep)

        result = await client.search_articles("tubular lanyards pricing")

        assert len(transport.requests) == 1
        assert transport.requests[0].params["per_page"] == config.search_fetch_per_page
        assert len(result.articles) == 5

    @pytest.mark.asyncio
    async def test_broadened_failure_keeps_first_result(self, config, sleep):
        def handler(request):
            if len(transport.requests) == 1:
                return content(search_text(1))
            return error("engine overloaded")

        transport = FakeTransport({"search_knowledge_base": handler})
        client = make_client(transport, config, sleep)

        result = await client.search_articles("can tubular lanyards fit badges")

        assert len(transport.requests) == 2
        assert len(result.articles) == 1


class TestGetArticle:
    """Tests for full article retrieval."""

    @pytest.mark.asyncio
    async def test_structured_article(self, config, sleep):
        payload = {"id": 42, "title": "Returns", "description": "<p>Within 30 days</p><img src='https://cdn/x.png'>"}
        client = make_client(FakeTransport({"get_article": lambda r: payload}), config, sleep)

        record = await client.get_article("42")

        assert record.id == "42"
        assert record.title == "Returns"
        assert record.content.startswith("Within 30 days")
        assert "1. https://cdn/x.png" in record.content
        assert record.full_content_available is True
        assert record.url == "https://kb.example.com/a/42"

    @pytest.mark.asyncio
    async def test_text_article_uses_first_heading(self, config, sleep):
        client = make_client(
            FakeTransport({"get_article": lambda r: content("# Shipping\nWe ship worldwide.")}),
            config, sleep,
        )

        record = await client.get_article("7")

        assert record.title == "Shipping"
        assert "We ship worldwide." in record.content

    @pytest.mark.asyncio
    async def test_not_found(self, config, sleep):
        client = make_client(
            FakeTransport({"get_article": lambda r: error("Article 9 not found")}), config, sleep
        )

        with pytest.raises(ArticleNotFoundError) as exc_info:
            await client.get_article("9")

        assert exc_info.value.article_id == "9"

    @pytest.mark.asyncio
    async def test_empty_body_uses_fallback(self, config, sleep):
        fallback = ArticleRecord(id="3", title="From search", content="Excerpt text")
        client = make_client(FakeTransport({"get_article": lambda r: {"id": 3}}), config, sleep)

        record = await client.get_article("3", fallback=fallback)

        assert record.title == "From search"
        assert record.content == "Excerpt text"

    @pytest.mark.asyncio
    async def test_empty_body_without_fallback(self, config, sleep):
        client = make_client(FakeTransport({"get_article": lambda r: {"id": 3}}), config, sleep)

        with pytest.raises(ArticleNotFoundError):
            await client.get_article("3")

    @pytest.mark.asyncio
    async def test_requires_id(self, config, sleep):
        client = make_client(FakeTransport(), config, sleep)
        with pytest.raises(ValueError):
            await client.get_article("")


class TestTaxonomy:
    """Tests for folder and category listing."""

    FOLDERS = {
        "folders": [
            {"id": 10, "name": "Lanyards", "category_id": 1, "category_name": "Products", "visibility": 1},
            {"id": 20, "name": "Returns", "category_id": 2, "category_name": "Policies", "visibility": "private"},
        ],
        "categories": [{"id": 1, "name": "Products"}, {"id": 2, "name": "Policies"}],
    }

    @pytest.mark.asyncio
    async def test_list_all_folders(self, config, sleep):
        client = make_client(
            FakeTransport({"list_all_folders": lambda r: content(json.dumps(self.FOLDERS))}), config, sleep
        )

        folders, categories = await client.list_all_folders()

        assert [f.folder_id for f in folders] == ["10", "20"]
        assert folders[1].visibility.value == "private"
        assert [c.category_id for c in categories] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_list_all_folders_unknown_method(self, config, sleep):
        client = make_client(
            FakeTransport({"list_all_folders": lambda r: error("Unknown method: list_all_folders")}),
            config, sleep,
        )
        assert await client.list_all_folders() == ([], [])

    @pytest.mark.asyncio
    async def test_list_all_folders_not_json(self, config, sleep):
        client = make_client(
            FakeTransport({"list_all_folders": lambda r: content("Folders:\n- Lanyards")}), config, sleep
        )
        with pytest.raises(ParseError):
            await client.list_all_folders()

    @pytest.mark.asyncio
    async def test_list_all_folders_skips_malformed_records(self, config, sleep):
        payload = {
            "folders": [
                {"id": 10, "name": "Lanyards", "category_id": 1},
                {"id": 11, "name": "Orphan folder"},
                "not a folder",
            ],
            "categories": [{"id": 1, "name": "Products"}, {"name": "No id"}],
        }
        client = make_client(
            FakeTransport({"list_all_folders": lambda r: content(json.dumps(payload))}), config, sleep
        )

        folders, categories = await client.list_all_folders()

        assert [f.folder_id for f in folders] == ["10"]
        assert [c.category_id for c in categories] == ["1"]

    @pytest.mark.asyncio
    async def test_list_categories_skips_malformed_records(self, config, sleep):
        client = make_client(
            FakeTransport({"list_categories": lambda r: [{"id": 1, "name": "Products"}, {"name": "No id"}]}),
            config, sleep,
        )
        categories = await client.list_categories()
        assert [c.category_id for c in categories] == ["1"]

    @pytest.mark.asyncio
    async def test_list_categories_structured(self, config, sleep):
        client = make_client(
            FakeTransport({"list_categories": lambda r: [{"id": 1, "name": "Products"}]}), config, sleep
        )
        categories = await client.list_categories()
        assert [c.name for c in categories] == ["Products"]

    @pytest.mark.asyncio
    async def test_list_categories_text_falls_back_to_folders(self, config, sleep):
        transport = FakeTransport({
            "list_categories": lambda r: content("📁 Products (ID: 1)"),
            "list_all_folders": lambda r: self.FOLDERS,
        })
        client = make_client(transport, config, sleep)

        categories = await client.list_categories()

        assert [c.name for c in categories] == ["Products", "Policies"]
        assert [r.method for r in transport.requests] == ["list_categories", "list_all_folders"]


class TestDiagnostics:
    @pytest.mark.asyncio
    async def test_connection_success(self, config, sleep):
        client = make_client(
            FakeTransport({"search_knowledge_base": lambda r: content(search_text(1))}), config, sleep
        )

        status = await client.test_connection()

        assert status["success"] is True
        assert status["status"] == "connected"
        assert "response_time_ms" in status

    @pytest.mark.asyncio
    async def test_connection_failure_never_raises(self, config, sleep):
        client = make_client(
            FakeTransport({"search_knowledge_base": lambda r: TransportError("spawn failed")}), config, sleep
        )

        status = await client.test_connection()

        assert status["success"] is False
        assert status["status"] == "disconnected"
        assert "spawn failed" in status["error"]

    def test_health_status(self, config, sleep):
        client = make_client(FakeTransport(), config, sleep)

        health = client.get_health_status()

        assert health["mode"] == "stdio"
        assert health["server_url"] is None
        assert health["max_retries"] == 3
        assert health["configured"] is True

    @pytest.mark.asyncio
    async def test_close(self, config, sleep):
        transport = FakeTransport()
        await make_client(transport, config, sleep).close()
        assert transport.closed
