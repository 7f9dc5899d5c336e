"""Knowledge base engine client.

Wraps a transport with the shared retry policy and turns the engine's
responses into typed records: search results, full articles and the
folder/category taxonomy.
"""

import itertools
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type, TypeVar

from pydantic import ValidationError

from kb_service.core.config import Settings, settings as default_settings
from kb_service.core.errors import (
    ArticleNotFoundError,
    KnowledgeBaseError,
    ParseError,
    UpstreamError,
)
from kb_service.core.logging import get_logger
from kb_service.models.articles import ArticleRecord, SearchResult
from kb_service.models.folders import CategoryRecord, FolderRecord
from kb_service.models.rpc import ResultKind, RpcRequest, RpcResult
from kb_service.services.kb_client import parsers
from kb_service.services.kb_client.search_terms import extract_search_terms, keyword_query
from kb_service.services.kb_client.transports import BaseTransport, create_transport
from kb_service.utils.retry import RetryConfig, RetryManager

logger = get_logger(__name__)

RecordT = TypeVar("RecordT", FolderRecord, CategoryRecord)


def _build_records(model: Type[RecordT], items: Iterable[Any], method: str) -> List[RecordT]:
    """Build taxonomy records, skipping entries the engine sent malformed."""
    records = []
    for item in items:
        if not isinstance(item, dict):
            logger.warning("Skipping non-object %s entry from %s", model.__name__, method)
            continue
        try:
            records.append(model.from_origin(item))
        except ValidationError as e:
            logger.warning(
                "Skipping invalid %s from %s (id=%s): %s",
                model.__name__, method, item.get("id"), e.errors()[0].get("msg"),
            )
    return records


DEFAULT_PER_PAGE = 10


class KnowledgeBaseClient:
    """Async client for the knowledge base engine."""

    def __init__(
        self,
        transport: BaseTransport,
        config: Optional[Settings] = None,
        retry_manager: Optional[RetryManager] = None,
    ):
        self.transport = transport
        self.config = config or default_settings
        self.retry_manager = retry_manager or RetryManager(
            RetryConfig(
                max_retries=self.config.rpc_max_retries,
                base_delay=self.config.rpc_retry_delay,
                backoff="linear",
            )
        )
        self._request_ids = itertools.count(1)

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "KnowledgeBaseClient":
        config = config or default_settings
        return cls(create_transport(config), config=config)

    @property
    def mode(self) -> str:
        return self.transport.mode

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> RpcResult:
        """Execute one engine method with retries.

        Raises:
            TransportError: Retries exhausted on process/network failures.
            RpcTimeoutError: Retries exhausted on deadline failures.
            ProtocolError: Malformed response envelope.
            UpstreamError: The engine reported an error.
        """
        request = RpcRequest(
            method=method, params=params or {}, request_id=next(self._request_ids)
        )
        logger.debug("Calling engine method %s (%s mode)", method, self.mode)

        response = await self.retry_manager.execute_with_retry_async(
            lambda: self.transport.send(request, self.config.rpc_timeout),
            description=f"engine call {method}",
        )

        if not response.ok:
            raise UpstreamError(response.error.message, method=method)
        return response.result

    # Search

    async def search_knowledge_base(
        self,
        query: str,
        category: Optional[str] = None,
        page: int = 1,
        per_page: int = DEFAULT_PER_PAGE,
    ) -> SearchResult:
        """Search the knowledge base and parse the numbered article list."""
        params: Dict[str, Any] = {"query": query}
        if category:
            params["category"] = category
        if page > 1:
            params["page"] = page
        if per_page and per_page != DEFAULT_PER_PAGE:
            params["per_page"] = per_page

        result = await self.call("search_knowledge_base", params)
        text = result.text

        articles = parsers.parse_search_response(
            text,
            url_template=self.config.article_url_template,
            source=self.config.article_source_tag,
        )
        articles_on_page, reported_total = parsers.parse_page_summary(text)
        total = parsers.compute_total_results(text, reported_total)

        logger.info(
            "Search for %r returned %d articles (total %d)", query, len(articles), total
        )
        return SearchResult(
            query=query,
            category=category,
            page=page,
            per_page=per_page,
            total_results=total,
            articles_on_page=articles_on_page or len(articles),
            articles=articles,
        )

    async def search_articles(
        self,
        message: str,
        category: Optional[str] = None,
        per_page: Optional[int] = None,
    ) -> SearchResult:
        """Search for a free-form question, broadening the query if needed.

        A narrow keyword query runs first. When it finds fewer than
        ``search_min_results`` articles, the broader term query is tried and
        whichever result set is larger wins.
        """
        per_page = per_page or self.config.search_fetch_per_page
        terms = extract_search_terms(message)
        keywords = keyword_query(terms) or terms

        result = await self.search_knowledge_base(keywords, category, 1, per_page)

        if len(result.articles) < self.config.search_min_results and terms != keywords:
            logger.info(
                "Only %d results for %r, retrying with %r",
                len(result.articles), keywords, terms,
            )
            try:
                broader = await self.search_knowledge_base(terms, category, 1, per_page)
            except KnowledgeBaseError as e:
                logger.warning("Broadened search failed: %s", e)
            else:
                if len(broader.articles) > len(result.articles):
                    result = broader

        return result

    # Articles

    async def get_article(
        self, article_id: str, fallback: Optional[ArticleRecord] = None
    ) -> ArticleRecord:
        """Fetch the full content of one article.

        Args:
            article_id: Engine article id.
            fallback: Search excerpt used for fields the engine omits.

        Raises:
            ValueError: If ``article_id`` is empty.
            ArticleNotFoundError: If the engine does not know the article.
        """
        if not article_id:
            raise ValueError("Article ID is required")
        article_id = str(article_id)

        try:
            result = await self.call("get_article", {"article_id": article_id})
        except UpstreamError as e:
            if "not found" in e.message.lower():
                raise ArticleNotFoundError(article_id, e.message) from e
            raise

        title, body = self._article_fields(result)
        if body is None:
            if fallback is None:
                raise ArticleNotFoundError(article_id, f"Article {article_id} has no content")
            body = fallback.content

        title = title or (fallback.title if fallback else None) or parsers.first_heading(body) or "Untitled"
        return ArticleRecord(
            id=article_id,
            title=title,
            content=parsers.clean_article_content(body),
            url=self.config.article_url_template.format(id=article_id),
            source=self.config.article_source_tag,
            full_content_available=True,
        )

    @staticmethod
    def _article_fields(result: RpcResult) -> Tuple[Optional[str], Optional[str]]:
        """Title and raw body of an article result, whatever its shape."""
        title = result.get_field("title")
        if result.kind is ResultKind.STRUCTURED:
            body = (
                result.get_field("description")
                or result.get_field("content")
                or result.get_field("description_text")
            )
            return title, body if isinstance(body, str) and body else None
        text = result.text
        return title, text or None

    # Taxonomy

    async def list_all_folders(self) -> Tuple[List[FolderRecord], List[CategoryRecord]]:
        """Every folder of every category, plus the categories themselves.

        A missing engine method yields empty lists.

        Raises:
            ParseError: If the payload is not JSON.
        """
        try:
            result = await self.call("list_all_folders")
        except UpstreamError as e:
            if e.is_unknown_method:
                logger.warning("Engine does not support list_all_folders: %s", e)
                return [], []
            raise

        data = result.parse_json()
        if not isinstance(data, dict):
            raise ParseError("Folder listing is not an object", method="list_all_folders")

        folders = _build_records(FolderRecord, data.get("folders") or [], "list_all_folders")
        categories = _build_records(CategoryRecord, data.get("categories") or [], "list_all_folders")
        logger.info(
            "Retrieved %d folders from %d categories", len(folders), len(categories)
        )
        return folders, categories

    async def list_categories(self) -> List[CategoryRecord]:
        """All categories.

        When the engine answers with formatted text instead of data, the
        categories are taken from the folder listing.
        """
        try:
            result = await self.call("list_categories")
        except UpstreamError as e:
            if e.is_unknown_method:
                logger.warning("Engine does not support list_categories: %s", e)
                return []
            raise

        if result.kind is ResultKind.STRUCTURED:
            data = result.payload
        else:
            try:
                data = result.parse_json()
            except ParseError:
                logger.debug("Categories returned as text, reading them from folder listing")
                _, categories = await self.list_all_folders()
                return categories

        if isinstance(data, dict):
            data = data.get("categories") or []
        if not isinstance(data, list):
            return []
        return _build_records(CategoryRecord, data, "list_categories")

    # Diagnostics

    async def test_connection(self) -> Dict[str, Any]:
        """Run a one-result search. Never raises."""
        start = time.monotonic()
        status: Dict[str, Any] = {
            "mode": self.mode,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self.search_knowledge_base("test connection", None, 1, 1)
        except Exception as e:
            logger.error("Engine connection test failed: %s", e)
            status.update(success=False, status="disconnected", error=str(e))
        else:
            status.update(
                success=True,
                status="connected",
                response_time_ms=int((time.monotonic() - start) * 1000),
            )
        return status

    def get_health_status(self) -> Dict[str, Any]:
        """Static summary of the client configuration."""
        is_http = self.mode == "http"
        return {
            "mode": self.mode,
            "server_url": self.config.server_url if is_http else None,
            "server_command": None if is_http else " ".join(self.config.server_command),
            "server_cwd": None if is_http else self.config.server_cwd,
            "timeout": self.config.rpc_timeout,
            "max_retries": self.retry_manager.config.max_retries,
            "configured": bool(self.config.server_url) if is_http else bool(self.config.server_command),
            "environment": self.config.environment,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def close(self) -> None:
        await self.transport.close()
