"""Data models for articles, folders, cache rows and engine calls."""

from kb_service.models.articles import ArticleRecord, CachedArticle, SearchResult
from kb_service.models.cache import CacheEntry, CacheHealth, CacheStatus, CacheType
from kb_service.models.folders import (
    CategoryRecord,
    FolderCacheInfo,
    FolderListing,
    FolderRecord,
    FolderVisibility,
)
from kb_service.models.rpc import ResultKind, RpcErrorInfo, RpcRequest, RpcResponse, RpcResult

__all__ = [
    "ArticleRecord",
    "CachedArticle",
    "SearchResult",
    "CacheEntry",
    "CacheHealth",
    "CacheStatus",
    "CacheType",
    "CategoryRecord",
    "FolderCacheInfo",
    "FolderListing",
    "FolderRecord",
    "FolderVisibility",
    "ResultKind",
    "RpcErrorInfo",
    "RpcRequest",
    "RpcResponse",
    "RpcResult",
]
