"""Custom error types for the knowledge base client and cache tiers."""

from typing import Optional, Dict, Any
from enum import Enum
from datetime import datetime, timezone


class ErrorCategory(Enum):
    """Categories of errors for better handling."""
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    PROTOCOL = "protocol"
    PARSING = "parsing"
    UPSTREAM = "upstream"
    CACHE = "cache"
    FAST_TIER = "fast_tier"
    UNKNOWN = "unknown"


class KnowledgeBaseError(Exception):
    """Base exception for knowledge base and cache errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/response."""
        return {
            "error": self.message,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
        }


class TransportError(KnowledgeBaseError):
    """Process or network failure talking to the engine. Retried."""

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        exit_code: Optional[int] = None,
        status_code: Optional[int] = None,
        category: ErrorCategory = ErrorCategory.TRANSPORT,
    ):
        details: Dict[str, Any] = {}
        if method:
            details["method"] = method
        if exit_code is not None:
            details["exit_code"] = exit_code
        if status_code is not None:
            details["status_code"] = status_code

        super().__init__(
            message=message,
            category=category,
            details=details,
            recoverable=True
        )


class RpcTimeoutError(TransportError):
    """The call exceeded its deadline and was terminated."""

    def __init__(self, message: str, method: Optional[str] = None, timeout: Optional[float] = None):
        super().__init__(message, method=method, category=ErrorCategory.TIMEOUT)
        if timeout is not None:
            self.details["timeout"] = timeout


class ProtocolError(KnowledgeBaseError):
    """Malformed RPC envelope."""

    def __init__(self, message: str, method: Optional[str] = None):
        super().__init__(
            message=message,
            category=ErrorCategory.PROTOCOL,
            details={"method": method} if method else {},
        )


class ParseError(KnowledgeBaseError):
    """Unexpected textual shape returned by the engine."""

    def __init__(self, message: str, method: Optional[str] = None, snippet: Optional[str] = None):
        details: Dict[str, Any] = {}
        if method:
            details["method"] = method
        if snippet:
            details["snippet"] = snippet[:200]

        super().__init__(
            message=message,
            category=ErrorCategory.PARSING,
            details=details,
        )


class UpstreamError(KnowledgeBaseError):
    """Explicit error payload reported by the engine."""

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        details: Dict[str, Any] = {}
        if method:
            details["method"] = method
        if status_code is not None:
            details["status_code"] = status_code

        super().__init__(
            message=message,
            category=ErrorCategory.UPSTREAM,
            details=details,
        )

    @property
    def is_unknown_method(self) -> bool:
        """Whether the engine reported that the method does not exist."""
        text = self.message.lower()
        return "unknown method" in text or "not found" in text


class ArticleNotFoundError(UpstreamError):
    """The engine confirmed that an article does not exist."""

    def __init__(self, article_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Article {article_id} not found",
            method="get_article",
        )
        self.article_id = article_id
        self.details["article_id"] = article_id


class CacheError(KnowledgeBaseError):
    """Durable store failure."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(
            message=message,
            category=ErrorCategory.CACHE,
            details={"operation": operation} if operation else {},
            recoverable=True
        )


class FastTierError(KnowledgeBaseError):
    """Volatile store failure."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(
            message=message,
            category=ErrorCategory.FAST_TIER,
            details={"operation": operation} if operation else {},
            recoverable=True
        )
