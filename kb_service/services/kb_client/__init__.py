"""Client for the knowledge base engine."""

from kb_service.services.kb_client.client import KnowledgeBaseClient
from kb_service.services.kb_client.transports import (
    BaseTransport,
    HttpTransport,
    StdioTransport,
    create_transport,
)

__all__ = [
    "KnowledgeBaseClient",
    "BaseTransport",
    "HttpTransport",
    "StdioTransport",
    "create_transport",
]
