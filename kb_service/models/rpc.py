"""Transient request/response types for engine calls."""

import json
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from kb_service.core.errors import ParseError


class RpcRequest(BaseModel):
    """A single method call against the engine."""

    method: str
    params: Dict[str, Any] = Field(default_factory=dict)
    request_id: int = 0

    def to_jsonrpc(self) -> Dict[str, Any]:
        """JSON-RPC envelope understood by the stdio engine."""
        return {
            "jsonrpc": "2.0",
            "id": self.request_id,
            "method": "tools/call",
            "params": {"name": self.method, "arguments": self.params},
        }

    def to_http_body(self) -> Dict[str, Any]:
        """Body for the engine's HTTP execute endpoint."""
        return {"tool": self.method, "params": self.params}


class RpcErrorInfo(BaseModel):
    """Error descriptor carried by an engine response."""

    message: str
    code: Optional[Any] = None


class ResultKind(str, Enum):
    """Shape of the engine's payload after normalization."""
    STRUCTURED = "structured"  # JSON object or array
    CONTENT = "content"  # {"content": [{"type": "text", "text": ...}]}
    TEXT = "text"  # plain string that is not JSON


class RpcResult(BaseModel):
    """Normalized engine result.

    Downstream code reads ``text`` or calls ``parse_json()`` and never inspects
    the raw shape itself.
    """

    kind: ResultKind
    payload: Any = None

    @property
    def text_items(self) -> List[str]:
        if self.kind is ResultKind.CONTENT:
            return [
                item.get("text", "")
                for item in self.payload.get("content", [])
                if isinstance(item, dict) and item.get("type", "text") == "text"
            ]
        if self.kind is ResultKind.TEXT:
            return [self.payload]
        return []

    @property
    def text(self) -> str:
        """Textual body of the result ("" for structured payloads)."""
        return "\n".join(t for t in self.text_items if t)

    def parse_json(self) -> Any:
        """Structured body of the result.

        Content and text results are parsed as JSON.

        Raises:
            ParseError: If the textual body is not JSON.
        """
        if self.kind is ResultKind.STRUCTURED:
            return self.payload
        body = self.text_items[0] if self.text_items else ""
        try:
            return json.loads(body)
        except (json.JSONDecodeError, TypeError) as e:
            raise ParseError(f"Result body is not JSON: {e}", snippet=body) from e

    def get_field(self, name: str, default: Any = None) -> Any:
        """Read a top-level field of a structured or content payload."""
        if isinstance(self.payload, dict):
            return self.payload.get(name, default)
        return default


class RpcResponse(BaseModel):
    """Either a normalized result or an error descriptor."""

    result: Optional[RpcResult] = None
    error: Optional[RpcErrorInfo] = None

    @property
    def ok(self) -> bool:
        return self.error is None
