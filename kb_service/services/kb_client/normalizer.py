"""Normalize raw engine payloads into RpcResponse / RpcResult.

The engine answers in several shapes: JSON objects, JSON encoded as a
string, a ``{"content": [{"type": "text", "text": ...}]}`` wrapper, or a
bare string. Everything is folded into one tagged type here so nothing
further down the call stack branches on shape.
"""

import json
from typing import Any, Dict, Optional

from kb_service.core.errors import ProtocolError
from kb_service.core.logging import get_logger
from kb_service.models.rpc import ResultKind, RpcErrorInfo, RpcResponse, RpcResult

logger = get_logger(__name__)


def normalize_result(raw: Any) -> RpcResult:
    """Fold a raw result payload into an RpcResult.

    Strings are parsed as JSON; a string that is not JSON is wrapped as a
    text result instead of failing.
    """
    if raw is None:
        return RpcResult(kind=ResultKind.TEXT, payload="")

    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")

    if isinstance(raw, str):
        stripped = raw.strip()
        try:
            parsed = json.loads(stripped)
        except (json.JSONDecodeError, ValueError):
            return RpcResult(kind=ResultKind.TEXT, payload=stripped)
        if isinstance(parsed, str):
            return RpcResult(kind=ResultKind.TEXT, payload=parsed)
        return normalize_result(parsed)

    if isinstance(raw, dict):
        if isinstance(raw.get("content"), list):
            return RpcResult(kind=ResultKind.CONTENT, payload=raw)
        return RpcResult(kind=ResultKind.STRUCTURED, payload=raw)

    if isinstance(raw, list):
        return RpcResult(kind=ResultKind.STRUCTURED, payload=raw)

    return RpcResult(kind=ResultKind.TEXT, payload=str(raw))


def _error_info(error: Any) -> RpcErrorInfo:
    if isinstance(error, dict):
        return RpcErrorInfo(
            message=str(error.get("message") or error.get("error") or error),
            code=error.get("code"),
        )
    return RpcErrorInfo(message=str(error))


def _tool_error(result: RpcResult) -> Optional[RpcErrorInfo]:
    """Engine tool failures arrive as content flagged with ``isError``."""
    if result.kind is ResultKind.CONTENT and result.get_field("isError"):
        return RpcErrorInfo(message=result.text or "Tool reported an error")
    return None


def from_result_payload(raw: Any) -> RpcResponse:
    """Build a successful response, unless the payload flags a tool error."""
    result = normalize_result(raw)
    tool_error = _tool_error(result)
    if tool_error:
        return RpcResponse(error=tool_error)
    return RpcResponse(result=result)


def parse_stdio_output(stdout: str) -> RpcResponse:
    """Interpret the standard output of a stdio engine process.

    The first line holding a JSON object with ``result`` or ``error`` wins;
    if no such line exists the whole output is the result.
    """
    for line in stdout.strip().splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            envelope = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(envelope, dict):
            continue
        if envelope.get("error") is not None:
            return RpcResponse(error=_error_info(envelope["error"]))
        if "result" in envelope:
            return from_result_payload(envelope["result"])

    logger.debug("No JSON-RPC envelope in engine output, using raw stdout")
    return from_result_payload(stdout.strip())


def parse_http_body(body: Any, method: Optional[str] = None) -> RpcResponse:
    """Interpret the JSON body returned by the engine's execute endpoint.

    Raises:
        ProtocolError: If the body is neither a success nor an error envelope.
    """
    if not isinstance(body, dict):
        raise ProtocolError("Unknown engine response format", method=method)

    if body.get("success"):
        return from_result_payload(body.get("result"))

    if body.get("error") is not None:
        error: Dict[str, Any] = {
            "message": body.get("message") or body.get("error"),
            "code": body.get("code"),
        }
        return RpcResponse(error=_error_info(error))

    raise ProtocolError("Unknown engine response format", method=method)
