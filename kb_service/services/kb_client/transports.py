"""Transports carrying one RPC call to the knowledge base engine.

Two deployments are supported: the engine spawned as a subprocess speaking
JSON-RPC over stdio, or the engine running as an HTTP service with an
``/execute`` endpoint. Transports perform exactly one attempt; retries are
the caller's concern.
"""

import asyncio
import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

import httpx
from dotenv import dotenv_values

from kb_service.core.config import Settings
from kb_service.core.errors import RpcTimeoutError, TransportError, UpstreamError
from kb_service.core.logging import get_logger
from kb_service.models.rpc import RpcRequest, RpcResponse
from kb_service.services.kb_client.normalizer import parse_http_body, parse_stdio_output

logger = get_logger(__name__)


class BaseTransport(ABC):
    """One request in, one normalized response out."""

    mode: str = "unknown"

    @abstractmethod
    async def send(self, request: RpcRequest, timeout: float) -> RpcResponse:
        """Send a request and return the normalized response.

        Raises:
            TransportError: Process or network failure.
            RpcTimeoutError: The deadline passed.
            ProtocolError: The response envelope was malformed.
        """
        pass

    async def close(self) -> None:
        """Release transport resources."""
        pass


class StdioTransport(BaseTransport):
    """Spawn the engine per call and exchange one JSON-RPC line."""

    mode = "stdio"

    def __init__(
        self,
        command: List[str],
        cwd: Optional[str] = None,
        env_file: Optional[str] = None,
    ):
        if not command:
            raise ValueError("Engine command must not be empty")
        self.command = list(command)
        self.cwd = cwd
        self.env_file = env_file or (str(Path(cwd) / ".env") if cwd else None)

    def _child_env(self) -> Dict[str, str]:
        env = dict(os.environ)
        if self.env_file and Path(self.env_file).is_file():
            for key, value in dotenv_values(self.env_file).items():
                if value is not None:
                    env[key] = value
        return env

    async def send(self, request: RpcRequest, timeout: float) -> RpcResponse:
        line = json.dumps(request.to_jsonrpc()) + "\n"

        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                cwd=self.cwd,
                env=self._child_env(),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TransportError(
                f"Failed to start engine process: {e}", method=request.method
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(line.encode("utf-8")), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise RpcTimeoutError(
                f"Engine call {request.method} timed out after {timeout}s",
                method=request.method,
                timeout=timeout,
            ) from e

        if process.returncode != 0:
            error_text = stderr.decode("utf-8", errors="replace").strip()
            raise TransportError(
                f"Engine process exited with code {process.returncode}: {error_text[:500]}",
                method=request.method,
                exit_code=process.returncode,
            )

        if stderr:
            logger.debug("Engine stderr for %s: %s", request.method, stderr[:500])

        return parse_stdio_output(stdout.decode("utf-8", errors="replace"))


class HttpTransport(BaseTransport):
    """POST each call to the engine's ``/execute`` endpoint."""

    mode = "http"

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None):
        if not base_url:
            raise ValueError("Engine URL is required for the http transport")
        self.base_url = base_url.rstrip("/")
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def send(self, request: RpcRequest, timeout: float) -> RpcResponse:
        client = self._get_client()
        url = f"{self.base_url}/execute"

        try:
            response = await client.post(
                url, json=request.to_http_body(), timeout=httpx.Timeout(timeout)
            )
        except httpx.TimeoutException as e:
            raise RpcTimeoutError(
                f"Engine call {request.method} timed out after {timeout}s",
                method=request.method,
                timeout=timeout,
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(
                f"HTTP request to engine failed: {e}", method=request.method
            ) from e

        if response.status_code >= 500:
            raise TransportError(
                f"Engine returned HTTP {response.status_code}",
                method=request.method,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise UpstreamError(
                f"Engine rejected request with HTTP {response.status_code}: {response.text[:200]}",
                method=request.method,
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            body = None
        return parse_http_body(body, method=request.method)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


def create_transport(settings: Settings) -> BaseTransport:
    """Build the transport selected by ``settings.transport``."""
    if settings.transport == "http":
        return HttpTransport(settings.server_url or "")
    return StdioTransport(
        command=settings.server_command,
        cwd=settings.server_cwd,
        env_file=settings.server_env_file,
    )
