"""
HTTP client for a running sidecar server.

Implements the same ``invoke(server, tool, args)`` primitive as the
in-process router, so the execution engine can drive a remote server.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx  # type: ignore

from sidecar.results import ToolResult
from sidecar.utils.errors import TransportError

logger = logging.getLogger(__name__)


class SidecarClient:
    """Async client for the sidecar HTTP API.

    Usage:
        async with SidecarClient("http://127.0.0.1:8080") as client:
            result = await client.invoke("internal", "git_status")
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8080",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "SidecarClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        try:
            return await self._client.post(path, json=payload)
        except httpx.HTTPError as e:
            raise TransportError(f"Connection to sidecar at {self.base_url} failed: {e}") from e

    async def invoke(self, server: str, tool: str, args: Any = None) -> ToolResult:
        """Call a tool on the server; every failure becomes a failed ToolResult."""
        try:
            response = await self._post(
                "/api/invoke",
                {"serverName": server, "toolName": tool, "args": args if args is not None else {}},
            )
            data = response.json()
        except TransportError as e:
            logger.error(str(e))
            return ToolResult.failure(str(e))
        except ValueError:
            return ToolResult.failure(f"Invalid response from sidecar (HTTP {response.status_code})")

        if not isinstance(data, dict):
            return ToolResult.failure(f"Invalid response from sidecar (HTTP {response.status_code})")
        return ToolResult.from_dict(data)

    async def invoke_command(self, command: str) -> ToolResult:
        try:
            response = await self._post("/api/invoke", {"command": command})
            return ToolResult.from_dict(response.json())
        except TransportError as e:
            return ToolResult.failure(str(e))
        except ValueError:
            return ToolResult.failure(f"Invalid response from sidecar (HTTP {response.status_code})")

    async def parse(self, text: str) -> List[Dict[str, Any]]:
        response = await self._post("/api/parse", {"text": text})
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(f"Parse request failed: {e}") from e
        return list(response.json().get("commands", []))

    async def health(self) -> Dict[str, Any]:
        try:
            response = await self._client.get("/api/health")
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(f"Sidecar at {self.base_url} is not reachable: {e}") from e
        return response.json()
