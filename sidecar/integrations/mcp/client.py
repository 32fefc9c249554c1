from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from typing import Any, Dict, List, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client

from sidecar.tools.registry import ProviderResponse, ToolRegistry
from sidecar.utils.errors import TransportError

logger = logging.getLogger(__name__)


def _block_to_dict(block: Any) -> Dict[str, Any]:
    if isinstance(block, dict):
        return block
    if hasattr(block, "model_dump"):
        return block.model_dump(mode="json", exclude_none=True)
    return {"type": "unknown", "value": str(block)}


class MCPProvider:
    """One connected MCP server, exposed through the uniform provider primitive.

    Supports stdio servers (``{"command": ..., "args": [...], "env": {...}}``)
    and streamable HTTP servers (``{"transport": "http", "url": ...}``).
    """

    def __init__(self, name: str, config: Dict[str, Any]):
        self.name = name
        self.config = config
        self.session: Optional[ClientSession] = None

    @property
    def is_http(self) -> bool:
        return self.config.get("transport") == "http"

    async def connect(self, stack: AsyncExitStack) -> None:
        """Open the transport and session inside ``stack``; closed with it."""
        if self.is_http:
            url = self.config.get("url")
            if not url:
                raise ValueError(f"MCP server '{self.name}' uses http transport but has no url")
            read, write, _ = await stack.enter_async_context(
                streamablehttp_client(url, headers=self.config.get("headers"))
            )
        else:
            command = self.config.get("command")
            if not command:
                raise ValueError(f"MCP server '{self.name}' has no command")
            params = StdioServerParameters(
                command=command,
                args=[str(arg) for arg in self.config.get("args") or []],
                env=self.config.get("env") or None,
            )
            read, write = await stack.enter_async_context(stdio_client(params))

        session = await stack.enter_async_context(ClientSession(read, write))
        await session.initialize()
        self.session = session

    def _require_session(self) -> ClientSession:
        if self.session is None:
            raise TransportError(f"MCP server '{self.name}' is not connected")
        return self.session

    async def list_tools(self) -> List[Dict[str, Any]]:
        session = self._require_session()
        try:
            result = await session.list_tools()
        except Exception as e:
            raise TransportError(f"Listing tools on '{self.name}' failed: {e}") from e
        return [
            {
                "name": tool.name,
                "description": tool.description or "",
                "inputSchema": tool.inputSchema or {},
            }
            for tool in result.tools
        ]

    async def invoke(self, tool: str, args: Dict[str, Any]) -> ProviderResponse:
        session = self._require_session()
        try:
            result = await session.call_tool(tool, arguments=args or {})
        except Exception as e:
            raise TransportError(f"Call to {self.name}:{tool} failed: {e}") from e

        logger.debug(f"MCP call {self.name}:{tool} -> isError={getattr(result, 'isError', False)}")
        return ProviderResponse(
            content=[_block_to_dict(block) for block in (result.content or [])],
            is_error=bool(getattr(result, "isError", False)),
            structured=getattr(result, "structuredContent", None),
        )


class ProviderHub:
    """Owns the lifetime of every connected MCP server."""

    def __init__(self):
        self._stack = AsyncExitStack()
        self.providers: Dict[str, MCPProvider] = {}

    async def connect_all(
        self,
        server_configs: Dict[str, Dict[str, Any]],
        registry: Optional[ToolRegistry] = None,
    ) -> Dict[str, MCPProvider]:
        """Connect every configured server; failures are logged and skipped."""
        for name, config in server_configs.items():
            provider = MCPProvider(name, config)
            # A failed connect may leave a half-open transport; give each its own stack
            server_stack = AsyncExitStack()
            try:
                await provider.connect(server_stack)
            except Exception as e:
                logger.error(f"❌ [{name}] Connection failed: {e}")
                try:
                    await server_stack.aclose()
                except Exception as close_error:
                    logger.debug(f"[{name}] Cleanup after failed connect raised: {close_error}")
                continue

            await self._stack.enter_async_context(server_stack)
            self.providers[name] = provider
            if registry is not None:
                registry.register_provider(name, provider)
            logger.info(f"✅ [{name}] Connected")
        return dict(self.providers)

    async def aclose(self) -> None:
        try:
            await self._stack.aclose()
        finally:
            self.providers.clear()
            self._stack = AsyncExitStack()
