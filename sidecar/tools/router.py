import logging
from pathlib import Path
from typing import Any, Dict

from sidecar.results import StructuredPayload, TextPayload, ToolResult
from sidecar.tools.registry import INTERNAL, ProviderResponse, ToolRegistry
from sidecar.utils.errors import (
    ProviderError,
    RoutingError,
    SidecarError,
    TransportError,
    UnknownToolError,
    describe_error,
)
from sidecar.utils.path_utils import enforce_allowed_path

logger = logging.getLogger(__name__)

PATH_KEYS = ("path", "source", "destination")
UNKNOWN_PROVIDER_ERROR = "Unknown provider tool error"


class ToolRouter:
    """Resolves ``(server, tool, args)`` to a ToolResult.

    ``route`` raises on any failure; ``invoke`` is the boundary primitive used
    by the engine and the HTTP layer and always returns a ToolResult.
    """

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def invoke(self, server: str, tool: str, args: Any = None) -> ToolResult:
        try:
            return await self.route(server, tool, args)
        except Exception as e:
            message = describe_error(e)
            if isinstance(e, SidecarError):
                logger.warning(f"❌ {server}:{tool} failed: {message}")
            else:
                logger.error(f"❌ {server}:{tool} failed unexpectedly: {message}", exc_info=True)
            return ToolResult.failure(message)

    async def route(self, server: str, tool: str, args: Any = None) -> ToolResult:
        if args is None:
            args = {}
        if not isinstance(args, dict):
            raise RoutingError(f"Arguments for '{tool}' must be an object, got {type(args).__name__}")

        entry = self.registry.resolve(server)

        if entry.kind == INTERNAL:
            internal = (entry.tools or {}).get(tool)
            if internal is None:
                raise UnknownToolError(server, tool)
            logger.debug(f"Dispatching internal tool {tool}")
            return await internal.handler(self.registry.context, args)

        if self.registry.is_filesystem_server(server):
            args = self.resolve_filesystem_args(tool, args)

        logger.debug(f"Dispatching {server}:{tool}")
        try:
            response = await entry.provider.invoke(tool, args)
        except SidecarError:
            raise
        except Exception as e:
            raise TransportError(f"Call to {server}:{tool} failed: {e}") from e

        return self.normalize_response(server, response)

    def resolve_filesystem_args(self, tool: str, args: Dict[str, Any]) -> Dict[str, Any]:
        """Resolve path arguments against the project root, refusing escapes.

        Returns a new mapping; the caller's args are left untouched.
        """
        root = self.registry.project_root
        resolved = dict(args)
        for key in PATH_KEYS:
            if isinstance(resolved.get(key), str):
                resolved[key] = str(enforce_allowed_path(resolved[key], root))
        if isinstance(resolved.get("paths"), list):
            resolved["paths"] = [
                str(enforce_allowed_path(item, root)) if isinstance(item, str) else item
                for item in resolved["paths"]
            ]

        if tool == "write_file" and isinstance(resolved.get("path"), str):
            parent = Path(resolved["path"]).parent
            try:
                parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                # The provider reports the real permission error
                logger.warning(f"⚠️ Failed to pre-create directory {parent}: {e}")
        return resolved

    @staticmethod
    def normalize_response(server: str, response: ProviderResponse) -> ToolResult:
        """Turn a provider's content blocks into a ToolResult.

        Text blocks are joined with newlines; without text the raw response
        is kept as structured data. An error flag raises ProviderError.
        """
        texts = [
            block.get("text")
            for block in response.content
            if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)
        ]

        if response.is_error:
            raise ProviderError("\n".join(texts) or UNKNOWN_PROVIDER_ERROR, server=server)

        if texts:
            return ToolResult.ok(TextPayload("\n".join(texts)))
        if response.structured is not None:
            return ToolResult.ok(StructuredPayload(response.structured), is_structured=True)
        return ToolResult.ok(StructuredPayload(response.to_dict()), is_structured=True)
