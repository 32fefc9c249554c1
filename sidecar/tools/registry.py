"""
Tool registry.

Maps a server id to how calls for it are dispatched: the built-in
``internal`` table, or an external provider reached through its uniform
``invoke(tool, args)`` primitive. Built once at startup and injected into
the router; nothing here is global.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Protocol

from sidecar.config import DEFAULT_IGNORE, SidecarConfig
from sidecar.utils.errors import ServerNotActiveError

if TYPE_CHECKING:
    from sidecar.results import ToolResult

logger = logging.getLogger(__name__)

INTERNAL_SERVER = "internal"
INTERNAL = "internal"
EXTERNAL = "external"


@dataclass
class ProviderResponse:
    """What an external provider returns for one call.

    ``content`` is the list of kind-tagged blocks (``{"type": "text", ...}``);
    ``structured`` carries a provider's structured result when it has one.
    """
    content: List[Dict[str, Any]] = field(default_factory=list)
    is_error: bool = False
    structured: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"content": self.content, "isError": self.is_error}
        if self.structured is not None:
            data["structuredContent"] = self.structured
        return data


class ToolProvider(Protocol):
    async def invoke(self, tool: str, args: Dict[str, Any]) -> ProviderResponse:
        ...

    async def list_tools(self) -> List[Dict[str, Any]]:
        ...


InternalHandler = Callable[["ToolContext", Dict[str, Any]], Awaitable["ToolResult"]]


@dataclass
class InternalTool:
    name: str
    description: str
    input_schema: Dict[str, Any]
    handler: InternalHandler

    @property
    def required(self) -> List[str]:
        return list(self.input_schema.get("required") or [])


@dataclass
class ToolContext:
    """Everything an internal handler may touch."""
    project_root: Path
    registry: "ToolRegistry"
    tree_ignore: List[str] = field(default_factory=lambda: list(DEFAULT_IGNORE))
    default_depth: int = 3
    shell_timeout: float = 30.0
    max_output_chars: int = 20000


@dataclass
class RegistryEntry:
    server_id: str
    kind: str
    tools: Optional[Dict[str, InternalTool]] = None
    provider: Optional[ToolProvider] = None


class ToolRegistry:
    def __init__(
        self,
        project_root: Path,
        internal_tools: Optional[List[InternalTool]] = None,
        filesystem_servers: Optional[List[str]] = None,
        tree_ignore: Optional[List[str]] = None,
        default_depth: int = 3,
        shell_timeout: float = 30.0,
        max_output_chars: int = 20000,
    ):
        if internal_tools is None:
            from sidecar.tools.internal import INTERNAL_TOOLS
            internal_tools = INTERNAL_TOOLS

        self.project_root = Path(project_root).resolve()
        self.internal_tools: Dict[str, InternalTool] = {tool.name: tool for tool in internal_tools}
        self.filesystem_servers = list(filesystem_servers if filesystem_servers is not None else ["fs", "filesystem"])
        self._providers: Dict[str, ToolProvider] = {}
        self.context = ToolContext(
            project_root=self.project_root,
            registry=self,
            tree_ignore=list(tree_ignore if tree_ignore is not None else DEFAULT_IGNORE),
            default_depth=default_depth,
            shell_timeout=shell_timeout,
            max_output_chars=max_output_chars,
        )

    @classmethod
    def from_config(cls, config: SidecarConfig) -> "ToolRegistry":
        return cls(
            project_root=config.project_root,
            filesystem_servers=config.filesystem_servers,
            tree_ignore=config.tree.ignore,
            default_depth=config.tree.default_depth,
            shell_timeout=config.shell.timeout,
            max_output_chars=config.shell.max_output_chars,
        )

    def register_provider(self, server_id: str, provider: ToolProvider) -> None:
        if server_id == INTERNAL_SERVER:
            raise ValueError(f"'{INTERNAL_SERVER}' is reserved for built-in tools")
        self._providers[server_id] = provider
        logger.info(f"Registered provider: {server_id}")

    def unregister_provider(self, server_id: str) -> None:
        self._providers.pop(server_id, None)

    @property
    def providers(self) -> Dict[str, ToolProvider]:
        return dict(self._providers)

    @property
    def server_ids(self) -> List[str]:
        return list(self._providers) + [INTERNAL_SERVER]

    def resolve(self, server_id: str) -> RegistryEntry:
        if server_id == INTERNAL_SERVER:
            return RegistryEntry(server_id, INTERNAL, tools=self.internal_tools)
        provider = self._providers.get(server_id)
        if provider is None:
            raise ServerNotActiveError(server_id)
        return RegistryEntry(server_id, EXTERNAL, provider=provider)

    def get_provider(self, server_id: str) -> ToolProvider:
        entry = self.resolve(server_id)
        if entry.provider is None:
            raise ServerNotActiveError(server_id)
        return entry.provider

    def is_filesystem_server(self, server_id: str) -> bool:
        return server_id in self.filesystem_servers
