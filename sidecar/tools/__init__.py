from sidecar.tools.registry import (
    INTERNAL_SERVER,
    InternalTool,
    ProviderResponse,
    RegistryEntry,
    ToolContext,
    ToolProvider,
    ToolRegistry,
)
from sidecar.tools.router import ToolRouter

__all__ = [
    "INTERNAL_SERVER",
    "InternalTool",
    "ProviderResponse",
    "RegistryEntry",
    "ToolContext",
    "ToolProvider",
    "ToolRegistry",
    "ToolRouter",
]
