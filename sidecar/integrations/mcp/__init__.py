from sidecar.integrations.mcp.client import MCPProvider, ProviderHub

__all__ = ["MCPProvider", "ProviderHub"]
