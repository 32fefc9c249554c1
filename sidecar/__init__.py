"""MCP Sidecar: scan free-form text for tool commands, route and run them."""

__version__ = "0.1.0"
