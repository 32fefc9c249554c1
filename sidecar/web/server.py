"""Sidecar web server entry point."""

import logging
from typing import Optional

import uvicorn  # type: ignore

from sidecar.config import SidecarConfig
from sidecar.web.app import create_app

logger = logging.getLogger(__name__)


def start_server(host: Optional[str] = None, port: Optional[int] = None, config: Optional[SidecarConfig] = None) -> None:
    """Start the web server programmatically.

    Args:
        host: Host to bind to (defaults to the configured host)
        port: Port to bind to (defaults to the configured port)
        config: Preloaded config; loaded from disk and env when omitted
    """
    config = config or SidecarConfig.load_config()
    config.setup_logging()
    app = create_app(config)

    host = host or config.host
    port = port or config.port
    print("\n\033[96m=== MCP Sidecar ===\033[0m")
    print(f"\033[96mProject root: {config.project_root}\033[0m")
    print(f"\033[96mListening on http://{host}:{port} (docs: /api/docs)\033[0m\n")

    uvicorn.run(app, host=host, port=port, log_level=config.logging.level.lower())


def main() -> int:
    """Entry point for the ``sidecar-web`` script."""
    try:
        start_server()
    except Exception as e:
        logger.error(f"Failed to start sidecar server: {e}")
        print(f"Error: Failed to start sidecar server: {e}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
