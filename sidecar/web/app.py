import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI  # type: ignore
from fastapi.middleware.cors import CORSMiddleware  # type: ignore

from sidecar import __version__
from sidecar.config import SidecarConfig
from sidecar.integrations.mcp import ProviderHub
from sidecar.tools import ToolRegistry, ToolRouter
from sidecar.web.routes import router

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[SidecarConfig] = None,
    registry: Optional[ToolRegistry] = None,
    connect_providers: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The registry is built up front so routes work even without a lifespan;
    MCP providers are connected on startup and closed on shutdown.
    """
    config = config or SidecarConfig.load_config()
    registry = registry or ToolRegistry.from_config(config)
    hub = ProviderHub()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if connect_providers:
            await hub.connect_all(config.provider_configs(), registry)
        logger.info(f"🚀 Sidecar serving {registry.project_root} with servers: {', '.join(registry.server_ids)}")
        try:
            yield
        finally:
            for name in list(hub.providers):
                registry.unregister_provider(name)
            await hub.aclose()

    app = FastAPI(
        title="MCP Sidecar",
        description="Scans, routes and executes MCP tool commands for a local project",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    origins_env = os.getenv("SIDECAR_CORS_ORIGINS", "").strip()
    origins_list = [o.strip() for o in origins_env.split(",") if o.strip()] or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.registry = registry
    app.state.tool_router = ToolRouter(registry)
    app.state.hub = hub

    app.include_router(router)
    return app
