from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Request  # type: ignore
from fastapi.responses import JSONResponse  # type: ignore
from pydantic import BaseModel  # type: ignore

from sidecar import __version__
from sidecar.config import SidecarConfig
from sidecar.parsing import parse_single_command, scan_commands
from sidecar.tools import ToolRegistry, ToolRouter
from sidecar.utils.errors import RoutingError, SidecarError, describe_error

logger = logging.getLogger(__name__)


class InvokeRequest(BaseModel):
    serverName: Optional[str] = None
    toolName: Optional[str] = None
    args: Optional[Any] = None
    command: Optional[str] = None


class ParseRequest(BaseModel):
    text: str


router = APIRouter()


def get_tool_router(request: Request) -> ToolRouter:
    return request.app.state.tool_router


def get_registry(request: Request) -> ToolRegistry:
    return request.app.state.registry


def get_config(request: Request) -> SidecarConfig:
    return request.app.state.config


def _format_error_response(error: Exception, status_code: int = 500) -> HTTPException:
    """Format error as HTTPException with structured error detail."""
    if isinstance(error, SidecarError):
        return HTTPException(status_code=status_code, detail={"error": error.to_dict()})
    wrapped = SidecarError(
        message=str(error),
        code="INTERNAL_ERROR",
        recoverable=False,
        suggested_action="check_server_logs",
    )
    return HTTPException(status_code=status_code, detail={"error": wrapped.to_dict()})


@router.post("/api/invoke")
async def invoke_tool(
    body: InvokeRequest,
    tool_router: ToolRouter = Depends(get_tool_router),
    config: SidecarConfig = Depends(get_config),
):
    """Run one tool call.

    Accepts either ``{serverName, toolName, args}`` or ``{command}``. Any
    failure is answered with ``500 {"success": false, "error": ...}``.
    """
    server, tool, args = body.serverName, body.toolName, body.args
    try:
        if body.command:
            parsed = parse_single_command(body.command, config.command_prefix)
            server, tool, args = parsed.server, parsed.tool, parsed.args
        if not server or not tool:
            raise RoutingError("Either 'command' or both 'serverName' and 'toolName' are required")

        result = await tool_router.route(server, tool, args if args is not None else {})
    except Exception as e:
        logger.error(f"Error: {describe_error(e)}")
        return JSONResponse(status_code=500, content={"success": False, "error": describe_error(e)})

    return result.to_dict()


@router.post("/api/parse")
async def parse_text(body: ParseRequest, config: SidecarConfig = Depends(get_config)) -> Dict[str, Any]:
    """Scan text for commands without executing them."""
    try:
        commands = scan_commands(body.text, config.command_prefix)
    except Exception as e:
        logger.error(f"parse_text error: {e}")
        raise _format_error_response(e)
    return {
        "commands": [command.to_dict() for command in commands],
        "count": len(commands),
        "invalid": sum(1 for command in commands if not command.is_valid),
    }


@router.get("/api/health")
async def health(
    registry: ToolRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    return {
        "status": "ok",
        "version": __version__,
        "projectRoot": str(registry.project_root),
        "servers": registry.server_ids,
    }
