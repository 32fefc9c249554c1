"""
Built-in tools served under the ``internal`` server id.

Each handler receives the shared ToolContext and the call's arguments,
validates its own required arguments and the project boundary, and returns
a ToolResult. Errors are raised; the router turns them into failed results.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from sidecar.results import (
    CatalogEntry,
    CatalogPayload,
    EntryListPayload,
    ListingPayload,
    TextPayload,
    ToolResult,
)
from sidecar.tools.registry import INTERNAL_SERVER, InternalTool, ToolContext
from sidecar.tools.support import (
    generate_tree,
    list_entries,
    read_text_file,
    run_git,
    run_process,
    run_shell,
)
from sidecar.utils.errors import MissingArgumentError, RoutingError, ToolExecutionError
from sidecar.utils.path_utils import enforce_allowed_path, relative_to_root

logger = logging.getLogger(__name__)

NO_CHANGES = "No changes detected."
NO_FILE_DIFF = "(No diff - file is unchanged)"
UNTRACKED_NOTICE = "🟢 (New Untracked File) - Entire content is new."


def _require(tool: str, args: Dict[str, Any], name: str) -> str:
    value = args.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MissingArgumentError(tool, name)
    return str(value)


def _optional_int(tool: str, args: Dict[str, Any], name: str, minimum: Optional[int] = None) -> Optional[int]:
    value = args.get(name)
    if value is None or value == "":
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise RoutingError(f"Tool '{tool}' expects an integer for '{name}', got {value!r}")
    if minimum is not None and number < minimum:
        raise RoutingError(f"Tool '{tool}' expects '{name}' to be at least {minimum}, got {number}")
    return number


def _internal_catalog(detailed: bool) -> List[CatalogEntry]:
    return [
        CatalogEntry(
            server=INTERNAL_SERVER,
            name=tool.name,
            description=tool.description,
            input_schema=tool.input_schema if detailed else None,
        )
        for tool in INTERNAL_TOOLS
    ]


async def list_tools(ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
    """Summary of every server's tools, or full schemas for one server."""
    server = args.get("server")
    entries: List[CatalogEntry] = []

    if server:
        server = str(server)
        if server == INTERNAL_SERVER:
            entries = _internal_catalog(detailed=True)
        else:
            provider = ctx.registry.get_provider(server)
            for tool in await provider.list_tools():
                entries.append(CatalogEntry(
                    server=server,
                    name=tool["name"],
                    description=tool.get("description") or "",
                    input_schema=tool.get("inputSchema") or {},
                ))
    else:
        for name, provider in ctx.registry.providers.items():
            try:
                tools = await provider.list_tools()
            except Exception as e:
                logger.warning(f"Could not list tools for {name}: {e}")
                entries.append(CatalogEntry(server=name, name=f"Error: {e}"))
                continue
            entries.extend(
                CatalogEntry(server=name, name=tool["name"], description=tool.get("description") or "")
                for tool in tools
            )
        entries.extend(_internal_catalog(detailed=False))

    return ToolResult.ok(CatalogPayload(entries), is_tool_list=True)


async def list_servers(ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
    return ToolResult.ok(ListingPayload(ctx.registry.server_ids))


async def get_tree(ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
    root = str(args.get("root") or ".")
    depth = _optional_int("get_tree", args, "depth")
    if depth is None:
        depth = ctx.default_depth

    target = enforce_allowed_path(root, ctx.project_root)
    if not target.is_dir():
        raise ToolExecutionError(f"Not a directory: {root}", tool="get_tree")

    header = "Project Root" if root in (".", "./") else f"{root.rstrip('/')}/"
    tree = await asyncio.to_thread(generate_tree, target, depth, ctx.tree_ignore)
    return ToolResult.ok(TextPayload(f"{header}\n{tree}"))


async def list_directory(ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
    path = str(args.get("path") or ".")
    target = enforce_allowed_path(path, ctx.project_root)
    entries = await asyncio.to_thread(list_entries, target, ctx.project_root)
    return ToolResult.ok(EntryListPayload(entries), is_structured=True)


async def read_file(ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
    path = _require("read_file", args, "path")
    max_lines = _optional_int("read_file", args, "max_lines", minimum=1)
    target = enforce_allowed_path(path, ctx.project_root)
    content = await asyncio.to_thread(read_text_file, target, ctx.project_root, max_lines)
    return ToolResult.ok(TextPayload(content))


async def git_status(ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
    output = await run_git(["status"], ctx.project_root)
    return ToolResult.ok(TextPayload(output))


async def git_diff(ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
    output = await run_git(["diff"], ctx.project_root)
    return ToolResult.ok(TextPayload(output if output.strip() else NO_CHANGES))


def _split_lines(output: str) -> List[str]:
    return [line.strip() for line in output.splitlines() if line.strip()]


async def git_changed_files(ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
    """Tracked changes against HEAD plus untracked files, de-duplicated."""
    tracked, untracked = await asyncio.gather(
        run_git(["diff", "--name-only", "HEAD"], ctx.project_root),
        run_git(["ls-files", "--others", "--exclude-standard"], ctx.project_root),
    )
    files: List[str] = []
    for name in _split_lines(tracked) + _split_lines(untracked):
        if name not in files:
            files.append(name)
    return ToolResult.ok(ListingPayload(files))


async def get_file_diff(ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
    """Diff of one file against HEAD, falling back to the staged diff."""
    path = _require("get_file_diff", args, "path")
    target = enforce_allowed_path(path, ctx.project_root)
    rel = relative_to_root(target, ctx.project_root)

    # Fails without a HEAD commit; the staged diff still applies then
    result = await run_process(["git", "diff", "HEAD", "--", rel], ctx.project_root)
    diff = result.stdout if result.returncode == 0 else ""

    if not diff.strip():
        diff = await run_git(["diff", "--cached", "--", rel], ctx.project_root)

    if not diff.strip():
        untracked = await run_git(["ls-files", "--others", "--exclude-standard", "--", rel], ctx.project_root)
        diff = UNTRACKED_NOTICE if untracked.strip() else NO_FILE_DIFF

    return ToolResult.ok(TextPayload(diff))


async def execute_command(ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
    command = _require("execute_command", args, "command")
    timeout = args.get("timeout")
    try:
        timeout = float(timeout) if timeout not in (None, "") else ctx.shell_timeout
    except (TypeError, ValueError):
        raise RoutingError(f"Tool 'execute_command' expects a number for 'timeout', got {timeout!r}")
    if timeout <= 0:
        timeout = ctx.shell_timeout

    output = await run_shell(command, ctx.project_root, timeout, ctx.max_output_chars)
    return ToolResult.ok(TextPayload(output))


INTERNAL_TOOLS: List[InternalTool] = [
    InternalTool(
        name="list",
        description="List available tools. Args: server (string, optional)",
        input_schema={
            "type": "object",
            "properties": {
                "server": {
                    "type": "string",
                    "description": "Filter tools by server name (e.g. 'internal', 'fs')",
                },
            },
        },
        handler=list_tools,
    ),
    InternalTool(
        name="list_servers",
        description="List the ids of all active servers",
        input_schema={"type": "object", "properties": {}},
        handler=list_servers,
    ),
    InternalTool(
        name="get_tree",
        description="Get project structure tree. Args: root (string, relative path), depth (number, default 3)",
        input_schema={
            "type": "object",
            "properties": {
                "root": {
                    "type": "string",
                    "description": "Relative path to start tree from (e.g. 'src/components')",
                },
                "depth": {
                    "type": "number",
                    "description": "Recursion depth (default 3)",
                },
            },
        },
        handler=get_tree,
    ),
    InternalTool(
        name="list_directory",
        description="List files in a directory",
        input_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Relative path from project root"},
            },
        },
        handler=list_directory,
    ),
    InternalTool(
        name="read_file",
        description="Read file content",
        input_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Relative path from project root"},
                "max_lines": {"type": "number", "description": "Only return the first N lines"},
            },
            "required": ["path"],
        },
        handler=read_file,
    ),
    InternalTool(
        name="git_status",
        description="Show working tree status (git status)",
        input_schema={"type": "object", "properties": {}},
        handler=git_status,
    ),
    InternalTool(
        name="git_diff",
        description="Show uncommitted changes (git diff)",
        input_schema={"type": "object", "properties": {}},
        handler=git_diff,
    ),
    InternalTool(
        name="git_changed_files",
        description="List files that have changed (modified/added) relative to HEAD, including untracked files",
        input_schema={"type": "object", "properties": {}},
        handler=git_changed_files,
    ),
    InternalTool(
        name="get_file_diff",
        description="Get git diff for a specific file (shows old vs new code)",
        input_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Relative path to file"},
            },
            "required": ["path"],
        },
        handler=get_file_diff,
    ),
    InternalTool(
        name="execute_command",
        description="Run a shell command in the project root (bounded by timeout and output size)",
        input_schema={
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Shell command to run"},
                "timeout": {"type": "number", "description": "Timeout in seconds (default 30)"},
            },
            "required": ["command"],
        },
        handler=execute_command,
    ),
]
