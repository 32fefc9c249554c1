"""
Context-gathering macros.

Each macro fans out several independent tool calls through an invoker and
assembles one text block ready to paste into an LLM chat.
"""

import asyncio
import logging
from typing import Any, List, Optional, Protocol

from sidecar.formatter import language_for_path
from sidecar.results import CatalogPayload, ListingPayload, TextPayload, ToolResult
from sidecar.utils.errors import NoChangesError

logger = logging.getLogger(__name__)

DEFAULT_PROTOCOL = "Protocol not found."
DEFAULT_REVIEW = "Review these changes:\n"


class Invoker(Protocol):
    async def invoke(self, server: str, tool: str, args: Any = None) -> ToolResult:
        ...


def _text(result: ToolResult, fallback: str) -> str:
    if result.success and isinstance(result.payload, TextPayload) and result.payload.text:
        return result.payload.text
    if not result.success:
        return f"{fallback} {result.error}".strip()
    return fallback


async def build_context_report(invoker: Invoker, protocol_prompt: Optional[str] = None, prefix: str = "mcp") -> str:
    """Protocol + tool catalog + project tree."""
    list_result, tree_result = await asyncio.gather(
        invoker.invoke("internal", "list", {}),
        invoker.invoke("internal", "get_tree", {"root": ".", "depth": 3}),
    )

    tools_section = ""
    if list_result.success and isinstance(list_result.payload, CatalogPayload):
        tools_section = "## Available Tools\n" + "\n".join(
            f"- `{prefix}:{entry.server}:{entry.name}`: {entry.description}"
            for entry in list_result.payload.entries
        )
    else:
        logger.warning(f"Tool catalog unavailable for context report: {list_result.error}")

    tree_section = "## Project Structure\n```\n" + _text(tree_result, "(Error reading tree)") + "\n```"

    return "\n".join([
        "# System Context Initialization",
        "",
        "## Protocol & Instructions",
        protocol_prompt or DEFAULT_PROTOCOL,
        "",
        tools_section,
        "",
        tree_section,
        "",
        "Ready.",
    ])


async def _file_report(invoker: Invoker, path: str) -> str:
    diff_result, content_result = await asyncio.gather(
        invoker.invoke("internal", "get_file_diff", {"path": path}),
        invoker.invoke("internal", "read_file", {"path": path}),
    )
    return "\n".join([
        f"\n=== FILE REPORT: {path} ===",
        "\n[PART 1: CHANGES (Git Diff)]",
        f"file: {path} (diff)",
        "```diff",
        _text(diff_result, "(No diff info)"),
        "```",
        "\n[PART 2: FULL CURRENT CONTENT]",
        f"file: {path}",
        "```" + language_for_path(path),
        _text(content_result, "(Error reading content)"),
        "```",
    ])


async def list_changed_files(invoker: Invoker) -> List[str]:
    result = await invoker.invoke("internal", "git_changed_files", {})
    if not result.success:
        raise NoChangesError(f"Could not list changed files: {result.error}")
    if not isinstance(result.payload, ListingPayload) or not result.payload.items:
        raise NoChangesError()
    return list(result.payload.items)


async def build_review_report(invoker: Invoker, review_prompt: Optional[str] = None) -> str:
    """Review request with diff and full content for every changed file.

    Raises NoChangesError when the working tree is clean.
    """
    files = await list_changed_files(invoker)
    logger.info(f"Gathering diff & content for {len(files)} files")
    reports = await asyncio.gather(*(_file_report(invoker, path) for path in files))

    return "\n".join([
        "# Code Review Request",
        "",
        review_prompt or DEFAULT_REVIEW,
        "",
        "## File Analysis",
        *reports,
    ])
