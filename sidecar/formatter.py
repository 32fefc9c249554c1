"""
Result formatting.

Turns a payload (plus the tool and args that produced it) into the single
text block handed to the output sink. Dispatch is on the payload variant;
for plain text the producing tool picks the fence.
"""

import json
from typing import Any, Dict, List, Optional

from sidecar.results import (
    CatalogEntry,
    CatalogPayload,
    EntryListPayload,
    FileEntry,
    ListingPayload,
    Payload,
    StructuredPayload,
    TextPayload,
)

LANGUAGE_MAP: Dict[str, str] = {
    "ts": "typescript",
    "tsx": "typescript",
    "js": "javascript",
    "jsx": "javascript",
    "mjs": "javascript",
    "cjs": "javascript",
    "json": "json",
    "html": "html",
    "css": "css",
    "scss": "scss",
    "md": "markdown",
    "py": "python",
    "go": "go",
    "rs": "rust",
    "java": "java",
    "kt": "kotlin",
    "rb": "ruby",
    "php": "php",
    "c": "c",
    "h": "c",
    "cpp": "cpp",
    "hpp": "cpp",
    "cs": "csharp",
    "swift": "swift",
    "sh": "bash",
    "bash": "bash",
    "sql": "sql",
    "toml": "toml",
    "xml": "xml",
    "yaml": "yaml",
    "yml": "yaml",
}

EMPTY_RESULT = "(empty result)"

_DIFF_TOOLS = ("git_diff", "get_file_diff")
_PLAIN_FENCE_TOOLS = ("git_status", "execute_command")


def language_for_path(path: Optional[str]) -> str:
    """Fence language for a file path, or '' when the extension is unknown."""
    if not path:
        return ""
    name = str(path).replace("\\", "/").rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return LANGUAGE_MAP.get(name.rsplit(".", 1)[-1].lower(), "")


def _fence(content: str, lang: str = "") -> str:
    return f"```{lang}\n{content}\n```"


def _arg(args: Any, key: str) -> Optional[str]:
    if isinstance(args, dict) and args.get(key) not in (None, ""):
        return str(args[key])
    return None


def format_tool_list(entries: List[CatalogEntry]) -> str:
    """Render a tool catalog grouped by server."""
    detailed = any(entry.input_schema is not None for entry in entries)
    lines: List[str] = []
    if detailed:
        lines.append("📦 MCP TOOLS DETAILS (Full Schema)\n")
    else:
        lines.append("📦 MCP TOOLS SUMMARY (Names Only)\n")
        lines.append("Tip: Run `mcp:internal:list({server: \"<id>\"})` to see argument details.\n")

    if not entries:
        lines.append("(no tools available)")

    for server in CatalogPayload(entries).servers:
        lines.append(f"SERVER: {server}")
        for entry in entries:
            if entry.server != server:
                continue
            lines.append(f"  ├─ 🛠️  {entry.name}")
            if entry.description:
                lines.append(f"  │    Desc: {entry.description.replace(chr(10), ' ')}")

            schema = entry.input_schema or {}
            properties = schema.get("properties") or {}
            if properties:
                required = set(schema.get("required") or [])
                lines.append("  │    Args:")
                for key, prop in properties.items():
                    prop = prop if isinstance(prop, dict) else {}
                    arg_line = f"  │      └─ {key}"
                    if key in required:
                        arg_line += "*"
                    if prop.get("type"):
                        arg_line += f" ({prop['type']})"
                    if prop.get("description"):
                        arg_line += f": {prop['description']}"
                    lines.append(arg_line)
            lines.append("  │")
        lines.append("")

    return "\n".join(lines)


def _format_listing(items: List[str]) -> str:
    if not items:
        return "📦 AVAILABLE ITEMS\n(none)"
    return "📦 AVAILABLE ITEMS\n" + "\n".join(f"- {item}" for item in items)


def _format_entries(entries: List[FileEntry], args: Any) -> str:
    dirs = [f"{entry.name}/" for entry in entries if entry.is_directory]
    files = [entry.name for entry in entries if not entry.is_directory]
    path = _arg(args, "path") or "."
    return f"folder: {path}\n" + _fence("\n".join(dirs + files), "text")


def _format_text(tool: str, args: Any, text: str) -> str:
    if not text:
        text = EMPTY_RESULT

    if tool == "read_file" and _arg(args, "path"):
        path = _arg(args, "path")
        return f"file: {path}\n" + _fence(text, language_for_path(path))

    if tool == "get_tree":
        root = _arg(args, "root") or "."
        return f"folder: {root}\n" + _fence(text, "text")

    if tool in _PLAIN_FENCE_TOOLS:
        return _fence(text, "text")

    if tool in _DIFF_TOOLS:
        path = _arg(args, "path")
        header = f"file: {path} (diff)\n" if path else ""
        return header + _fence(text, "diff")

    return text


def format_result(tool: str, args: Any, payload: Optional[Payload]) -> str:
    """Render one tool result as canonical text.

    Total over every payload variant, and deterministic: the same input
    always yields byte-identical output.
    """
    if payload is None:
        return EMPTY_RESULT
    if isinstance(payload, ListingPayload):
        return _format_listing(payload.items)
    if isinstance(payload, CatalogPayload):
        return format_tool_list(payload.entries)
    if isinstance(payload, EntryListPayload):
        return _format_entries(payload.entries, args)
    if isinstance(payload, StructuredPayload):
        return json.dumps(payload.data, indent=2, ensure_ascii=False)
    if isinstance(payload, TextPayload):
        return _format_text(tool, args, payload.text)
    raise TypeError(f"Unknown payload type: {type(payload).__name__}")
