import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add the repository root to the Python path so tests can import 'sidecar'
# without an editable install. Executed by pytest before collection.
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from sidecar.results import ToolResult  # noqa: E402
from sidecar.sinks import MemorySink  # noqa: E402
from sidecar.tools import ProviderResponse, ToolRegistry, ToolRouter  # noqa: E402


# =============================================================================
# FAKES
# =============================================================================

class FakeProvider:
    """In-memory stand-in for a connected MCP server."""

    def __init__(
        self,
        tools: Optional[List[Dict[str, Any]]] = None,
        responses: Optional[Dict[str, ProviderResponse]] = None,
        raises: Optional[Exception] = None,
    ):
        self.tools = tools or []
        self.responses = responses or {}
        self.raises = raises
        self.calls: List[tuple] = []

    async def list_tools(self) -> List[Dict[str, Any]]:
        if self.raises is not None:
            raise self.raises
        return list(self.tools)

    async def invoke(self, tool: str, args: Dict[str, Any]) -> ProviderResponse:
        self.calls.append((tool, args))
        if self.raises is not None:
            raise self.raises
        return self.responses.get(tool, ProviderResponse(content=[{"type": "text", "text": f"{tool} ok"}]))


class ScriptedInvoker:
    """Invoker returning queued results per tool and recording every call."""

    def __init__(self, results: Optional[Dict[str, ToolResult]] = None):
        self.results = results or {}
        self.calls: List[tuple] = []

    async def invoke(self, server: str, tool: str, args: Any = None) -> ToolResult:
        self.calls.append((server, tool, args))
        result = self.results.get(tool)
        if result is None:
            return ToolResult.failure(f"Unknown {server} tool: {tool}")
        return result


def text_block(text: str) -> Dict[str, Any]:
    return {"type": "text", "text": text}


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def project_dir(tmp_path) -> Path:
    """A small project tree used by the internal tools."""
    root = tmp_path / "project"
    (root / "src" / "components").mkdir(parents=True)
    (root / "node_modules" / "dep").mkdir(parents=True)
    (root / "src" / "app.ts").write_text("const a = 1;\n", encoding="utf-8")
    (root / "src" / "components" / "Button.tsx").write_text("export {}\n", encoding="utf-8")
    (root / "README.md").write_text("# Demo\n\nline 3\nline 4\n", encoding="utf-8")
    (root / "package.json").write_text('{"name": "demo"}\n', encoding="utf-8")
    return root


@pytest.fixture
def registry(project_dir) -> ToolRegistry:
    return ToolRegistry(project_root=project_dir)


@pytest.fixture
def tool_router(registry) -> ToolRouter:
    return ToolRouter(registry)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider(
        tools=[
            {"name": "read_file", "description": "Read a file", "inputSchema": {"type": "object"}},
            {"name": "write_file", "description": "Write a file", "inputSchema": {"type": "object"}},
        ]
    )


@pytest.fixture
def memory_sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def isolated_env(monkeypatch, tmp_path):
    """Keep user-level config and env overrides out of config loading."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setenv("APPDATA", str(tmp_path / "appdata"))
    for name in ("PROJECT_ROOT", "HOST", "PORT", "SIDECAR_CONFIG_PATH", "SIDECAR_MCP_CONFIG", "SIDECAR_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SIDECAR_MCP_CONFIG", str(tmp_path / "missing.mcp.config.json"))
    return tmp_path
