"""Tests for the built-in ``internal`` tools.

Covers:
- Tool catalog and server listing
- Tree rendering, directory listing and file reads
- Project boundary enforcement and argument validation
- Version-control tools against a throwaway repository
- Bounded shell execution
"""

import os
import subprocess

import pytest

from conftest import FakeProvider
from sidecar.results import CatalogPayload, EntryListPayload, ListingPayload, TextPayload
from sidecar.tools import ToolRegistry, ToolRouter
from sidecar.tools.internal import NO_CHANGES, NO_FILE_DIFF, UNTRACKED_NOTICE
from sidecar.tools.support import git_available, read_text_file

requires_git = pytest.mark.skipif(not git_available(), reason="git is not installed")
requires_posix_shell = pytest.mark.skipif(os.name == "nt", reason="uses bash syntax")


def _git(cwd, *args):
    subprocess.run(
        ["git", "-c", "user.email=dev@example.com", "-c", "user.name=Dev", "-c", "commit.gpgsign=false", *args],
        cwd=str(cwd),
        check=True,
        capture_output=True,
    )


@pytest.fixture
def git_project(project_dir, monkeypatch, tmp_path):
    """project_dir committed into a fresh repository."""
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path))
    _git(project_dir, "init", "-q")
    _git(project_dir, "add", "-A")
    _git(project_dir, "commit", "-q", "-m", "initial")
    return project_dir


# =============================================================================
# CATALOG
# =============================================================================

class TestCatalogTools:
    @pytest.mark.asyncio
    async def test_list_internal_only(self, tool_router):
        result = await tool_router.invoke("internal", "list")

        assert result.success
        assert result.is_tool_list
        assert isinstance(result.payload, CatalogPayload)
        names = [entry.name for entry in result.payload.entries]
        for expected in ("list", "get_tree", "list_directory", "read_file", "git_status",
                         "git_diff", "git_changed_files", "get_file_diff", "execute_command"):
            assert expected in names
        assert all(entry.input_schema is None for entry in result.payload.entries)

    @pytest.mark.asyncio
    async def test_list_includes_providers_first(self, registry, tool_router, fake_provider):
        registry.register_provider("fs", fake_provider)
        result = await tool_router.invoke("internal", "list", {})

        assert result.payload.servers == ["fs", "internal"]
        assert result.payload.entries[0].name == "read_file"

    @pytest.mark.asyncio
    async def test_list_failing_provider_becomes_error_entry(self, registry, tool_router):
        registry.register_provider("broken", FakeProvider(raises=RuntimeError("offline")))
        result = await tool_router.invoke("internal", "list")

        assert result.success
        broken = [e for e in result.payload.entries if e.server == "broken"]
        assert broken[0].name == "Error: offline"

    @pytest.mark.asyncio
    async def test_list_one_server_has_schemas(self, registry, tool_router, fake_provider):
        registry.register_provider("fs", fake_provider)
        result = await tool_router.invoke("internal", "list", {"server": "fs"})

        assert [e.server for e in result.payload.entries] == ["fs", "fs"]
        assert result.payload.entries[0].input_schema == {"type": "object"}

    @pytest.mark.asyncio
    async def test_list_internal_schemas_declare_required(self, tool_router):
        result = await tool_router.invoke("internal", "list", {"server": "internal"})
        schemas = {e.name: e.input_schema for e in result.payload.entries}

        assert schemas["read_file"]["required"] == ["path"]
        assert schemas["execute_command"]["required"] == ["command"]
        assert "required" not in schemas["get_tree"]

    @pytest.mark.asyncio
    async def test_list_unknown_server(self, tool_router):
        result = await tool_router.invoke("internal", "list", {"server": "ghost"})
        assert not result.success
        assert result.error == "Server 'ghost' not active"

    @pytest.mark.asyncio
    async def test_list_servers(self, registry, tool_router, fake_provider):
        registry.register_provider("fs", fake_provider)
        result = await tool_router.invoke("internal", "list_servers")
        assert result.payload == ListingPayload(["fs", "internal"])


# =============================================================================
# FILESYSTEM
# =============================================================================

class TestFilesystemTools:
    @pytest.mark.asyncio
    async def test_get_tree_project_root(self, tool_router):
        result = await tool_router.invoke("internal", "get_tree", {"root": ".", "depth": 3})

        assert result.success
        assert result.payload.text == (
            "Project Root\n"
            "src/\n"
            "  ├── components/\n"
            "    ├── Button.tsx\n"
            "  ├── app.ts\n"
            "README.md\n"
            "package.json\n"
        )

    @pytest.mark.asyncio
    async def test_get_tree_subdirectory_and_depth(self, tool_router):
        result = await tool_router.invoke("internal", "get_tree", {"root": "src", "depth": 1})
        assert result.payload.text == "src/\ncomponents/\napp.ts\n"

    @pytest.mark.asyncio
    async def test_get_tree_not_a_directory(self, tool_router):
        result = await tool_router.invoke("internal", "get_tree", {"root": "README.md"})
        assert not result.success
        assert "Not a directory" in result.error

    @pytest.mark.asyncio
    async def test_get_tree_invalid_depth(self, tool_router):
        result = await tool_router.invoke("internal", "get_tree", {"depth": "deep"})
        assert not result.success
        assert "expects an integer for 'depth'" in result.error

    @pytest.mark.asyncio
    async def test_list_directory(self, tool_router):
        result = await tool_router.invoke("internal", "list_directory", {"path": "src"})

        assert isinstance(result.payload, EntryListPayload)
        assert [(e.name, e.is_directory, e.path) for e in result.payload.entries] == [
            ("app.ts", False, "src/app.ts"),
            ("components", True, "src/components"),
        ]

    @pytest.mark.asyncio
    async def test_list_directory_missing(self, tool_router):
        result = await tool_router.invoke("internal", "list_directory", {"path": "nope"})
        assert not result.success
        assert result.error == "Directory does not exist: nope"

    @pytest.mark.asyncio
    async def test_read_file(self, tool_router):
        result = await tool_router.invoke("internal", "read_file", {"path": "src/app.ts"})
        assert result.payload == TextPayload("const a = 1;\n")

    @pytest.mark.asyncio
    async def test_read_file_max_lines(self, tool_router):
        result = await tool_router.invoke("internal", "read_file", {"path": "README.md", "max_lines": 2})
        assert result.payload.text == "# Demo\n\n... (truncated, showing first 2 lines of 4)"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_lines", [0, -1])
    async def test_read_file_rejects_non_positive_max_lines(self, tool_router, max_lines):
        result = await tool_router.invoke("internal", "read_file", {"path": "README.md", "max_lines": max_lines})
        assert not result.success
        assert f"expects 'max_lines' to be at least 1, got {max_lines}" in result.error

    def test_read_text_file_ignores_negative_limit(self, project_dir):
        content = read_text_file(project_dir / "README.md", project_dir, max_lines=-1)
        assert content == "# Demo\n\nline 3\nline 4\n"

    @pytest.mark.asyncio
    async def test_read_file_latin1_fallback(self, tool_router, project_dir):
        (project_dir / "legacy.txt").write_bytes("caf\xe9".encode("latin-1"))
        result = await tool_router.invoke("internal", "read_file", {"path": "legacy.txt"})
        assert result.payload.text == "café"

    @pytest.mark.asyncio
    async def test_read_file_missing(self, tool_router):
        result = await tool_router.invoke("internal", "read_file", {"path": "ghost.ts"})
        assert not result.success
        assert result.error == "File does not exist: ghost.ts"

    @pytest.mark.asyncio
    async def test_read_file_requires_path(self, tool_router):
        result = await tool_router.invoke("internal", "read_file", {})
        assert not result.success
        assert result.error == "Tool 'read_file' requires argument 'path'"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["../secret.txt", "src/../../secret.txt", "/etc/passwd"])
    async def test_paths_outside_root_are_denied(self, tool_router, project_dir, path):
        (project_dir.parent / "secret.txt").write_text("nope", encoding="utf-8")
        result = await tool_router.invoke("internal", "read_file", {"path": path})

        assert not result.success
        assert result.error == f"Access denied: '{path}' is outside the project root"

    @pytest.mark.asyncio
    async def test_absolute_path_inside_root_is_allowed(self, tool_router, project_dir):
        path = str(project_dir / "src" / "app.ts")
        result = await tool_router.invoke("internal", "read_file", {"path": path})
        assert result.success


# =============================================================================
# VERSION CONTROL
# =============================================================================

@requires_git
class TestGitTools:
    @pytest.mark.asyncio
    async def test_clean_repository(self, git_project):
        tool_router = ToolRouter(ToolRegistry(git_project))

        diff = await tool_router.invoke("internal", "git_diff")
        assert diff.payload.text == NO_CHANGES

        status = await tool_router.invoke("internal", "git_status")
        assert status.success
        assert "nothing to commit" in status.payload.text

    @pytest.mark.asyncio
    async def test_changed_files_and_diffs(self, git_project):
        (git_project / "README.md").write_text("# Demo\n\nline 3\nline 4\nline 5\n", encoding="utf-8")
        (git_project / "new.py").write_text("print('hi')\n", encoding="utf-8")
        tool_router = ToolRouter(ToolRegistry(git_project))

        changed = await tool_router.invoke("internal", "git_changed_files")
        assert changed.payload == ListingPayload(["README.md", "new.py"])

        readme = await tool_router.invoke("internal", "get_file_diff", {"path": "README.md"})
        assert "+line 5" in readme.payload.text

        untracked = await tool_router.invoke("internal", "get_file_diff", {"path": "new.py"})
        assert untracked.payload.text == UNTRACKED_NOTICE

        unchanged = await tool_router.invoke("internal", "get_file_diff", {"path": "package.json"})
        assert unchanged.payload.text == NO_FILE_DIFF

    @pytest.mark.asyncio
    async def test_staged_change_is_reported(self, git_project):
        (git_project / "package.json").write_text('{"name": "renamed"}\n', encoding="utf-8")
        _git(git_project, "add", "package.json")
        tool_router = ToolRouter(ToolRegistry(git_project))

        result = await tool_router.invoke("internal", "get_file_diff", {"path": "package.json"})
        assert '+{"name": "renamed"}' in result.payload.text

    @pytest.mark.asyncio
    async def test_not_a_repository(self, project_dir, monkeypatch, tmp_path):
        monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path))
        tool_router = ToolRouter(ToolRegistry(project_dir))

        result = await tool_router.invoke("internal", "git_status")
        assert not result.success
        assert result.error.startswith("git status failed")


# =============================================================================
# SHELL
# =============================================================================

@requires_posix_shell
class TestExecuteCommand:
    @pytest.mark.asyncio
    async def test_runs_in_project_root(self, tool_router, project_dir):
        result = await tool_router.invoke("internal", "execute_command", {"command": "pwd"})
        assert result.payload.text == str(project_dir.resolve())

    @pytest.mark.asyncio
    async def test_stderr_is_included(self, tool_router):
        result = await tool_router.invoke("internal", "execute_command", {"command": "echo out; echo err 1>&2"})
        assert "out" in result.payload.text
        assert "err" in result.payload.text

    @pytest.mark.asyncio
    async def test_non_zero_exit_fails(self, tool_router):
        result = await tool_router.invoke("internal", "execute_command", {"command": "echo bad; exit 3"})
        assert not result.success
        assert result.error == "Command exited with code 3:\nbad"

    @pytest.mark.asyncio
    async def test_timeout(self, tool_router):
        result = await tool_router.invoke("internal", "execute_command", {"command": "sleep 5", "timeout": 0.2})
        assert not result.success
        assert result.error == "Command timed out after 0.2s"

    @pytest.mark.asyncio
    async def test_output_is_truncated(self, project_dir):
        tool_router = ToolRouter(ToolRegistry(project_dir, max_output_chars=10))
        result = await tool_router.invoke(
            "internal", "execute_command", {"command": "head -c 50 /dev/zero | tr '\\0' x"}
        )
        assert result.payload.text.startswith("x" * 10 + "\n... (output truncated, 40 characters omitted)")

    @pytest.mark.asyncio
    async def test_requires_command(self, tool_router):
        result = await tool_router.invoke("internal", "execute_command", {"command": "  "})
        assert result.error == "Tool 'execute_command' requires argument 'command'"
