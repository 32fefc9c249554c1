"""Tests for the execution engine.

Covers:
- Single execution success/failure and sink usage
- The busy flag
- Fail-fast batches: cursor, failure marker, report sections
- Partial report policies
- Cancel/remove editing of a pending batch
- Macros and quick actions
"""

import asyncio

import pytest

from conftest import ScriptedInvoker
from sidecar.engine import FAILED_PREFIX, SECTION_SEPARATOR, BatchState, ExecutionEngine
from sidecar.results import CatalogEntry, CatalogPayload, ListingPayload, TextPayload, ToolResult
from sidecar.utils.errors import BatchStateError, EngineBusyError
from sidecar.utils.events import EngineEvent


def ok(text: str) -> ToolResult:
    return ToolResult.ok(TextPayload(text))


@pytest.fixture
def invoker():
    return ScriptedInvoker({
        "read_file": ok("const a = 1;"),
        "git_status": ok("clean"),
        "get_tree": ok("Project Root\nsrc/\n"),
        "git_diff": ok("+x"),
        "missing": ToolResult.failure("not found"),
    })


@pytest.fixture
def engine(invoker, memory_sink):
    return ExecutionEngine(invoker, memory_sink)


class BlockingInvoker:
    def __init__(self):
        self.release = asyncio.Event()

    async def invoke(self, server, tool, args=None):
        await self.release.wait()
        return ok("done")


class RaisingInvoker:
    async def invoke(self, server, tool, args=None):
        raise RuntimeError("connection reset")


BATCH_OK = """
Step one: mcp:fs:read_file({"path": "a.ts"})
Step two: mcp:internal:git_status
Step three: mcp:internal:get_tree({root: "."})
"""

BATCH_FAILS_AT_1 = """
mcp:fs:read_file({"path": "a.ts"})
mcp:fs:missing({"path": "b.ts"})
mcp:internal:git_status
"""


# =============================================================================
# SINGLE EXECUTION
# =============================================================================

class TestSingleExecution:
    @pytest.mark.asyncio
    async def test_success_writes_and_displays(self, engine, memory_sink):
        outcome = await engine.execute("fs", "read_file", {"path": "a.ts"})

        assert outcome.success
        assert outcome.text == "file: a.ts\n```typescript\nconst a = 1;\n```"
        assert memory_sink.writes == [outcome.text]
        assert memory_sink.displays == [outcome.text]
        assert engine.last_output == outcome.text

    @pytest.mark.asyncio
    async def test_failure_never_touches_sink(self, engine, memory_sink):
        outcome = await engine.execute("fs", "missing", {})

        assert not outcome.success
        assert outcome.error == "not found"
        assert outcome.text == FAILED_PREFIX + "not found"
        assert memory_sink.writes == []
        assert memory_sink.displays == []

    @pytest.mark.asyncio
    async def test_invoker_exception_becomes_failure(self, memory_sink):
        engine = ExecutionEngine(RaisingInvoker(), memory_sink)
        outcome = await engine.execute("fs", "read_file", {})

        assert not outcome.success
        assert outcome.error == "connection reset"
        assert not engine.busy

    @pytest.mark.asyncio
    async def test_execute_command_string(self, engine, invoker):
        outcome = await engine.execute_command("mcp:internal:git_status")
        assert outcome.success
        assert invoker.calls == [("internal", "git_status", {})]

    @pytest.mark.asyncio
    async def test_execute_command_parse_error(self, engine, invoker, memory_sink):
        outcome = await engine.execute_command("mcp:internal:read_file({path: })")

        assert not outcome.success
        assert outcome.error.startswith("Invalid arguments")
        assert invoker.calls == []
        assert memory_sink.writes == []

    @pytest.mark.asyncio
    async def test_prompt_prefix(self, engine):
        outcome = await engine.execute("internal", "git_diff", {}, prompt_prefix="Check this:\n\n")
        assert outcome.text == "Check this:\n\n```diff\n+x\n```"

    @pytest.mark.asyncio
    async def test_events_published(self, engine):
        seen = []
        engine.event_bus.subscribe(EngineEvent.EXECUTION_STARTED, lambda p: seen.append(("started", p.title)))
        engine.event_bus.subscribe(EngineEvent.EXECUTION_SUCCEEDED, lambda p: seen.append(("ok", p.title)))
        engine.event_bus.subscribe(EngineEvent.EXECUTION_FAILED, lambda p: seen.append(("failed", p.message)))

        await engine.execute("internal", "git_status")
        await engine.execute("fs", "missing")

        assert seen == [
            ("started", "internal:git_status"),
            ("ok", "Copied & Executed"),
            ("started", "fs:missing"),
            ("failed", "not found"),
        ]


class TestBusyFlag:
    @pytest.mark.asyncio
    async def test_second_run_while_busy_is_refused(self, memory_sink):
        invoker = BlockingInvoker()
        engine = ExecutionEngine(invoker, memory_sink)

        task = asyncio.create_task(engine.execute("internal", "git_status"))
        await asyncio.sleep(0)
        assert engine.busy

        with pytest.raises(EngineBusyError):
            await engine.execute("internal", "git_diff")
        with pytest.raises(EngineBusyError):
            await engine.generate_context()

        invoker.release.set()
        outcome = await task
        assert outcome.success
        assert not engine.busy


# =============================================================================
# BATCH
# =============================================================================

class TestBatchSuccess:
    @pytest.mark.asyncio
    async def test_all_commands_succeed(self, engine, invoker, memory_sink):
        progress = []
        engine.event_bus.subscribe(
            EngineEvent.BATCH_PROGRESS,
            lambda p: progress.append((p.data["index"], engine.batch.cursor)),
        )

        batch = engine.load(BATCH_OK)
        assert len(batch) == 3
        assert engine.state == BatchState.IDLE

        outcome = await engine.run_batch()

        assert outcome.success
        assert outcome.state == BatchState.COMPLETED
        assert (outcome.completed, outcome.total) == (3, 3)
        assert outcome.failed_index is None
        assert progress == [(0, 0), (1, 1), (2, 2)]
        assert batch.cursor == 3

        sections = outcome.report.split(SECTION_SEPARATOR)
        assert len(sections) == 3
        assert sections[0].startswith('### [CMD] read_file (Args: {"path":"a.ts"})\nfile: a.ts')
        assert sections[1].startswith("### [CMD] git_status (Args: {})")
        assert sections[2].startswith("### [CMD] get_tree")

        assert memory_sink.writes == [outcome.report]
        assert memory_sink.displays == [outcome.report]
        assert engine.batch is None
        assert [call[1] for call in invoker.calls] == ["read_file", "git_status", "get_tree"]


class TestBatchFailure:
    @pytest.mark.asyncio
    async def test_fail_fast(self, engine, invoker, memory_sink):
        engine.load(BATCH_FAILS_AT_1)
        outcome = await engine.run_batch()

        assert not outcome.success
        assert outcome.state == BatchState.FAILED
        assert outcome.failed_index == 1
        assert outcome.error == "not found"
        assert outcome.completed == 1
        assert [call[1] for call in invoker.calls] == ["read_file", "missing"]

        assert outcome.report.count("### [CMD") == 2
        assert "### [CMD FAILED] missing\nERROR: not found\n" in outcome.report

        assert engine.batch is not None
        assert len(engine.batch) == 3
        assert engine.batch.failed_index == 1
        assert engine.state == BatchState.FAILED
        assert not engine.busy

    @pytest.mark.asyncio
    async def test_default_policy_only_displays(self, engine, memory_sink):
        engine.load(BATCH_FAILS_AT_1)
        outcome = await engine.run_batch()

        assert memory_sink.writes == []
        assert memory_sink.displays == [outcome.report]

    @pytest.mark.asyncio
    async def test_write_policy(self, invoker, memory_sink):
        engine = ExecutionEngine(invoker, memory_sink, partial_report_policy="write")
        engine.load(BATCH_FAILS_AT_1)
        outcome = await engine.run_batch()

        assert memory_sink.writes == [outcome.report]
        assert memory_sink.displays == [outcome.report]

    @pytest.mark.asyncio
    async def test_none_policy(self, invoker, memory_sink):
        engine = ExecutionEngine(invoker, memory_sink, partial_report_policy="none")
        engine.load(BATCH_FAILS_AT_1)
        await engine.run_batch()

        assert memory_sink.writes == []
        assert memory_sink.displays == []

    def test_unknown_policy_rejected(self, invoker, memory_sink):
        with pytest.raises(ValueError):
            ExecutionEngine(invoker, memory_sink, partial_report_policy="clipboard")

    @pytest.mark.asyncio
    async def test_remove_failed_entry_and_rerun(self, engine, invoker):
        engine.load(BATCH_FAILS_AT_1)
        await engine.run_batch()

        removed = engine.remove(1)
        assert removed.tool == "missing"
        assert engine.state == BatchState.IDLE
        assert engine.batch.failed_index is None
        assert engine.batch.cursor == 0

        outcome = await engine.run_batch()
        assert outcome.success
        assert outcome.total == 2
        assert [call[1] for call in invoker.calls] == ["read_file", "missing", "read_file", "git_status"]

    @pytest.mark.asyncio
    async def test_rerun_failed_batch_starts_at_zero(self, engine, invoker):
        engine.load(BATCH_FAILS_AT_1)
        await engine.run_batch()
        await engine.run_batch()
        assert [call[1] for call in invoker.calls] == ["read_file", "missing", "read_file", "missing"]


class TestBatchEditing:
    def test_load_without_commands(self, engine):
        with pytest.raises(BatchStateError, match="No commands found"):
            engine.load("nothing to see here")

    @pytest.mark.asyncio
    async def test_run_without_batch(self, engine):
        with pytest.raises(BatchStateError, match="No pending batch"):
            await engine.run_batch()
        assert not engine.busy

    @pytest.mark.asyncio
    async def test_invalid_commands_block_the_run(self, engine, invoker):
        batch = engine.load("mcp:internal:git_status\nmcp:internal:read_file({path: })")
        assert batch.invalid_indices == [1]

        with pytest.raises(BatchStateError, match="invalid commands"):
            await engine.run_batch()
        assert invoker.calls == []
        assert engine.state == BatchState.IDLE

        engine.remove(1)
        assert (await engine.run_batch()).success

    def test_cancel_clears_batch(self, engine):
        engine.load(BATCH_OK)
        engine.cancel()
        assert engine.batch is None
        assert engine.state == BatchState.IDLE

    def test_remove_bad_index(self, engine):
        engine.load(BATCH_OK)
        with pytest.raises(BatchStateError):
            engine.remove(5)

    def test_remove_last_entry_clears_batch(self, engine):
        engine.load("mcp:internal:git_status")
        engine.remove(0)
        assert engine.batch is None

    @pytest.mark.asyncio
    async def test_edits_refused_while_running(self, memory_sink):
        invoker = BlockingInvoker()
        engine = ExecutionEngine(invoker, memory_sink)
        engine.load(BATCH_OK)

        task = asyncio.create_task(engine.run_batch())
        await asyncio.sleep(0)
        assert engine.state == BatchState.RUNNING

        with pytest.raises(BatchStateError):
            engine.cancel()
        with pytest.raises(BatchStateError):
            engine.remove(0)
        with pytest.raises(BatchStateError):
            engine.load(BATCH_OK)

        invoker.release.set()
        assert (await task).success


# =============================================================================
# SERVER DISCOVERY
# =============================================================================

class TestServerDiscovery:
    @pytest.mark.asyncio
    async def test_tool_list_updates_available_servers(self, memory_sink):
        catalog = CatalogPayload([CatalogEntry("fs", "read_file"), CatalogEntry("internal", "list")])
        engine = ExecutionEngine(ScriptedInvoker({"list": ToolResult.ok(catalog, is_tool_list=True)}), memory_sink)
        discovered = []
        engine.event_bus.subscribe(EngineEvent.SERVERS_DISCOVERED, lambda p: discovered.append(p.data["servers"]))

        await engine.execute("internal", "list")

        assert engine.available_servers == ["fs", "internal"]
        assert discovered == [["fs", "internal"]]


# =============================================================================
# MACROS
# =============================================================================

class TestMacros:
    @pytest.mark.asyncio
    async def test_generate_context(self, memory_sink):
        invoker = ScriptedInvoker({
            "list": ToolResult.ok(CatalogPayload([CatalogEntry("internal", "read_file", "Read file content")]), is_tool_list=True),
            "get_tree": ok("Project Root\nsrc/\n"),
        })
        engine = ExecutionEngine(invoker, memory_sink, prompts={"init-protocol": "Custom protocol."})

        outcome = await engine.generate_context()

        assert outcome.success
        assert "Custom protocol." in outcome.text
        assert "- `mcp:internal:read_file`: Read file content" in outcome.text
        assert memory_sink.writes == [outcome.text]

    @pytest.mark.asyncio
    async def test_generate_review_without_changes(self, memory_sink):
        engine = ExecutionEngine(ScriptedInvoker({"git_changed_files": ToolResult.ok(ListingPayload([]))}), memory_sink)
        outcome = await engine.generate_review()

        assert not outcome.success
        assert outcome.error == "No modified files found."
        assert memory_sink.writes == []

    @pytest.mark.asyncio
    async def test_generate_context_with_raising_invoker(self, memory_sink):
        engine = ExecutionEngine(RaisingInvoker(), memory_sink)

        outcome = await engine.generate_context()

        assert outcome.success
        assert "(Error reading tree) connection reset" in outcome.text
        assert memory_sink.displays == [outcome.text]
        assert not engine.busy

    @pytest.mark.asyncio
    async def test_generate_review_with_raising_invoker(self, memory_sink):
        engine = ExecutionEngine(RaisingInvoker(), memory_sink)
        failures = []
        engine.event_bus.subscribe(EngineEvent.EXECUTION_FAILED, failures.append)

        outcome = await engine.generate_review()

        assert not outcome.success
        assert outcome.error == "Could not list changed files: connection reset"
        assert outcome.text.startswith(FAILED_PREFIX)
        assert [p.message for p in failures] == [outcome.error]
        assert memory_sink.writes == []
        assert not engine.busy

    @pytest.mark.asyncio
    async def test_quick_action_tool(self, engine, invoker):
        outcome = await engine.run_action("project-tree")
        assert outcome.success
        assert invoker.calls == [("internal", "get_tree", {"root": ".", "depth": 3})]

    @pytest.mark.asyncio
    async def test_quick_action_prefix(self, engine):
        outcome = await engine.run_action("git-diff")
        assert outcome.text.startswith("Please analyze the following code changes")

    @pytest.mark.asyncio
    async def test_unknown_action(self, engine):
        with pytest.raises(KeyError):
            await engine.run_action("launch-rockets")
