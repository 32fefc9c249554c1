"""Execution engine for single calls and fail-fast batches.

The engine owns the pending batch, its cursor and failure marker, and the
busy flag. It talks to tools only through an invoker (the in-process router
or the HTTP client), delivers text through an output sink, and announces
progress on an event bus for whatever presentation layer is attached.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from sidecar.config import PARTIAL_REPORT_POLICIES
from sidecar.formatter import format_result
from sidecar.macros import Invoker, build_context_report, build_review_report
from sidecar.parsing import DEFAULT_PREFIX, ParsedCommand, parse_single_command, scan_commands
from sidecar.prompts import (
    CODE_REVIEW_ID,
    CONTEXT_ACTION,
    INIT_PROTOCOL_ID,
    QUICK_ACTIONS,
    REVIEW_ACTION,
    get_prompt,
)
from sidecar.results import CatalogPayload, ToolResult
from sidecar.sinks import OutputSink
from sidecar.utils.errors import (
    BatchStateError,
    CommandSyntaxError,
    EngineBusyError,
    NoChangesError,
    describe_error,
)
from sidecar.utils.events import EngineEvent, EventBus, EventPayload

logger = logging.getLogger(__name__)

SECTION_SEPARATOR = "\n" + "=" * 40 + "\n\n"
FAILED_PREFIX = "❌ EXECUTION FAILED:\n"


class BatchState(Enum):
    """State of the pending batch."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PendingBatch:
    """Ordered commands awaiting (or undergoing) a batch run."""
    commands: List[ParsedCommand]
    cursor: int = 0
    failed_index: Optional[int] = None
    state: BatchState = BatchState.IDLE
    sections: List[str] = field(default_factory=list)

    @property
    def invalid_indices(self) -> List[int]:
        return [i for i, command in enumerate(self.commands) if not command.is_valid]

    @property
    def report(self) -> str:
        return SECTION_SEPARATOR.join(self.sections)

    def __len__(self) -> int:
        return len(self.commands)


@dataclass
class ExecutionOutcome:
    """Result of a single execution or macro."""
    success: bool
    text: str
    error: Optional[str] = None
    result: Optional[ToolResult] = None


@dataclass
class BatchOutcome:
    """Result of one batch run."""
    state: BatchState
    report: str
    completed: int
    total: int
    failed_index: Optional[int] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.state == BatchState.COMPLETED


def success_section(command: ParsedCommand, output: str) -> str:
    return f"### [CMD] {command.tool} (Args: {json.dumps(command.args, ensure_ascii=False, separators=(',', ':'))})\n{output}\n"


def failure_section(command: ParsedCommand, error: Optional[str]) -> str:
    return f"### [CMD FAILED] {command.tool}\nERROR: {error}\n"


class _GuardedInvoker:
    """Invoker handed to macros; calls go through the engine so exceptions become failed results."""

    def __init__(self, engine: "ExecutionEngine"):
        self.engine = engine

    async def invoke(self, server: str, tool: str, args: Any = None) -> ToolResult:
        return await self.engine._invoke(server, tool, {} if args is None else args)


class ExecutionEngine:
    def __init__(
        self,
        invoker: Invoker,
        sink: OutputSink,
        *,
        event_bus: Optional[EventBus] = None,
        partial_report_policy: str = "display",
        command_prefix: str = DEFAULT_PREFIX,
        prompts: Optional[Dict[str, str]] = None,
    ):
        if partial_report_policy not in PARTIAL_REPORT_POLICIES:
            raise ValueError(f"Unknown partial report policy: {partial_report_policy!r}")
        self.invoker = invoker
        self.sink = sink
        self.event_bus = event_bus or EventBus()
        self.partial_report_policy = partial_report_policy
        self.command_prefix = command_prefix
        self.prompts = dict(prompts or {})

        self.batch: Optional[PendingBatch] = None
        self.available_servers: List[str] = []
        self.last_output: str = ""
        self._busy = False
        self._event_tasks: Set["asyncio.Task[None]"] = set()
        self._guarded = _GuardedInvoker(self)

    # -------------------------
    # State
    # -------------------------
    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def state(self) -> BatchState:
        return self.batch.state if self.batch else BatchState.IDLE

    def _acquire(self) -> None:
        if self._busy:
            raise EngineBusyError()
        self._busy = True

    def _release(self) -> None:
        self._busy = False

    async def _publish(self, event: EngineEvent, payload: EventPayload) -> None:
        await self.event_bus.publish(event, payload)

    async def _invoke(self, server: str, tool: str, args: Any) -> ToolResult:
        # Invokers convert their own failures; anything escaping is still a failed call
        try:
            return await self.invoker.invoke(server, tool, args)
        except Exception as e:
            logger.error(f"Invoker raised for {server}:{tool}: {e}")
            return ToolResult.failure(describe_error(e))

    async def _note_servers(self, result: ToolResult) -> None:
        if not (result.is_tool_list and isinstance(result.payload, CatalogPayload)):
            return
        servers = sorted(set(self.available_servers) | set(result.payload.servers))
        if servers != self.available_servers:
            self.available_servers = servers
            await self._publish(
                EngineEvent.SERVERS_DISCOVERED,
                EventPayload(title="Servers discovered", data={"servers": servers}),
            )

    # -------------------------
    # Single execution
    # -------------------------
    async def execute(
        self,
        server: str,
        tool: str,
        args: Any = None,
        prompt_prefix: str = "",
    ) -> ExecutionOutcome:
        """Run one call; on success the formatted text goes to the sink."""
        self._acquire()
        try:
            args = {} if args is None else args
            await self._publish(
                EngineEvent.EXECUTION_STARTED,
                EventPayload(title=f"{server}:{tool}", data={"server": server, "tool": tool, "args": args}),
            )
            result = await self._invoke(server, tool, args)
            return await self._finish_single(tool, args, result, prompt_prefix)
        finally:
            self._release()

    async def execute_command(self, command: str, prompt_prefix: str = "") -> ExecutionOutcome:
        """Parse and run one command string, e.g. ``mcp:internal:git_status``."""
        try:
            parsed = parse_single_command(command, self.command_prefix)
        except CommandSyntaxError as e:
            self._acquire()
            try:
                return await self._fail_single(str(e), ToolResult.failure(str(e)))
            finally:
                self._release()
        return await self.execute(parsed.server, parsed.tool, parsed.args, prompt_prefix)

    async def _finish_single(self, tool: str, args: Any, result: ToolResult, prompt_prefix: str) -> ExecutionOutcome:
        if not result.success:
            return await self._fail_single(result.error or "Unknown error", result)

        await self._note_servers(result)
        text = format_result(tool, args, result.payload)
        if prompt_prefix:
            text = f"{prompt_prefix}{text}"

        self.sink.write(text)
        self.sink.display(text)
        self.last_output = text
        await self._publish(
            EngineEvent.EXECUTION_SUCCEEDED,
            EventPayload(title="Copied & Executed", message="Result copied to clipboard", level="success"),
        )
        return ExecutionOutcome(success=True, text=text, result=result)

    async def _fail_single(self, error: str, result: Optional[ToolResult] = None) -> ExecutionOutcome:
        text = f"{FAILED_PREFIX}{error}"
        self.last_output = text
        logger.warning(f"Execution failed: {error}")
        await self._publish(
            EngineEvent.EXECUTION_FAILED,
            EventPayload(title="Execution Failed", message=error, level="error"),
        )
        return ExecutionOutcome(success=False, text=text, error=error, result=result)

    # -------------------------
    # Batch
    # -------------------------
    def load(self, text: str) -> PendingBatch:
        """Scan ``text`` and make its commands the pending batch."""
        return self.load_commands(scan_commands(text, self.command_prefix))

    def load_commands(self, commands: List[ParsedCommand]) -> PendingBatch:
        if self.state == BatchState.RUNNING:
            raise BatchStateError("Cannot load a new batch while one is running")
        if not commands:
            raise BatchStateError("No commands found")
        self.batch = PendingBatch(commands=list(commands))
        self._publish_soon(
            EngineEvent.BATCH_LOADED,
            EventPayload(
                title="Batch loaded",
                message=f"{len(commands)} commands",
                data={"count": len(commands), "invalid": self.batch.invalid_indices},
            ),
        )
        return self.batch

    def _publish_soon(self, event: EngineEvent, payload: EventPayload) -> None:
        """Publish from synchronous code when a loop is running; otherwise skip."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._publish(event, payload))
        self._event_tasks.add(task)
        task.add_done_callback(self._event_tasks.discard)

    async def run_batch(self) -> BatchOutcome:
        """Run the pending batch from index 0, stopping at the first failure."""
        self._acquire()
        try:
            batch = self.batch
            if batch is None or not batch.commands:
                raise BatchStateError("No pending batch")
            invalid = batch.invalid_indices
            if invalid:
                positions = ", ".join(str(i + 1) for i in invalid)
                raise BatchStateError(f"Batch contains invalid commands (#{positions}); fix or remove them first")

            batch.state = BatchState.RUNNING
            batch.cursor = 0
            batch.failed_index = None
            batch.sections = []
            total = len(batch.commands)
            await self._publish(
                EngineEvent.BATCH_STARTED,
                EventPayload(title="Batch started", data={"total": total}),
            )

            for i, command in enumerate(batch.commands):
                batch.cursor = i
                await self._publish(
                    EngineEvent.BATCH_PROGRESS,
                    EventPayload(
                        title=f"Running {command.tool}",
                        data={"index": i, "total": total, "command": command.to_dict()},
                    ),
                )
                result = await self._invoke(command.server, command.tool, command.args)

                if not result.success:
                    batch.sections.append(failure_section(command, result.error))
                    batch.failed_index = i
                    batch.state = BatchState.FAILED
                    logger.warning(f"Batch stopped at #{i + 1} ({command.tool}): {result.error}")
                    return await self._finish_failed_batch(batch, command, result.error)

                await self._note_servers(result)
                output = format_result(command.tool, command.args, result.payload)
                batch.sections.append(success_section(command, output))
                batch.cursor = i + 1

            return await self._finish_completed_batch(batch)
        finally:
            if self.batch is not None and self.batch.state == BatchState.RUNNING:
                self.batch.state = BatchState.FAILED
            self._release()

    async def _finish_completed_batch(self, batch: PendingBatch) -> BatchOutcome:
        batch.state = BatchState.COMPLETED
        report = batch.report
        self.sink.write(report)
        self.sink.display(report)
        self.last_output = report
        self.batch = None
        await self._publish(
            EngineEvent.BATCH_COMPLETED,
            EventPayload(title="Batch Complete", message="All results copied", level="success"),
        )
        return BatchOutcome(
            state=BatchState.COMPLETED,
            report=report,
            completed=len(batch.commands),
            total=len(batch.commands),
        )

    async def _finish_failed_batch(
        self, batch: PendingBatch, command: ParsedCommand, error: Optional[str]
    ) -> BatchOutcome:
        report = batch.report
        self.last_output = report
        if self.partial_report_policy == "write":
            self.sink.write(report)
            self.sink.display(report)
        elif self.partial_report_policy == "display":
            self.sink.display(report)

        await self._publish(
            EngineEvent.BATCH_FAILED,
            EventPayload(
                title="Batch Stopped",
                message=f"Command '{command.tool}' failed.",
                level="error",
                data={"failed_index": batch.failed_index, "error": error},
            ),
        )
        return BatchOutcome(
            state=BatchState.FAILED,
            report=report,
            completed=batch.cursor,
            total=len(batch.commands),
            failed_index=batch.failed_index,
            error=error,
        )

    def cancel(self) -> None:
        """Drop the pending batch and its failure marker."""
        if self.state == BatchState.RUNNING:
            raise BatchStateError("Cannot cancel while the batch is running")
        self.batch = None
        self._publish_soon(EngineEvent.BATCH_CANCELLED, EventPayload(title="Batch cancelled"))

    def remove(self, index: int) -> ParsedCommand:
        """Remove one command from the pending batch and reset its progress."""
        if self.batch is None:
            raise BatchStateError("No pending batch")
        if self.batch.state == BatchState.RUNNING:
            raise BatchStateError("Cannot remove commands while the batch is running")
        if not 0 <= index < len(self.batch.commands):
            raise BatchStateError(f"No command at index {index}")

        removed = self.batch.commands.pop(index)
        self.batch.failed_index = None
        self.batch.cursor = 0
        self.batch.state = BatchState.IDLE
        self.batch.sections = []
        if not self.batch.commands:
            self.batch = None

        self._publish_soon(
            EngineEvent.COMMAND_REMOVED,
            EventPayload(title="Command removed", data={"index": index, "command": removed.to_dict()}),
        )
        return removed

    # -------------------------
    # Macros
    # -------------------------
    async def generate_context(self) -> ExecutionOutcome:
        """Protocol, tool catalog and project tree in one block."""
        self._acquire()
        try:
            protocol = get_prompt(INIT_PROTOCOL_ID, self.prompts)
            text = await build_context_report(self._guarded, protocol, self.command_prefix)
            self.sink.write(text)
            self.sink.display(text)
            self.last_output = text
            await self._publish(
                EngineEvent.EXECUTION_SUCCEEDED,
                EventPayload(title="Context Ready!", message="Protocol, Tools & Tree copied.", level="success"),
            )
            return ExecutionOutcome(success=True, text=text)
        finally:
            self._release()

    async def generate_review(self) -> ExecutionOutcome:
        """Review request covering every changed file."""
        self._acquire()
        try:
            review_prompt = get_prompt(CODE_REVIEW_ID, self.prompts)
            try:
                text = await build_review_report(self._guarded, review_prompt)
            except NoChangesError as e:
                return await self._fail_single(str(e))
            self.sink.write(text)
            self.sink.display(text)
            self.last_output = text
            await self._publish(
                EngineEvent.EXECUTION_SUCCEEDED,
                EventPayload(title="Ready for Review!", message="Diffs & Content copied.", level="success"),
            )
            return ExecutionOutcome(success=True, text=text)
        finally:
            self._release()

    async def run_action(self, action_id: str) -> ExecutionOutcome:
        """Run a quick action by id (see ``sidecar.prompts.QUICK_ACTIONS``)."""
        action = QUICK_ACTIONS.get(action_id)
        if action is None:
            raise KeyError(f"Unknown action: {action_id}")
        if action_id == CONTEXT_ACTION:
            return await self.generate_context()
        if action_id == REVIEW_ACTION:
            return await self.generate_review()
        return await self.execute(action.server, action.tool, dict(action.args), action.prompt_prefix)
