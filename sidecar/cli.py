"""
Command line interface for the sidecar.

Every command builds an ExecutionEngine, either over the in-process router
(connecting configured MCP servers for the duration of the command) or, with
``--remote``, over a running sidecar server.
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional

import pyperclip  # type: ignore
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from sidecar import __version__
from sidecar.api_client import SidecarClient
from sidecar.config import SidecarConfig
from sidecar.engine import BatchOutcome, ExecutionEngine, ExecutionOutcome, PendingBatch
from sidecar.integrations.mcp import ProviderHub
from sidecar.prompts import QUICK_ACTIONS
from sidecar.sinks import ClipboardSink, ConsoleSink, OutputSink
from sidecar.tools import ToolRegistry, ToolRouter
from sidecar.utils.errors import SidecarError
from sidecar.utils.events import EngineEvent, EventPayload

logger = logging.getLogger(__name__)
console = Console()

app = typer.Typer(
    name="sidecar",
    help="MCP Sidecar: run mcp:<server>:<tool>(args) commands against your project.",
    no_args_is_help=True,
    add_completion=False,
)


@dataclass
class CliOptions:
    remote: bool = False
    no_copy: bool = False
    project: Optional[Path] = None


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"sidecar {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    remote: bool = typer.Option(False, "--remote", help="Send calls to a running sidecar server (api_url)"),
    no_copy: bool = typer.Option(False, "--no-copy", help="Only print results; do not copy to the clipboard"),
    project: Optional[Path] = typer.Option(None, "--project", "-p", help="Project root (defaults to PROJECT_ROOT or cwd)"),
    version: Optional[bool] = typer.Option(
        None, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
):
    ctx.obj = CliOptions(remote=remote, no_copy=no_copy, project=project)


def _options(ctx: typer.Context) -> CliOptions:
    return ctx.obj if isinstance(ctx.obj, CliOptions) else CliOptions()


@asynccontextmanager
async def open_engine(options: CliOptions) -> AsyncIterator[ExecutionEngine]:
    config = SidecarConfig.load_config(options.project)
    config.setup_logging()
    sink: OutputSink = ConsoleSink(console) if options.no_copy else ClipboardSink(console)

    if options.remote:
        client = SidecarClient(config.api_url)
        try:
            yield ExecutionEngine(
                client,
                sink,
                partial_report_policy=config.partial_report_policy,
                command_prefix=config.command_prefix,
                prompts=config.prompts,
            )
        finally:
            await client.aclose()
        return

    registry = ToolRegistry.from_config(config)
    hub = ProviderHub()
    await hub.connect_all(config.provider_configs(), registry)
    try:
        yield ExecutionEngine(
            ToolRouter(registry),
            sink,
            partial_report_policy=config.partial_report_policy,
            command_prefix=config.command_prefix,
            prompts=config.prompts,
        )
    finally:
        await hub.aclose()


def _finish(outcome: ExecutionOutcome) -> None:
    if not outcome.success:
        console.print(f"[red]{escape(outcome.text)}[/red]")
        raise typer.Exit(1)


def _print_plan(batch: PendingBatch) -> None:
    table = Table(title=f"Execution Plan ({len(batch)} commands)", show_header=True)
    table.add_column("#", justify="right")
    table.add_column("Server", style="cyan")
    table.add_column("Tool", style="bold")
    table.add_column("Args")
    table.add_column("Status")
    for i, command in enumerate(batch.commands):
        if command.is_valid:
            status = "[yellow]✏️ write[/yellow]" if command.is_write else "[green]ok[/green]"
        else:
            status = f"[red]❌ {escape(command.error or '')}[/red]"
        table.add_row(str(i + 1), command.server, command.tool, escape(command.args_preview(60)), status)
    console.print(table)


def _print_batch_outcome(outcome: BatchOutcome) -> None:
    if outcome.success:
        console.print(f"[green]✅ Batch complete: {outcome.completed}/{outcome.total} commands[/green]")
    else:
        console.print(
            f"[red]❌ Batch stopped at #{(outcome.failed_index or 0) + 1} "
            f"({outcome.completed}/{outcome.total} succeeded): {escape(outcome.error or '')}[/red]"
        )


def _read_input(text: Optional[str], file: Optional[Path], clipboard: bool) -> str:
    if file is not None:
        return file.read_text(encoding="utf-8")
    if clipboard:
        return pyperclip.paste() or ""
    if text is not None:
        return text
    if not sys.stdin.isatty():
        return sys.stdin.read()
    raise typer.BadParameter("Provide TEXT, --file, --clipboard, or pipe text on stdin")


@app.command()
def serve(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, "--host", help="Host to bind (default from config)"),
    port: Optional[int] = typer.Option(None, "--port", help="Port to bind (default from config)"),
):
    """Start the sidecar HTTP server."""
    from sidecar.web.server import start_server

    start_server(host=host, port=port, config=SidecarConfig.load_config(_options(ctx).project))


@app.command("exec")
def exec_command(
    ctx: typer.Context,
    command: str = typer.Argument(..., help='Command such as \'mcp:internal:read_file({path: "README.md"})\''),
    prefix: str = typer.Option("", "--prompt-prefix", help="Text prepended to the result"),
):
    """Execute a single command and copy its formatted result."""

    async def _run() -> ExecutionOutcome:
        async with open_engine(_options(ctx)) as engine:
            return await engine.execute_command(command, prompt_prefix=prefix)

    _finish(asyncio.run(_run()))


@app.command()
def run(
    ctx: typer.Context,
    text: Optional[str] = typer.Argument(None, help="Text containing commands"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", exists=True, dir_okay=False, help="Read text from a file"),
    clipboard: bool = typer.Option(False, "--clipboard", "-c", help="Read text from the clipboard"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Run without confirmation"),
):
    """Scan text for commands and run them as one fail-fast batch."""
    source = _read_input(text, file, clipboard)
    options = _options(ctx)

    async def _run() -> Optional[BatchOutcome]:
        async with open_engine(options) as engine:
            try:
                batch = engine.load(source)
            except SidecarError as e:
                console.print(f"[yellow]{escape(str(e))}[/yellow]")
                return None

            _print_plan(batch)
            if batch.invalid_indices:
                console.print("[red]Fix or remove the invalid commands before running.[/red]")
                raise typer.Exit(1)
            if not yes and not typer.confirm(f"Run {len(batch)} commands?", default=True):
                engine.cancel()
                raise typer.Abort()

            def _progress(payload: EventPayload) -> None:
                index = payload.data.get("index", 0)
                console.print(f"[dim]▶ [{index + 1}/{payload.data.get('total')}] {payload.title}[/dim]")

            engine.event_bus.subscribe(EngineEvent.BATCH_PROGRESS, _progress)
            return await engine.run_batch()

    outcome = asyncio.run(_run())
    if outcome is None:
        raise typer.Exit(1)
    _print_batch_outcome(outcome)
    if not outcome.success:
        raise typer.Exit(1)


@app.command()
def tools(
    ctx: typer.Context,
    server: Optional[str] = typer.Option(None, "--server", "-s", help="Show full schemas for one server"),
):
    """List available tools."""

    async def _run() -> ExecutionOutcome:
        async with open_engine(_options(ctx)) as engine:
            return await engine.execute("internal", "list", {"server": server} if server else {})

    _finish(asyncio.run(_run()))


@app.command()
def context(ctx: typer.Context):
    """Copy the protocol prompt, tool catalog and project tree."""

    async def _run() -> ExecutionOutcome:
        async with open_engine(_options(ctx)) as engine:
            return await engine.generate_context()

    _finish(asyncio.run(_run()))


@app.command()
def review(ctx: typer.Context):
    """Copy a code review request covering every changed file."""

    async def _run() -> ExecutionOutcome:
        async with open_engine(_options(ctx)) as engine:
            return await engine.generate_review()

    _finish(asyncio.run(_run()))


@app.command()
def action(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Quick action id"),
):
    """Run a quick action (omit NAME to list them)."""
    if not name or name not in QUICK_ACTIONS:
        if name:
            console.print(f"[red]Unknown action: {name}[/red]")
        table = Table(title="Quick Actions", show_header=True)
        table.add_column("Id", style="bold")
        table.add_column("Label")
        table.add_column("Description")
        for item in QUICK_ACTIONS.values():
            table.add_row(item.id, item.label, item.description)
        console.print(table)
        if name:
            raise typer.Exit(1)
        return

    async def _run() -> ExecutionOutcome:
        async with open_engine(_options(ctx)) as engine:
            return await engine.run_action(name)

    _finish(asyncio.run(_run()))


if __name__ == "__main__":
    app()
