import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from sidecar.results import FileEntry
from sidecar.utils.errors import ToolExecutionError
from sidecar.utils.path_utils import relative_to_root

logger = logging.getLogger(__name__)

ENCODINGS = ["utf-8", "latin-1"]


@dataclass
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str


def git_available() -> bool:
    return shutil.which("git") is not None


async def run_process(args: List[str], cwd: Path, timeout: Optional[float] = None) -> ProcessResult:
    """Run a subprocess without blocking the event loop.

    On timeout the process is killed and ToolExecutionError is raised.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise ToolExecutionError(f"Command not found: {args[0]}") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise ToolExecutionError(f"Command timed out after {timeout:g}s")

    return ProcessResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


async def run_git(args: List[str], cwd: Path) -> str:
    """Run a git subcommand in ``cwd`` and return its stdout."""
    if not git_available():
        raise ToolExecutionError("git is not installed")
    result = await run_process(["git", *args], cwd)
    if result.returncode != 0:
        detail = result.stderr.strip() or result.stdout.strip() or f"exit code {result.returncode}"
        raise ToolExecutionError(f"git {args[0]} failed: {detail}")
    return result.stdout


def _truncate(text: str, limit: int) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + f"\n... (output truncated, {len(text) - limit} characters omitted)"


async def run_shell(command: str, cwd: Path, timeout: float, max_output_chars: int) -> str:
    """Run a shell command bounded by a timeout and an output size.

    A non-zero exit status is an error carrying the command's output.
    """
    if os.name == "nt":
        args = ["cmd", "/c", command]
    else:
        args = ["bash", "-c", command]

    logger.info(f"Executing shell command in {cwd}: {command}")
    result = await run_process(args, cwd, timeout=timeout)

    output = result.stdout
    if result.stderr.strip():
        output = f"{output}\n{result.stderr}" if output.strip() else result.stderr
    output = _truncate(output.rstrip("\n"), max_output_chars)

    if result.returncode != 0:
        raise ToolExecutionError(
            f"Command exited with code {result.returncode}" + (f":\n{output}" if output else ""),
            tool="execute_command",
        )
    return output


def _sorted_children(directory: Path, ignore: Iterable[str]) -> List[Path]:
    ignored = set(ignore)
    children = [child for child in directory.iterdir() if child.name not in ignored]
    # Directories first, then files, each alphabetical
    return sorted(children, key=lambda p: (not p.is_dir(), p.name))


def generate_tree(directory: Path, max_depth: int, ignore: Iterable[str], current_depth: int = 0) -> str:
    """Render the tree below ``directory``.

    Two spaces of indent per level; entries below the root level carry a
    ``├── `` prefix and directories end with ``/``.
    """
    if current_depth >= max_depth:
        return ""
    ignore = list(ignore)
    indent = "  " * current_depth
    prefix = "" if current_depth == 0 else "├── "

    try:
        children = _sorted_children(directory, ignore)
    except OSError as e:
        logger.warning(f"Error reading directory {directory}: {e}")
        return f"{indent}Error reading directory\n"

    lines: List[str] = []
    for child in children:
        if child.is_dir():
            lines.append(f"{indent}{prefix}{child.name}/\n")
            lines.append(generate_tree(child, max_depth, ignore, current_depth + 1))
        else:
            lines.append(f"{indent}{prefix}{child.name}\n")
    return "".join(lines)


def list_entries(directory: Path, project_root: Path) -> List[FileEntry]:
    """List a directory as FileEntry records with root-relative paths."""
    if not directory.exists():
        raise ToolExecutionError(f"Directory does not exist: {relative_to_root(directory, project_root)}")
    if not directory.is_dir():
        raise ToolExecutionError(f"Not a directory: {relative_to_root(directory, project_root)}")

    return [
        FileEntry(
            name=child.name,
            is_directory=child.is_dir(),
            path=relative_to_root(child, project_root),
        )
        for child in sorted(directory.iterdir(), key=lambda p: p.name)
    ]


def read_text_file(path: Path, project_root: Path, max_lines: Optional[int] = None) -> str:
    """Read a text file, optionally keeping only the first ``max_lines`` lines."""
    rel = relative_to_root(path, project_root)
    if not path.exists():
        raise ToolExecutionError(f"File does not exist: {rel}", tool="read_file")
    if not path.is_file():
        raise ToolExecutionError(f"Not a file: {rel}", tool="read_file")

    for encoding in ENCODINGS:
        try:
            content = path.read_text(encoding=encoding)
            break
        except UnicodeDecodeError:
            continue
    else:
        raise ToolExecutionError(f"Unable to decode {rel} with encodings: {', '.join(ENCODINGS)}")

    if max_lines is not None and max_lines > 0:
        lines = content.splitlines()
        if len(lines) > max_lines:
            content = "\n".join(lines[:max_lines])
            content += f"\n... (truncated, showing first {max_lines} lines of {len(lines)})"
    return content
