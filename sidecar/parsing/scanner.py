"""
Command scanning for free-form text.

An LLM reply (or any pasted text) may embed invocations such as

    mcp:internal:read_file({path: "src/app.ts"})

anywhere in prose, Markdown or code. The scanner walks the text once with a
cursor, steps over comments and quoted spans, and emits one ParsedCommand per
header it meets, in order of appearance.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from sidecar.parsing.literal import QUOTES, evaluate_literal, find_closing_paren
from sidecar.utils.errors import CommandSyntaxError

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "mcp"
IDENT_PATTERN = r"[A-Za-z0-9_-]+"

UNTERMINATED_ARGS = "Unterminated argument list: missing ')'"


@dataclass(frozen=True)
class ParsedCommand:
    """One command found in scanned text.

    ``original`` is the exact consumed span ``text[start:end]``. Invalid
    commands carry ``args == {}`` and an error message; they are reported but
    never executed.
    """
    original: str
    server: str
    tool: str
    args: Any = field(default_factory=dict)
    is_valid: bool = True
    error: Optional[str] = None
    start: int = 0
    end: int = 0

    @property
    def is_write(self) -> bool:
        """True for steps that mutate the workspace (flagged in plans)."""
        return "write" in self.tool or self.tool == "diff"

    def args_json(self) -> str:
        return json.dumps(self.args, ensure_ascii=False, separators=(",", ":"))

    def args_preview(self, limit: int = 100) -> str:
        text = self.args_json()
        if len(text) <= limit:
            return text
        return text[:limit] + "..."

    def to_command_string(self, prefix: str = DEFAULT_PREFIX) -> str:
        return f"{prefix}:{self.server}:{self.tool}({self.args_json()})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original": self.original,
            "server": self.server,
            "tool": self.tool,
            "args": self.args,
            "isValid": self.is_valid,
            "error": self.error,
            "start": self.start,
            "end": self.end,
        }


def _line_end(text: str, pos: int) -> int:
    newline = text.find("\n", pos)
    return len(text) if newline == -1 else newline


class CommandScanner:
    """Single-pass scanner for ``PREFIX:server:tool(args)`` invocations."""

    def __init__(self, prefix: str = DEFAULT_PREFIX):
        if not re.fullmatch(IDENT_PATTERN, prefix or ""):
            raise ValueError(f"Invalid command prefix: {prefix!r}")
        self.prefix = prefix
        self._header = re.compile(
            rf"{re.escape(prefix)}:({IDENT_PATTERN}):({IDENT_PATTERN})"
        )

    def scan(self, text: str) -> List[ParsedCommand]:
        commands: List[ParsedCommand] = []
        pos = 0
        length = len(text)

        while pos < length:
            char = text[pos]

            # Line comment, except the '//' of a URL scheme
            if text.startswith("//", pos) and not (pos > 0 and text[pos - 1] == ":"):
                pos = _line_end(text, pos)
                continue

            if text.startswith("/*", pos):
                close = text.find("*/", pos + 2)
                pos = length if close == -1 else close + 2
                continue

            # Markdown fence marker
            if text.startswith("```", pos):
                while pos < length and text[pos] == "`":
                    pos += 1
                continue

            if char in QUOTES and not (char == "'" and pos > 0 and text[pos - 1].isalnum()):
                pos = self._skip_string(text, pos)
                continue

            match = self._header.match(text, pos)
            if match:
                command, pos = self._read_command(text, match)
                commands.append(command)
                continue

            pos += 1

        return commands

    @staticmethod
    def _skip_string(text: str, pos: int) -> int:
        """Return the offset just past the string opened at ``pos``.

        A quote that never closes (before the line ends, for ``"`` and ``'``)
        is an ordinary character, so prose like "press the ` key" hides nothing.
        """
        quote = text[pos]
        i = pos + 1
        while i < len(text):
            char = text[i]
            if char == "\\":
                i += 2
                continue
            if char == quote:
                return i + 1
            if char == "\n" and quote != "`":
                return pos + 1
            i += 1
        return pos + 1

    def _read_command(self, text: str, match: "re.Match[str]") -> Tuple[ParsedCommand, int]:
        server, tool = match.group(1), match.group(2)
        start, header_end = match.start(), match.end()

        cursor = header_end
        while cursor < len(text) and text[cursor] in " \t":
            cursor += 1

        if cursor >= len(text) or text[cursor] != "(":
            command = ParsedCommand(
                original=text[start:header_end],
                server=server,
                tool=tool,
                start=start,
                end=header_end,
            )
            return command, header_end

        args_start = cursor + 1
        close = find_closing_paren(text, args_start)
        if close == -1:
            boundary = _line_end(text, header_end)
            logger.debug(f"Unterminated arguments for {server}:{tool} at offset {start}")
            command = ParsedCommand(
                original=text[start:boundary],
                server=server,
                tool=tool,
                is_valid=False,
                error=UNTERMINATED_ARGS,
                start=start,
                end=boundary,
            )
            return command, boundary

        end = close + 1
        try:
            args = evaluate_literal(text[args_start:close], offset=args_start)
            is_valid, error = True, None
        except CommandSyntaxError as e:
            logger.debug(f"Invalid arguments for {server}:{tool}: {e}")
            args, is_valid, error = {}, False, str(e)

        command = ParsedCommand(
            original=text[start:end],
            server=server,
            tool=tool,
            args=args,
            is_valid=is_valid,
            error=error,
            start=start,
            end=end,
        )
        return command, end


def scan_commands(text: str, prefix: str = DEFAULT_PREFIX) -> List[ParsedCommand]:
    """Return every command embedded in ``text``, in order of appearance."""
    return CommandScanner(prefix).scan(text)


def parse_single_command(command: str, prefix: str = DEFAULT_PREFIX) -> ParsedCommand:
    """Parse a string that must consist of exactly one valid command."""
    text = command.strip()
    commands = CommandScanner(prefix).scan(text)
    if not commands:
        raise CommandSyntaxError(f"Invalid command format: expected {prefix}:server:tool(args)")

    first = commands[0]
    if len(commands) > 1 or first.start != 0 or first.end != len(text):
        raise CommandSyntaxError("Invalid command format: expected exactly one command")
    if not first.is_valid:
        raise CommandSyntaxError(f"Invalid arguments: {first.error}")
    return first
