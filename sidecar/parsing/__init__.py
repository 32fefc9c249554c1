from sidecar.parsing.literal import evaluate_arguments, evaluate_literal, find_closing_paren
from sidecar.parsing.scanner import (
    DEFAULT_PREFIX,
    CommandScanner,
    ParsedCommand,
    parse_single_command,
    scan_commands,
)

__all__ = [
    "DEFAULT_PREFIX",
    "CommandScanner",
    "ParsedCommand",
    "evaluate_arguments",
    "evaluate_literal",
    "find_closing_paren",
    "parse_single_command",
    "scan_commands",
]
