"""Argument evaluation for command invocations.

Arguments are a bounded JSON-like literal grammar, roughly what a person (or
an LLM) writes as a JavaScript object literal:

    {path: 'src/app.ts', depth: 2, tags: ["a", "b",], note: `multi
    line`}

Supported: objects with quoted, bare or numeric keys; arrays; strings quoted
with ``"``, ``'`` or backticks; numbers (decimal, exponent, hex/octal/binary,
unary minus); ``true``/``false``/``null``; ``//`` and ``/* */`` comments;
trailing commas. Nesting deeper than MAX_NESTING levels and anything else is a
CommandSyntaxError.
"""

import re
import string
from typing import Any, Dict, List, Optional, Tuple

from sidecar.utils.errors import CommandSyntaxError

QUOTES = ('"', "'", "`")

_IDENT_START = set(string.ascii_letters + "_$")
_IDENT_CHARS = _IDENT_START | set(string.digits)
_KEYWORDS = {"true": True, "false": False, "null": None}
_SIMPLE_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", "v": "\v"}
_LINE_TERMINATORS = ("\n", "\u2028", "\u2029")

_DECIMAL = re.compile(r"(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_RADIX = {"x": (16, re.compile(r"[0-9a-fA-F]+")), "o": (8, re.compile(r"[0-7]+")), "b": (2, re.compile(r"[01]+"))}

MAX_NESTING = 128


def find_closing_paren(text: str, start: int) -> int:
    """Return the offset of the parenthesis closing an argument list.

    ``start`` is the offset just after the opening parenthesis, so the depth
    counter starts at 1. Quoted spans are skipped with backslash escaping.
    Returns -1 when the input ends before the depth reaches zero.
    """
    depth = 1
    in_string = False
    quote = ""
    escaped = False

    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                in_string = False
        elif char in QUOTES:
            in_string = True
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return i
    return -1


class LiteralParser:
    """Recursive-descent evaluator for one argument literal."""

    def __init__(self, source: str, offset: int = 0):
        self.source = source
        self.offset = offset
        self.pos = 0
        self.depth = 0

    def parse(self) -> Any:
        self._skip_whitespace()
        if self.pos >= len(self.source):
            return {}
        value = self._parse_value()
        self._skip_whitespace()
        if self.pos < len(self.source):
            raise self._error(f"Unexpected {self.source[self.pos]!r} after value")
        return value

    # -------------------------
    # Helpers
    # -------------------------
    def _error(self, message: str, pos: Optional[int] = None) -> CommandSyntaxError:
        absolute = self.offset + (self.pos if pos is None else pos)
        return CommandSyntaxError(f"{message} (at offset {absolute})", position=absolute)

    def _peek(self) -> str:
        return self.source[self.pos] if self.pos < len(self.source) else ""

    def _skip_whitespace(self) -> None:
        src = self.source
        while self.pos < len(src):
            if src[self.pos].isspace():
                self.pos += 1
            elif src.startswith("//", self.pos):
                newline = src.find("\n", self.pos)
                self.pos = len(src) if newline == -1 else newline + 1
            elif src.startswith("/*", self.pos):
                close = src.find("*/", self.pos + 2)
                if close == -1:
                    raise self._error("Unterminated comment")
                self.pos = close + 2
            else:
                break

    def _read_identifier(self) -> str:
        start = self.pos
        while self.pos < len(self.source) and self.source[self.pos] in _IDENT_CHARS:
            self.pos += 1
        return self.source[start:self.pos]

    # -------------------------
    # Values
    # -------------------------
    def _parse_value(self) -> Any:
        self._skip_whitespace()
        char = self._peek()
        if not char:
            raise self._error("Unexpected end of arguments")
        if char == "{" or char == "[":
            self.depth += 1
            if self.depth > MAX_NESTING:
                raise self._error(f"Nesting too deep (more than {MAX_NESTING} levels)")
            try:
                return self._parse_object() if char == "{" else self._parse_array()
            finally:
                self.depth -= 1
        if char in QUOTES:
            return self._parse_string()
        if char == "-" or char == "." or char.isdigit():
            return self._parse_number()
        if char in _IDENT_START:
            start = self.pos
            word = self._read_identifier()
            if word in _KEYWORDS:
                return _KEYWORDS[word]
            raise self._error(f"Unexpected identifier '{word}'", pos=start)
        raise self._error(f"Unexpected character {char!r}")

    def _parse_object(self) -> Dict[str, Any]:
        self.pos += 1
        result: Dict[str, Any] = {}
        while True:
            self._skip_whitespace()
            if self._peek() == "}":
                self.pos += 1
                return result

            key = self._parse_key()
            self._skip_whitespace()
            if self._peek() != ":":
                raise self._error(f"Expected ':' after property '{key}'")
            self.pos += 1
            result[key] = self._parse_value()

            self._skip_whitespace()
            char = self._peek()
            if char == ",":
                self.pos += 1
            elif char == "}":
                self.pos += 1
                return result
            elif not char:
                raise self._error("Unterminated object")
            else:
                raise self._error(f"Expected ',' or '}}' but found {char!r}")

    def _parse_key(self) -> str:
        char = self._peek()
        if char in QUOTES and char:
            return self._parse_string()
        if char in _IDENT_START:
            return self._read_identifier()
        if char.isdigit():
            number = self._parse_number()
            if isinstance(number, float) and number.is_integer():
                number = int(number)
            return str(number)
        if not char:
            raise self._error("Unterminated object")
        raise self._error(f"Expected property name but found {char!r}")

    def _parse_array(self) -> List[Any]:
        self.pos += 1
        items: List[Any] = []
        while True:
            self._skip_whitespace()
            if self._peek() == "]":
                self.pos += 1
                return items

            items.append(self._parse_value())

            self._skip_whitespace()
            char = self._peek()
            if char == ",":
                self.pos += 1
            elif char == "]":
                self.pos += 1
                return items
            elif not char:
                raise self._error("Unterminated array")
            else:
                raise self._error(f"Expected ',' or ']' but found {char!r}")

    def _parse_string(self) -> str:
        src = self.source
        quote = src[self.pos]
        start = self.pos
        self.pos += 1
        chars: List[str] = []
        while self.pos < len(src):
            char = src[self.pos]
            if char == quote:
                self.pos += 1
                return "".join(chars)
            if char == "\\":
                self.pos += 1
                chars.append(self._read_escape())
                continue
            if quote != "`" and char in ("\r", "\n"):
                break
            if quote == "`" and src.startswith("${", self.pos):
                raise self._error("Template interpolation is not supported")
            chars.append(char)
            self.pos += 1
        raise self._error("Unterminated string literal", pos=start)

    def _read_escape(self) -> str:
        src = self.source
        if self.pos >= len(src):
            raise self._error("Unterminated string literal")
        char = src[self.pos]
        self.pos += 1

        if char in _SIMPLE_ESCAPES:
            return _SIMPLE_ESCAPES[char]
        if char == "0" and not self._peek().isdigit():
            return "\0"
        if char == "x":
            return chr(self._read_hex(2))
        if char == "u":
            return self._read_unicode_escape()
        if char == "\r":
            if self._peek() == "\n":
                self.pos += 1
            return ""
        if char in _LINE_TERMINATORS:
            return ""
        return char

    def _read_hex(self, length: int) -> int:
        digits = self.source[self.pos:self.pos + length]
        if len(digits) != length or any(d not in string.hexdigits for d in digits):
            raise self._error("Invalid escape sequence")
        self.pos += length
        return int(digits, 16)

    def _read_unicode_escape(self) -> str:
        if self._peek() == "{":
            close = self.source.find("}", self.pos)
            digits = self.source[self.pos + 1:close] if close != -1 else ""
            if not digits or any(d not in string.hexdigits for d in digits) or int(digits, 16) > 0x10FFFF:
                raise self._error("Invalid unicode escape")
            self.pos = close + 1
            return chr(int(digits, 16))

        code = self._read_hex(4)
        # Combine a UTF-16 surrogate pair written as two escapes
        if 0xD800 <= code <= 0xDBFF and self.source.startswith("\\u", self.pos):
            saved = self.pos
            self.pos += 2
            try:
                low = self._read_hex(4)
            except CommandSyntaxError:
                self.pos = saved
                return chr(code)
            if 0xDC00 <= low <= 0xDFFF:
                return chr(0x10000 + ((code - 0xD800) << 10) + (low - 0xDC00))
            self.pos = saved
        return chr(code)

    def _parse_number(self) -> Any:
        start = self.pos
        negative = False
        if self._peek() == "-":
            negative = True
            self.pos += 1
            self._skip_whitespace()

        src = self.source
        value: Any
        prefix = src[self.pos:self.pos + 2].lower()
        if len(prefix) == 2 and prefix[0] == "0" and prefix[1] in _RADIX:
            base, pattern = _RADIX[prefix[1]]
            match = pattern.match(src, self.pos + 2)
            if not match:
                raise self._error("Invalid number", pos=start)
            value = int(match.group(0), base)
            self.pos = match.end()
        else:
            match = _DECIMAL.match(src, self.pos)
            if not match:
                raise self._error("Invalid number", pos=start)
            text = match.group(0)
            self.pos = match.end()
            if "." in text or "e" in text or "E" in text:
                value = float(text)
            else:
                value = int(text)

        if self._peek() and self._peek() in _IDENT_CHARS:
            raise self._error("Invalid number", pos=start)
        return -value if negative else value


def evaluate_literal(source: str, offset: int = 0) -> Any:
    """Evaluate an argument literal; empty source means no arguments (``{}``)."""
    return LiteralParser(source, offset=offset).parse()


def evaluate_arguments(text: str, start: int) -> Tuple[Any, int]:
    """Evaluate the argument list opening just before ``start``.

    Returns the structured value and the offset of the matching closing
    parenthesis. Raises CommandSyntaxError for an unterminated list or an
    invalid literal.
    """
    close = find_closing_paren(text, start)
    if close == -1:
        raise CommandSyntaxError(
            "Unterminated argument list: missing ')'",
            position=len(text),
        )
    return evaluate_literal(text[start:close], offset=start), close
