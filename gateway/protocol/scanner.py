"""Byte-cursor JSON scanner for the fixed gateway envelope shapes.

The scanner validates a complete JSON value and hands back tagged spans
(``Value``) instead of building a document tree. Containers are only opened
one level at a time, on demand, via ``Value.members()`` / ``Value.elements()``;
nested payloads stay as raw bytes until a caller asks for them.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Optional, Union

from gateway.errors import InvalidParamError, ScanError

DEFAULT_MAX_DEPTH = 32
# The scanner recurses once per nesting level.
MAX_NESTING_DEPTH = 256

BytesLike = Union[bytes, bytearray, memoryview, str]

_WS = re.compile(rb"[ \t\r\n]*")
_NUMBER = re.compile(rb"-?(?:0|[1-9][0-9]*)(?:\.[0-9]+)?(?:[eE][+-]?[0-9]+)?")
_STRING_RUN = re.compile(rb'[^"\\\x00-\x1f]*')
_HEX = frozenset(b"0123456789abcdefABCDEF")
_SIMPLE_ESCAPES = {
    ord('"'): '"',
    ord("\\"): "\\",
    ord("/"): "/",
    ord("b"): "\b",
    ord("f"): "\f",
    ord("n"): "\n",
    ord("r"): "\r",
    ord("t"): "\t",
}

_QUOTE = ord('"')
_BACKSLASH = ord("\\")
_LBRACE = ord("{")
_RBRACE = ord("}")
_LBRACKET = ord("[")
_RBRACKET = ord("]")
_COLON = ord(":")
_COMMA = ord(",")
_MINUS = ord("-")


class ValueKind(enum.Enum):
    STRING = "string"
    OBJECT = "object"
    ARRAY = "array"
    NUMBER = "number"
    BOOL = "bool"
    NULL = "null"


@dataclass(frozen=True)
class Value:
    """A scanned JSON value: its kind plus the exact bytes it spans."""

    kind: ValueKind
    raw: bytes
    max_depth: int = DEFAULT_MAX_DEPTH

    @property
    def is_null(self) -> bool:
        return self.kind is ValueKind.NULL

    def as_int(self) -> int:
        if self.kind is not ValueKind.NUMBER:
            raise ScanError(f"expected integer, found {self.kind.value}", 0)
        if any(ch in self.raw for ch in b".eE"):
            raise ScanError("expected integer, found fractional number", 0)
        return int(self.raw)

    def as_str(self) -> str:
        if self.kind is not ValueKind.STRING:
            raise ScanError(f"expected string, found {self.kind.value}", 0)
        return _unescape(self.raw[1:-1])

    def as_bool(self) -> bool:
        if self.kind is not ValueKind.BOOL:
            raise ScanError(f"expected bool, found {self.kind.value}", 0)
        return self.raw == b"true"

    def members(self) -> dict[str, "Value"]:
        """Return the object's direct members; duplicate keys keep the last value."""

        if self.kind is not ValueKind.OBJECT:
            raise ScanError(f"expected object, found {self.kind.value}", 0)
        return dict(Scanner(self.raw, max_depth=self.max_depth).scan_members())

    def elements(self) -> list["Value"]:
        if self.kind is not ValueKind.ARRAY:
            raise ScanError(f"expected array, found {self.kind.value}", 0)
        return Scanner(self.raw, max_depth=self.max_depth).scan_elements()

    def get(self, key: str) -> Optional["Value"]:
        return self.members().get(key)


class Scanner:
    """Single-pass cursor over one JSON document."""

    def __init__(self, data: BytesLike, *, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        if isinstance(max_depth, bool) or not isinstance(max_depth, int) or not 1 <= max_depth <= MAX_NESTING_DEPTH:
            raise InvalidParamError(f"max_depth must be within [1, {MAX_NESTING_DEPTH}]")
        self._data = bytes(data)
        self._pos = 0
        self._max_depth = max_depth

    @property
    def position(self) -> int:
        return self._pos

    def parse(self) -> Value:
        """Scan exactly one value; anything but whitespace after it is an error."""

        self._skip_ws()
        value = self._scan_value(0)
        self._finish()
        return value

    def scan_members(self) -> list[tuple[str, Value]]:
        self._skip_ws()
        if self._peek() != _LBRACE:
            raise ScanError("expected object", self._pos)
        members: list[tuple[str, Value]] = []
        self._scan_object(1, members)
        self._finish()
        return members

    def scan_elements(self) -> list[Value]:
        self._skip_ws()
        if self._peek() != _LBRACKET:
            raise ScanError("expected array", self._pos)
        elements: list[Value] = []
        self._scan_array(1, elements)
        self._finish()
        return elements

    def _finish(self) -> None:
        self._skip_ws()
        if self._pos != len(self._data):
            raise ScanError("unexpected trailing data", self._pos)

    def _skip_ws(self) -> None:
        self._pos = _WS.match(self._data, self._pos).end()

    def _peek(self) -> int:
        if self._pos >= len(self._data):
            raise ScanError("unexpected end of input", self._pos)
        return self._data[self._pos]

    def _expect(self, byte: int, message: str) -> None:
        if self._peek() != byte:
            raise ScanError(message, self._pos)
        self._pos += 1

    def _scan_value(self, depth: int) -> Value:
        start = self._pos
        ch = self._peek()
        if ch == _QUOTE:
            self._scan_string()
            kind = ValueKind.STRING
        elif ch == _LBRACE:
            self._scan_object(depth + 1, None)
            kind = ValueKind.OBJECT
        elif ch == _LBRACKET:
            self._scan_array(depth + 1, None)
            kind = ValueKind.ARRAY
        elif ch == _MINUS or 0x30 <= ch <= 0x39:
            self._scan_number()
            kind = ValueKind.NUMBER
        elif ch == ord("t"):
            self._scan_literal(b"true")
            kind = ValueKind.BOOL
        elif ch == ord("f"):
            self._scan_literal(b"false")
            kind = ValueKind.BOOL
        elif ch == ord("n"):
            self._scan_literal(b"null")
            kind = ValueKind.NULL
        else:
            raise ScanError(f"unexpected character {chr(ch)!r}", self._pos)
        return Value(kind, self._data[start:self._pos], self._max_depth)

    def _check_depth(self, depth: int) -> None:
        if depth > self._max_depth:
            raise ScanError(f"nesting deeper than {self._max_depth}", self._pos)

    def _scan_object(self, depth: int, collect: Optional[list[tuple[str, Value]]]) -> None:
        self._check_depth(depth)
        self._pos += 1
        self._skip_ws()
        if self._peek() == _RBRACE:
            self._pos += 1
            return
        while True:
            self._skip_ws()
            if self._peek() != _QUOTE:
                raise ScanError("expected member name", self._pos)
            key_start = self._pos
            self._scan_string()
            key_end = self._pos
            self._skip_ws()
            self._expect(_COLON, "expected ':'")
            self._skip_ws()
            value = self._scan_value(depth)
            if collect is not None:
                collect.append((_unescape(self._data[key_start + 1 : key_end - 1]), value))
            self._skip_ws()
            ch = self._peek()
            self._pos += 1
            if ch == _RBRACE:
                return
            if ch != _COMMA:
                raise ScanError("expected ',' or '}'", self._pos - 1)

    def _scan_array(self, depth: int, collect: Optional[list[Value]]) -> None:
        self._check_depth(depth)
        self._pos += 1
        self._skip_ws()
        if self._peek() == _RBRACKET:
            self._pos += 1
            return
        while True:
            self._skip_ws()
            value = self._scan_value(depth)
            if collect is not None:
                collect.append(value)
            self._skip_ws()
            ch = self._peek()
            self._pos += 1
            if ch == _RBRACKET:
                return
            if ch != _COMMA:
                raise ScanError("expected ',' or ']'", self._pos - 1)

    def _scan_string(self) -> None:
        data = self._data
        self._pos += 1
        while True:
            self._pos = _STRING_RUN.match(data, self._pos).end()
            if self._pos >= len(data):
                raise ScanError("unterminated string", self._pos)
            ch = data[self._pos]
            if ch == _QUOTE:
                self._pos += 1
                return
            if ch != _BACKSLASH:
                raise ScanError("control character in string", self._pos)
            if self._pos + 1 >= len(data):
                raise ScanError("unterminated string", self._pos)
            escape = data[self._pos + 1]
            if escape == ord("u"):
                digits = data[self._pos + 2 : self._pos + 6]
                if len(digits) < 4:
                    raise ScanError("unterminated string", len(data))
                if not all(digit in _HEX for digit in digits):
                    raise ScanError("invalid unicode escape", self._pos)
                self._pos += 6
            elif escape in _SIMPLE_ESCAPES:
                self._pos += 2
            else:
                raise ScanError("invalid escape sequence", self._pos)

    def _scan_number(self) -> None:
        match = _NUMBER.match(self._data, self._pos)
        if match is None:
            if self._pos + 1 >= len(self._data):
                raise ScanError("unexpected end of input", len(self._data))
            raise ScanError("invalid number", self._pos)
        self._pos = match.end()

    def _scan_literal(self, literal: bytes) -> None:
        if not self._data.startswith(literal, self._pos):
            if len(self._data) - self._pos < len(literal) and literal.startswith(self._data[self._pos :]):
                raise ScanError("unexpected end of input", len(self._data))
            raise ScanError("invalid literal", self._pos)
        self._pos += len(literal)


def _unescape(raw: bytes) -> str:
    """Decode the body of an already-scanned string literal."""

    try:
        if _BACKSLASH not in raw:
            return raw.decode("utf-8")
        parts: list[str] = []
        index = 0
        while True:
            slash = raw.find(b"\\", index)
            if slash < 0:
                parts.append(raw[index:].decode("utf-8"))
                break
            parts.append(raw[index:slash].decode("utf-8"))
            escape = raw[slash + 1]
            if escape != ord("u"):
                parts.append(_SIMPLE_ESCAPES[escape])
                index = slash + 2
                continue
            code = int(raw[slash + 2 : slash + 6], 16)
            index = slash + 6
            if 0xD800 <= code <= 0xDBFF and raw[index : index + 2] == b"\\u":
                low = int(raw[index + 2 : index + 6], 16)
                if 0xDC00 <= low <= 0xDFFF:
                    code = 0x10000 + ((code - 0xD800) << 10) + (low - 0xDC00)
                    index += 6
            parts.append(chr(code))
        return "".join(parts)
    except UnicodeDecodeError as exc:
        raise ScanError("invalid utf-8 in string", exc.start) from exc


def parse(data: BytesLike, *, max_depth: int = DEFAULT_MAX_DEPTH) -> Value:
    """Scan ``data`` as exactly one JSON value."""

    return Scanner(data, max_depth=max_depth).parse()


__all__ = ["DEFAULT_MAX_DEPTH", "MAX_NESTING_DEPTH", "Scanner", "Value", "ValueKind", "parse"]
