"""Parser for Clarity value `repr` strings.

The Hiro API returns contract call arguments and print-event payloads as
Clarity source representations, e.g.::

    (tuple (event "buy") (stx-amount u1000000000) (token 'SP...launchpad-token))

`parse_repr` turns them into plain Python values:

- `u12` / `-3` -> int
- `"abc"` / `u"abc"` -> str
- `'SP...` / `'SP....name` -> str (principal without the quote)
- `true` / `false` -> bool
- `none` -> None, `(some x)` -> x
- `(ok x)` / `(err x)` -> ResponseValue
- `(list ...)` -> list
- `(tuple (k v) ...)` or `{k: v, ...}` -> dict with `-` in keys replaced by `_`
- `0x..` -> hex str
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class ClarityParseError(ValueError):
    """Raised when a repr string is not valid Clarity."""


@dataclass(frozen=True)
class ResponseValue:
    """A Clarity `(ok ...)` / `(err ...)` response."""

    ok: bool
    value: Any


def normalize_key(key: str) -> str:
    return key.replace("-", "_")


_DELIMITERS = frozenset("(){},: \t\r\n")


class _Parser:
    def __init__(self, text: str) -> None:
        self._text = text
        self._pos = 0

    def parse(self) -> Any:
        value = self._value()
        self._skip_ws()
        if self._pos != len(self._text):
            raise ClarityParseError(f"Trailing input at {self._pos}: {self._text[self._pos:]!r}")
        return value

    def _skip_ws(self) -> None:
        while self._pos < len(self._text) and self._text[self._pos].isspace():
            self._pos += 1

    def _peek(self) -> str:
        self._skip_ws()
        if self._pos >= len(self._text):
            raise ClarityParseError("Unexpected end of input")
        return self._text[self._pos]

    def _expect(self, char: str) -> None:
        if self._peek() != char:
            raise ClarityParseError(f"Expected {char!r} at {self._pos}")
        self._pos += 1

    def _atom(self) -> str:
        self._skip_ws()
        start = self._pos
        while self._pos < len(self._text) and self._text[self._pos] not in _DELIMITERS:
            self._pos += 1
        if start == self._pos:
            raise ClarityParseError(f"Expected atom at {start}")
        return self._text[start : self._pos]

    def _string(self) -> str:
        self._expect('"')
        out: list[str] = []
        while self._pos < len(self._text):
            ch = self._text[self._pos]
            self._pos += 1
            if ch == "\\" and self._pos < len(self._text):
                out.append(self._text[self._pos])
                self._pos += 1
            elif ch == '"':
                return "".join(out)
            else:
                out.append(ch)
        raise ClarityParseError("Unterminated string literal")

    def _value(self) -> Any:
        ch = self._peek()
        if ch == "(":
            return self._form()
        if ch == "{":
            return self._braced_tuple()
        if ch == '"':
            return self._string()
        if ch == "u" and self._text.startswith('u"', self._pos):
            self._pos += 1
            return self._string()
        if ch == "'":
            self._pos += 1
            return self._atom()
        return self._literal(self._atom())

    def _literal(self, atom: str) -> Any:
        if atom == "true":
            return True
        if atom == "false":
            return False
        if atom == "none":
            return None
        if atom.startswith("0x"):
            return atom
        try:
            if atom.startswith("u"):
                return int(atom[1:])
            return int(atom)
        except ValueError as e:
            raise ClarityParseError(f"Unknown literal {atom!r}") from e

    def _form(self) -> Any:
        self._expect("(")
        head = self._atom()
        if head == "tuple":
            result: dict[str, Any] = {}
            while self._peek() != ")":
                self._expect("(")
                key = self._atom()
                result[normalize_key(key)] = self._value()
                self._expect(")")
            self._expect(")")
            return result
        if head == "list":
            items: list[Any] = []
            while self._peek() != ")":
                items.append(self._value())
            self._expect(")")
            return items
        if head in ("some", "ok", "err"):
            inner = self._value()
            self._expect(")")
            if head == "some":
                return inner
            return ResponseValue(ok=head == "ok", value=inner)
        raise ClarityParseError(f"Unsupported form {head!r}")

    def _braced_tuple(self) -> dict[str, Any]:
        self._expect("{")
        result: dict[str, Any] = {}
        while self._peek() != "}":
            key = self._atom()
            self._expect(":")
            result[normalize_key(key)] = self._value()
            if self._peek() == ",":
                self._pos += 1
        self._expect("}")
        return result


def parse_repr(text: str) -> Any:
    """Parse a Clarity repr string into a Python value.

    Raises:
        ClarityParseError: If the text is not a supported Clarity value.
    """
    if not isinstance(text, str):
        raise ClarityParseError(f"Expected str, got {type(text).__name__}")
    return _Parser(text).parse()
