"""
llm_jsonrepair.py
Context-aware recovery parser for broken JSON emitted by LLMs.

═══════════════════════════════════════════════════════════════════════════════
How it works
═══════════════════════════════════════════════════════════════════════════════

1. **Fast path**: the text is first handed to a strict JSON decoder
   (NaN/Infinity rejected).  Valid input never reaches the repair engine.

2. **Recovery parser**: a single forward pass over the text with a cursor and
   a context stack (object key / object value / array).  The stack tells the
   scanner where an unquoted token ends:

       object key   -> ends at ':'
       object value -> ends at ',' '}' ']'
       array item   -> ends at ',' '}' ']'
       top level    -> ends at ',' '}' ']' ':'

   Missing closers, quotes, colons and commas are inferred; stray characters
   are skipped one at a time; back-to-back values are collected into a list.

Examples

    {"name": "John", "courses": ["Math", "Sci"    -> closes array and object
    {name: "Alice", active: true}                  -> quotes the keys
    {"a": 1}{"b": 2                                -> [{"a": 1}, {"b": 2}]
    Here is the JSON: {"ok": true                  -> prose dropped

Recovery never raises.  The only error surfaced by ``repair()`` is a failure
to serialize the recovered value (``SerializationError``).

Debug logging (disabled by default).  Enable by setting JSON_REPAIR_DEBUG=1,
or pass any ``logging``-style object as ``logger=``.

Public API
- repair(text, logger=None) -> str
- loads(text, logger=None) -> Any            (alias: load)
- repair_json(broken, return_dict=False, logger=None) -> Any
- new_parser(text, logger=None, max_depth=DEFAULT_MAX_DEPTH) -> RepairParser
"""

from __future__ import annotations

import enum
import json
import logging
import math
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

__all__ = [
    "Context",
    "ContextStack",
    "DEFAULT_MAX_DEPTH",
    "JSONRepairError",
    "RepairParser",
    "SerializationError",
    "load",
    "loads",
    "new_parser",
    "repair",
    "repair_json",
]

_SENTINEL = object()

# Parser signals.  Never returned from the public API.
_NO_VALUE = object()  # input ended before a value started
_GARBAGE = object()  # current character cannot start a value

DEFAULT_MAX_DEPTH = 200

JSONValue = Union[Dict[str, Any], List[Any], str, int, float, bool, None]


class JSONRepairError(ValueError):
    """Base class for errors raised by this module."""


class SerializationError(JSONRepairError):
    """The recovered value could not be encoded back to JSON text."""


# Optional speed-ups
try:
    import orjson  # type: ignore

    _USE_ORJSON = True
except Exception:
    orjson = None  # type: ignore
    _USE_ORJSON = False

# Debug logging (disabled by default). Enable by setting JSON_REPAIR_DEBUG=1
import os as _os

_DEBUG = _os.environ.get("JSON_REPAIR_DEBUG", "").strip() not in (
    "",
    "0",
    "false",
    "False",
)

_logger = logging.getLogger(__name__)
_logger.addHandler(logging.NullHandler())

if _DEBUG:
    _handler = logging.StreamHandler()
    _handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    _logger.addHandler(_handler)
    _logger.setLevel(logging.DEBUG)


# -----------------------------
# Strict parse (reject NaN/Inf)
# -----------------------------
def _strict_loads(text: str) -> Any:
    def _bad_const(x: str) -> Any:
        raise ValueError(f"Invalid JSON constant: {x}")

    # json.loads is used here because it supports parse_constant for strictness.
    return json.loads(text, parse_constant=_bad_const)


def _try_parse(text: str) -> Any:
    try:
        return _strict_loads(text)
    except (ValueError, RecursionError):
        return _SENTINEL


def _pretty_dumps(obj: Any) -> str:
    if _USE_ORJSON:
        try:
            return orjson.dumps(obj, option=orjson.OPT_INDENT_2).decode("utf-8")  # type: ignore
        except orjson.JSONEncodeError:  # type: ignore
            # Valid values can exceed orjson's encoding limits; json still takes them.
            pass
    return json.dumps(obj, ensure_ascii=False, indent=2)


# -----------------------------
# Context stack
# -----------------------------
class Context(enum.Enum):
    """Where in the grammar the cursor currently is."""

    OBJECT_KEY = "object_key"
    OBJECT_VALUE = "object_value"
    ARRAY = "array"


class ContextStack:
    """
    One marker per open container, innermost on top.

    Only consulted to decide where an unquoted token ends; the values being
    built never look at it.
    """

    def __init__(self) -> None:
        self._stack: List[Context] = []

    def push(self, ctx: Context) -> None:
        self._stack.append(ctx)

    def pop(self) -> Optional[Context]:
        if self._stack:
            return self._stack.pop()
        return None

    def current(self) -> Optional[Context]:
        return self._stack[-1] if self._stack else None

    def set(self, ctx: Context) -> None:
        """Replace the innermost marker (object key <-> object value)."""
        if self._stack:
            self._stack[-1] = ctx

    def __len__(self) -> int:
        return len(self._stack)

    def __repr__(self) -> str:
        return f"ContextStack({[c.name for c in self._stack]})"


# -----------------------------
# Character classes
# -----------------------------
_QUOTES: FrozenSet[str] = frozenset("\"'")
_OPENERS: FrozenSet[str] = frozenset("{[")
_DIGITS: FrozenSet[str] = frozenset("0123456789")
_NUMBER_START: FrozenSet[str] = _DIGITS | {"-"}
_NUMBER_CHARS: FrozenSet[str] = _DIGITS | frozenset(".-eE")
_FLOAT_MARKERS: FrozenSet[str] = frozenset(".eE")
_LITERAL_START: FrozenSet[str] = frozenset("tfn")

# Checked in this order: "true" before "false" before "null".
_LITERALS: Tuple[Tuple[str, Any], ...] = (
    ("true", True),
    ("false", False),
    ("null", None),
)

# Where a quote-missing string stops, keyed by the innermost context.
_UNQUOTED_TERMINATORS: Dict[Optional[Context], FrozenSet[str]] = {
    Context.OBJECT_KEY: frozenset(":"),
    Context.OBJECT_VALUE: frozenset(",}]"),
    Context.ARRAY: frozenset(",}]"),
    None: frozenset(",}]:"),
}

_ESCAPES: Dict[str, str] = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "'": "'",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


# -----------------------------
# Recovery parser
# -----------------------------
class RepairParser:
    """
    Recursive-descent parser that reconstructs a JSON value from broken text.

    One instance parses one input, once.  ``logger`` is any object with a
    ``logging``-style ``debug(msg, *args)``; it receives every non-fatal
    recovery decision and has no influence on the result.  Containers nested
    deeper than ``max_depth`` are not descended into: their opening character
    is skipped like any other garbage.
    """

    def __init__(
        self,
        text: str,
        logger: Optional[Any] = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self.text = text
        self.index = 0
        self.context = ContextStack()
        self.logger = logger if logger is not None else _logger
        self.max_depth = max_depth
        self._consumed = False

    # -- cursor --------------------------------------------------------------

    def peek(self, offset: int = 0) -> str:
        """Character at cursor+offset, or "" when out of range."""
        pos = self.index + offset
        if 0 <= pos < len(self.text):
            return self.text[pos]
        return ""

    def at_end(self) -> bool:
        return self.index >= len(self.text)

    def skip_whitespace(self) -> None:
        text = self.text
        n = len(text)
        i = self.index
        while i < n and text[i].isspace():
            i += 1
        self.index = i

    # -- entry point ---------------------------------------------------------

    def parse(self) -> JSONValue:
        """
        Recover every top-level value in the input.

        Returns the value itself when exactly one was found, a list when the
        input held several back-to-back values, and None when nothing could
        be recovered at all.
        """
        if self._consumed:
            raise RuntimeError("RepairParser instances are single-use")
        self._consumed = True

        first = self.parse_value()
        if first is _NO_VALUE:
            self.logger.debug("no JSON value found in %d characters", len(self.text))
            return None

        results: List[Any] = [first]
        while not self.at_end():
            self.skip_whitespace()
            if self.at_end():
                break
            value = self.parse_value()
            if value is _NO_VALUE:
                self.index += 1
                continue
            results.append(value)

        if len(results) == 1:
            return first
        self.logger.debug("recovered %d concatenated top-level values", len(results))
        return results

    # -- dispatch ------------------------------------------------------------

    def parse_value(self) -> Any:
        """
        Parse whatever value starts at the cursor.

        Characters that cannot start a value are skipped one at a time,
        punctuation of the enclosing structure included.  Returns
        ``_NO_VALUE`` when the input runs out first.
        """
        skipped = 0
        skip_start = self.index
        while True:
            self.skip_whitespace()
            char = self.peek()
            if not char:
                value = _NO_VALUE
                break
            value = self._dispatch(char)
            if value is not _GARBAGE:
                break
            if not skipped:
                skip_start = self.index
            self.index += 1
            skipped += 1

        if skipped:
            self.logger.debug(
                "skipped %d unparsable character(s) from offset %d",
                skipped,
                skip_start,
            )
        return value

    def _dispatch(self, char: str) -> Any:
        ctx = self.context.current()

        if char in _OPENERS:
            if len(self.context) >= self.max_depth:
                self.logger.debug(
                    "nesting limit %d reached at offset %d; skipping %r",
                    self.max_depth,
                    self.index,
                    char,
                )
                return _GARBAGE
            self.index += 1
            return self.parse_object() if char == "{" else self.parse_array()

        if char in _QUOTES:
            return self.parse_string()
        if char in _NUMBER_START:
            return self.parse_number()
        if char in _LITERAL_START and (ctx is not None or self._match_literal()):
            return self.parse_boolean_or_null()

        # Outside any structure bare words are prose, not values.
        if ctx is None:
            return _GARBAGE
        if char.isalpha():
            return self.parse_string()
        return _GARBAGE

    # -- containers ----------------------------------------------------------

    def parse_object(self) -> Dict[str, Any]:
        """Parse members until '}' or end of input; the '{' is already consumed."""
        obj: Dict[str, Any] = {}
        start = self.index - 1
        self.context.push(Context.OBJECT_KEY)
        try:
            while True:
                self.skip_whitespace()
                char = self.peek()
                if not char or char == "}":
                    break
                if char == ",":
                    self.index += 1
                    continue

                self.context.set(Context.OBJECT_KEY)
                key = self._parse_key()
                if key is _NO_VALUE:
                    self.skip_whitespace()
                    if self.peek() == "}":
                        break
                    self.index += 1
                    continue

                self.skip_whitespace()
                if self.peek() == ":":
                    self.index += 1
                else:
                    self.logger.debug(
                        "missing ':' after key %r at offset %d", key, self.index
                    )

                self.context.set(Context.OBJECT_VALUE)
                value = self.parse_value()
                if value is _NO_VALUE:
                    self.logger.debug("input ended before value of key %r", key)
                    value = None
                obj[key] = value

                self.skip_whitespace()
                char = self.peek()
                if char == ",":
                    self.index += 1
                elif char == "}":
                    break
        finally:
            self.context.pop()

        if self.peek() == "}":
            self.index += 1
        else:
            self.logger.debug("closing '}' missing for object at offset %d", start)
        return obj

    def _parse_key(self) -> Any:
        # In OBJECT_KEY context parse_string either consumes input or stops on
        # ':' (an empty key), so only a narrower scanner can report no key.
        self.skip_whitespace()
        start = self.index
        key = self.parse_string()
        if self.index == start and self.peek() != ":":
            return _NO_VALUE
        return key

    def parse_array(self) -> List[Any]:
        """Parse elements until ']' or end of input; the '[' is already consumed."""
        arr: List[Any] = []
        start = self.index - 1
        self.context.push(Context.ARRAY)
        try:
            while True:
                self.skip_whitespace()
                char = self.peek()
                if not char or char == "]":
                    break
                if char == ",":
                    self.index += 1
                    continue

                value = self.parse_value()
                if value is _NO_VALUE:
                    self.logger.debug("input ended before array element")
                    value = None
                arr.append(value)

                self.skip_whitespace()
                char = self.peek()
                if char == ",":
                    self.index += 1
                elif char == "]":
                    break
        finally:
            self.context.pop()

        if self.peek() == "]":
            self.index += 1
        else:
            self.logger.debug("closing ']' missing for array at offset %d", start)
        return arr

    # -- scalars -------------------------------------------------------------

    def parse_string(self) -> str:
        """
        Parse a quoted or quote-missing string.

        A quoted string runs to its matching quote or to the end of input.
        A quote-missing string runs to the first terminator allowed by the
        current context, which is left unconsumed, and loses trailing
        whitespace.
        """
        self.skip_whitespace()
        char = self.peek()
        if not char:
            return ""

        quote: Optional[str] = None
        if char in _QUOTES:
            quote = char
            self.index += 1
        terminators = _UNQUOTED_TERMINATORS[self.context.current()]

        text = self.text
        n = len(text)
        i = self.index
        out: List[str] = []
        closed = False

        while i < n:
            c = text[i]
            if c == "\\":
                i += 1
                if i >= n:
                    break
                nxt = text[i]
                mapped = _ESCAPES.get(nxt)
                if mapped is None:
                    self.logger.debug("keeping unknown escape \\%s at offset %d", nxt, i - 1)
                    out.append("\\" + nxt)
                else:
                    out.append(mapped)
                i += 1
                continue

            if quote is not None:
                if c == quote:
                    i += 1
                    closed = True
                    break
            elif c in terminators:
                break

            out.append(c)
            i += 1

        self.index = i
        value = "".join(out)
        if quote is None:
            return value.rstrip()
        if not closed:
            self.logger.debug("unterminated string closed at end of input")
        return value

    def parse_number(self) -> Union[int, float, str]:
        """
        Greedy run of digits, '.', '-', 'e', 'E'.

        Falls back to the raw run as a string when it is not a valid number,
        when an integer does not fit in 64 bits, or when a float overflows.
        """
        text = self.text
        n = len(text)
        start = i = self.index
        while i < n and text[i] in _NUMBER_CHARS:
            i += 1
        self.index = i
        raw = text[start:i]

        number: Union[int, float, None]
        try:
            if _FLOAT_MARKERS.intersection(raw):
                number = float(raw)
                if math.isinf(number):
                    number = None
            else:
                number = int(raw)
                if not _INT64_MIN <= number <= _INT64_MAX:
                    number = None
        except ValueError:
            number = None

        if number is None:
            self.logger.debug("keeping malformed number %r as a string", raw)
            return raw
        return number

    def _match_literal(self) -> Optional[Tuple[str, Any]]:
        for word, value in _LITERALS:
            if self.text.startswith(word, self.index):
                return word, value
        return None

    def parse_boolean_or_null(self) -> Any:
        match = self._match_literal()
        if match is None:
            return self.parse_string()
        word, value = match
        self.index += len(word)
        return value


# -----------------------------
# Public API
# -----------------------------
def new_parser(
    text: str,
    logger: Optional[Any] = None,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> RepairParser:
    """Build a single-use parser; ``logger`` installs a diagnostic sink."""
    return RepairParser(text, logger=logger, max_depth=max_depth)


def loads(text: str, logger: Optional[Any] = None) -> JSONValue:
    """
    Parse JSON-ish text into Python data.

    Valid JSON goes through the strict decoder untouched; anything else is
    handed to the recovery parser.  Never raises for ``str`` input.
    """
    parsed = _try_parse(text)
    if parsed is not _SENTINEL:
        return parsed
    return RepairParser(text, logger=logger).parse()


load = loads


def repair(text: str, logger: Optional[Any] = None) -> str:
    """
    Repair JSON-ish text and return it as two-space indented JSON.

    Raises
    ------
    SerializationError : the recovered value could not be encoded by
                         either JSON encoder.
    """
    value = loads(text, logger=logger)
    try:
        return _pretty_dumps(value)
    except (TypeError, ValueError, RecursionError) as exc:
        raise SerializationError(f"Could not serialize recovered JSON: {exc}") from exc


def repair_json(
    broken: str,
    return_dict: bool = False,
    logger: Optional[Any] = None,
) -> Any:
    """
    Repair and parse JSON-ish text.

    Parameters
    ----------
    broken      : The malformed JSON string to repair.
    return_dict : If True, return the parsed Python object; otherwise return
                  a pretty-printed JSON string.  Default False.
    logger      : Optional diagnostic sink for recovery decisions.
    """
    if return_dict:
        return loads(broken, logger=logger)
    return repair(broken, logger=logger)


# =============================
# Demo
# =============================


def _run_demo() -> None:
    GREEN = "\033[92m"
    CYAN = "\033[96m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RESET = "\033[0m"

    cases: List[Tuple[str, str, str]] = [
        (
            "DEMO-01",
            "Missing closing brackets",
            '{"name": "John Doe", "age": 30, "courses": ["Math", "Science"',
        ),
        (
            "DEMO-02",
            "Deeply nested, unquoted keys, unclosed array",
            '{"id": 1, "user": {name: "Alice", details: { "email": "alice@example.com",'
            ' affiliations: ["Org1", "Org2',
        ),
        (
            "DEMO-03",
            "Escaped quotes and unterminated string",
            '{"quote": "He said, \\"This is a test.", "message": "Here\'s another'
            " quote: 'Hello World'",
        ),
        (
            "DEMO-04",
            "Truncated object stream",
            '{"event": "start", "id": 1}{"event": "update", "id": 1,'
            ' "payload": {"status": "in_progress"',
        ),
        (
            "DEMO-05",
            "Missing colons and commas",
            '{user "John" age 30 city "New York" valid true',
        ),
        (
            "DEMO-06",
            "Unclosed nested object",
            '{"data": {"key1": "value1", "key2": {"nested_key": "nested_value"',
        ),
        (
            "DEMO-07",
            "Empty key and missing value",
            '{"": "empty key", "key_with_missing_value":, "another_key": "value"}',
        ),
        (
            "DEMO-08",
            "Unquoted array items",
            '["string1", item2, 3, "item4',
        ),
        (
            "DEMO-09",
            "Leading prose",
            'Here is the JSON: {"reasoning": "The user wants a summary.",'
            ' "result": {"summary": "This is a summary text...',
        ),
    ]

    print(f"\n{BOLD}{'=' * 74}{RESET}")
    print(f"{BOLD}  llm_jsonrepair -- {len(cases)} demo cases{RESET}")
    print(f"{BOLD}{'=' * 74}{RESET}\n")

    for id_, desc, broken in cases:
        print(f"{BOLD}{CYAN}{id_}{RESET}: {desc}")
        short = (broken[:88] + "...") if len(broken) > 88 else broken
        print(f"  {DIM}Input: {short!r}{RESET}")
        result = repair(broken)
        for line in result.splitlines():
            print(f"  {GREEN}{line}{RESET}")
        print()


if __name__ == "__main__":
    _run_demo()
