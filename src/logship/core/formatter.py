"""
Record formatters.

A formatter renders one LogRecord into the line text stored in a stream.
Formatters are injected into the shipper at construction time.

Features:
- logfmt rendering with quoting and escaping of unsafe values
- JSON rendering for backends that parse JSON lines
- Selectable automatic fields (level, message, target, module, file, line, extra)
"""

import json
import unicodedata
from enum import Flag, auto
from typing import Any, Dict, Iterator, List, Optional, Protocol, Set, Tuple, runtime_checkable

from ..models.record import FieldValue, LogRecord

# Characters that may not appear in logfmt keys
INVALID_KEY_CHARS = frozenset(' ="')


@runtime_checkable
class Formatter(Protocol):
    """Capability that renders a record into a line of text."""

    def format(self, record: LogRecord) -> str:
        ...


class AutoFields(Flag):
    """Which record attributes a formatter renders automatically."""

    LEVEL = auto()
    MESSAGE = auto()
    TARGET = auto()
    MODULE = auto()
    FILE = auto()
    LINE = auto()
    EXTRA = auto()

    @classmethod
    def default(cls) -> "AutoFields":
        return cls.LEVEL | cls.MESSAGE | cls.MODULE | cls.EXTRA


def _render_value(value: FieldValue) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def iter_record_fields(record: LogRecord, include: AutoFields) -> Iterator[Tuple[str, str]]:
    """
    Yield (key, value) pairs for a record in render order.

    Automatic fields come first, followed by the record's own fields in
    insertion order.
    """
    if AutoFields.LEVEL in include:
        yield "level", record.level.value.lower()

    if AutoFields.MESSAGE in include and record.message:
        yield "message", record.message

    if AutoFields.TARGET in include and record.target:
        yield "target", record.target

    if AutoFields.MODULE in include and record.module:
        yield "module", record.module

    if AutoFields.FILE in include and record.file:
        yield "file", record.file

    if AutoFields.LINE in include and record.line is not None:
        yield "line", str(record.line)

    if AutoFields.EXTRA in include:
        for key, value in record.fields.items():
            yield key, _render_value(value)


class LogfmtFormatter:
    """
    Formatter producing logfmt lines (key=value pairs separated by spaces).

    Keys are normalized by dropping spaces, '=' and '"'; an empty key
    becomes '_'. Only the first occurrence of a key is written.
    """

    def __init__(
        self,
        include_fields: Optional[AutoFields] = None,
        escape_newlines: bool = False,
    ) -> None:
        self.include_fields = AutoFields.default() if include_fields is None else include_fields
        self.escape_newlines = escape_newlines

    def format(self, record: LogRecord) -> str:
        parts: List[str] = []
        used: Set[str] = set()

        for key, value in iter_record_fields(record, self.include_fields):
            pair = self._format_pair(key, value, used)
            if pair is not None:
                parts.append(pair)

        return " ".join(parts)

    def _format_pair(self, key: str, value: str, used: Set[str]) -> Optional[str]:
        """Render one pair, or None when the key was already written."""
        key = "".join(c for c in key if c not in INVALID_KEY_CHARS) or "_"
        if key in used:
            return None
        used.add(key)

        escaped, needs_quotes = self._escape_value(value)
        if needs_quotes:
            return f'{key}="{escaped}"'
        return f"{key}={escaped}"

    def _escape_value(self, value: str) -> Tuple[str, bool]:
        out: List[str] = []
        needs_quotes = False

        for ch in value:
            if ch in ('\\', '"'):
                needs_quotes = True
                out.append('\\' + ch)
            elif ch in (' ', '='):
                needs_quotes = True
                out.append(ch)
            elif ch in ('\n', '\r', '\t'):
                needs_quotes = True
                if self.escape_newlines:
                    out.append({'\n': '\\n', '\r': '\\r', '\t': '\\t'}[ch])
                else:
                    out.append(ch)
            elif unicodedata.category(ch) == "Cc":
                needs_quotes = True
                out.append(f"\\u{{{ord(ch):x}}}")
            else:
                out.append(ch)

        return "".join(out), needs_quotes


class JsonFormatter:
    """Formatter producing one compact JSON object per line."""

    def __init__(self, include_fields: Optional[AutoFields] = None) -> None:
        self.include_fields = AutoFields.default() if include_fields is None else include_fields

    def format(self, record: LogRecord) -> str:
        payload: Dict[str, Any] = {}

        for key, value in iter_record_fields(record, self.include_fields & ~AutoFields.EXTRA):
            payload[key] = value

        # Structured fields keep their native JSON types
        if AutoFields.EXTRA in self.include_fields:
            for key, raw in record.fields.items():
                payload.setdefault(key, raw)

        return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
