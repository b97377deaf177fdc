"""
String, FixedString and Enum type handlers.
"""

import re
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from clickhouse_http.errors import TypeResolutionError
from clickhouse_http.types.base import TypeHandler, quote_string
from clickhouse_http.types.parser import unescape_quoted

_ENUM_ENTRY_RE = re.compile(r"^'(.*)'(?: = (-?\d+))?$", re.DOTALL)


class StringHandler(TypeHandler):
    """Arbitrary-length string."""

    kind = "string"

    def _cast(self, value: Any) -> str:
        if isinstance(value, str):
            return value
        if isinstance(value, (bytes, bytearray)):
            try:
                return bytes(value).decode("utf-8")
            except UnicodeDecodeError:
                raise self.cast_error(value, f"Cannot decode bytes as UTF-8 for {self.name}") from None
        if isinstance(value, (int, float, Decimal, uuid.UUID)) and not isinstance(value, bool):
            return str(value)
        raise self.cast_error(value)

    def _to_sql(self, value: str) -> str:
        return quote_string(value)


class FixedStringHandler(StringHandler):
    """String of exactly N bytes; the server pads shorter values with NUL bytes."""

    kind = "fixed_string"

    def __init__(self, name: str, length: int):
        if length < 1:
            raise TypeResolutionError(f"FixedString length must be positive, got {length}")
        super().__init__(name)
        self.length = length

    def _cast(self, value: Any) -> str:
        result = super()._cast(value).rstrip("\0")
        if len(result.encode("utf-8")) > self.length:
            raise self.cast_error(value, f"Value {value!r} is longer than {self.length} bytes for {self.name}")
        return result


class EnumHandler(TypeHandler):
    """Enum8/Enum16: a fixed set of names backed by integers."""

    kind = "enum"

    RANGES = {8: (-128, 127), 16: (-32768, 32767)}

    def __init__(self, name: str, entries: Sequence[Tuple[str, int]], width: Optional[int] = None):
        super().__init__(name)
        if not entries:
            raise TypeResolutionError(f"{name} requires at least one entry")
        self.width = width
        self.name_to_value: Dict[str, int] = {}
        self.value_to_name: Dict[int, str] = {}
        bounds = self.RANGES.get(width)
        for entry_name, entry_value in entries:
            if bounds and not bounds[0] <= entry_value <= bounds[1]:
                raise TypeResolutionError(f"Enum value {entry_value} is out of range for {name}")
            self.name_to_value[entry_name] = entry_value
            self.value_to_name[entry_value] = entry_name

    @property
    def names(self) -> List[str]:
        return list(self.name_to_value)

    @classmethod
    def parse_entries(cls, literals: Sequence[str]) -> List[Tuple[str, int]]:
        """Turn ``'a' = 1`` style literals into (name, value) pairs.

        Entries without an explicit value are numbered from 1, continuing
        after the largest explicit value seen so far.
        """
        entries = []
        next_value = 1
        for literal in literals:
            match = _ENUM_ENTRY_RE.match(literal)
            if not match:
                raise TypeResolutionError(f"Invalid enum entry: {literal}")
            entry_name = unescape_quoted(match.group(1))
            if match.group(2) is None:
                entry_value = next_value
            else:
                entry_value = int(match.group(2))
            next_value = max(next_value, entry_value + 1)
            entries.append((entry_name, entry_value))
        return entries

    def _cast(self, value: Any) -> str:
        if isinstance(value, str):
            if value not in self.name_to_value:
                raise self.cast_error(
                    value, f"Unknown enum value '{value}'. Valid values: {', '.join(self.names)}"
                )
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            if value not in self.value_to_name:
                raise self.cast_error(value, f"Unknown enum integer {value} for {self.name}")
            return self.value_to_name[value]
        raise self.cast_error(value)

    def _to_sql(self, value: str) -> str:
        return quote_string(value)
