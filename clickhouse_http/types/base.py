"""
Base class shared by every type handler.
"""

from enum import Enum
from typing import Any, Optional

from clickhouse_http.errors import TypeCastError


class WireFormat(str, Enum):
    """Representation produced by ``TypeHandler.serialize``."""

    SQL = "sql"    # literal text for inline queries
    JSON = "json"  # JSON-compatible value for JSONEachRow bodies


def quote_string(value: str) -> str:
    """Quote a string as a ClickHouse SQL literal."""
    escaped = (
        value.replace("\\", "\\\\")
        .replace("'", "\\'")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
        .replace("\0", "\\0")
    )
    return f"'{escaped}'"


class TypeHandler:
    """Converts values of one concrete ClickHouse type.

    ``cast`` normalizes application input, ``serialize`` produces the wire
    form and ``deserialize`` reads values from response bodies. ``None``
    passes through all three (``NULL`` on the SQL wire). Handlers are
    immutable once built and safe to share between threads.
    """

    kind = "raw"

    def __init__(self, name: str):
        self.name = name

    @property
    def nullable(self) -> bool:
        return False

    def cast(self, value: Any) -> Any:
        if value is None:
            return None
        return self._cast(value)

    def serialize(self, value: Any, wire: WireFormat = WireFormat.SQL) -> Any:
        if value is None:
            return "NULL" if wire == WireFormat.SQL else None
        value = self.cast(value)
        if wire == WireFormat.SQL:
            return self._to_sql(value)
        return self._to_json(value)

    def deserialize(self, value: Any) -> Any:
        if value is None:
            return None
        return self._deserialize(value)

    # Hooks for subclasses

    def _cast(self, value: Any) -> Any:
        return value

    def _deserialize(self, value: Any) -> Any:
        return self._cast(value)

    def _to_sql(self, value: Any) -> str:
        return str(value)

    def _to_json(self, value: Any) -> Any:
        return value

    def cast_error(self, value: Any, message: Optional[str] = None) -> TypeCastError:
        return TypeCastError(
            message or f"Cannot cast {type(value).__name__} {value!r} to {self.name}",
            value=value,
            to_type=self.name,
        )

    def __eq__(self, other: object) -> bool:
        return isinstance(other, TypeHandler) and type(other) is type(self) and other.name == self.name

    def __hash__(self) -> int:
        return hash((type(self), self.name))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    def __str__(self) -> str:
        return self.name


class RawHandler(TypeHandler):
    """Pass-through handler for types without a registered converter."""

    def _to_sql(self, value: Any) -> str:
        if isinstance(value, str):
            return quote_string(value)
        return str(value)
