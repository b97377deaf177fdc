"""
UUID and Bool type handlers.
"""

import uuid
from typing import Any

from clickhouse_http.types.base import TypeHandler, quote_string


class UUIDHandler(TypeHandler):
    """UUID values as ``uuid.UUID``; accepts hyphenated, braced or bare hex text."""

    kind = "uuid"

    def _cast(self, value: Any) -> uuid.UUID:
        if isinstance(value, uuid.UUID):
            return value
        if isinstance(value, (bytes, bytearray)) and len(value) == 16:
            return uuid.UUID(bytes=bytes(value))
        if isinstance(value, str):
            try:
                return uuid.UUID(value.strip())
            except ValueError:
                raise self.cast_error(value, f"Invalid UUID format: '{value}'") from None
        raise self.cast_error(value)

    def _to_sql(self, value: uuid.UUID) -> str:
        return quote_string(str(value))

    def _to_json(self, value: uuid.UUID) -> str:
        return str(value)


class BoolHandler(TypeHandler):
    """Bool, serialized as 1/0 in SQL and true/false in JSON."""

    kind = "boolean"

    TRUE_VALUES = {"1", "true", "t", "yes", "y", "on"}
    FALSE_VALUES = {"0", "false", "f", "no", "n", "off"}

    def _cast(self, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in self.TRUE_VALUES:
                return True
            if lowered in self.FALSE_VALUES:
                return False
        raise self.cast_error(value, f"Cannot cast {value!r} to {self.name}")

    def _to_sql(self, value: bool) -> str:
        return "1" if value else "0"
