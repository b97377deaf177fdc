"""
Conversion of Python values into JSONEachRow insert values.

Values are first classified into a closed set of kinds, then converted by
the table entry for that kind. Anything outside the table is rejected.
"""

import enum
import math
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Callable, Dict

from clickhouse_http.errors import TypeCastError

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class ValueKind(str, enum.Enum):
    NULL = "null"
    BOOL = "bool"
    INTEGER = "integer"
    FLOAT = "float"
    DECIMAL = "decimal"
    STRING = "string"
    BYTES = "bytes"
    DATETIME = "datetime"
    DATE = "date"
    TIME = "time"
    UUID = "uuid"
    ENUM = "enum"
    ARRAY = "array"
    MAP = "map"


def value_kind(value: Any) -> ValueKind:
    """Classify a value; order matters where Python types overlap."""
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, enum.Enum):
        return ValueKind.ENUM
    if isinstance(value, int):
        return ValueKind.INTEGER
    if isinstance(value, float):
        return ValueKind.FLOAT
    if isinstance(value, Decimal):
        return ValueKind.DECIMAL
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, (bytes, bytearray)):
        return ValueKind.BYTES
    if isinstance(value, datetime):
        return ValueKind.DATETIME
    if isinstance(value, date):
        return ValueKind.DATE
    if isinstance(value, time):
        return ValueKind.TIME
    if isinstance(value, uuid.UUID):
        return ValueKind.UUID
    if isinstance(value, (list, tuple, set, frozenset)):
        return ValueKind.ARRAY
    if isinstance(value, dict):
        return ValueKind.MAP
    raise TypeCastError(
        f"Cannot serialize {type(value).__name__} value for insert",
        value=value,
        to_type="JSONEachRow",
    )


def _float(value: float) -> Any:
    if math.isnan(value):
        return "nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return value


def _decimal(value: Decimal) -> str:
    return format(value, "f")


def _bytes(value) -> str:
    try:
        return bytes(value).decode("utf-8")
    except UnicodeDecodeError:
        raise TypeCastError(
            "Cannot decode bytes as UTF-8 for insert",
            value=value,
            to_type="JSONEachRow",
        ) from None


def _array(value) -> list:
    items = sorted(value, key=repr) if isinstance(value, (set, frozenset)) else value
    return [serialize_value(item) for item in items]


def _map(value: dict) -> dict:
    return {str(serialize_value(key)): serialize_value(item) for key, item in value.items()}


CONVERTERS: Dict[ValueKind, Callable[[Any], Any]] = {
    ValueKind.NULL: lambda value: None,
    ValueKind.BOOL: lambda value: value,
    ValueKind.INTEGER: lambda value: value,
    ValueKind.FLOAT: _float,
    ValueKind.DECIMAL: _decimal,
    ValueKind.STRING: lambda value: value,
    ValueKind.BYTES: _bytes,
    ValueKind.DATETIME: lambda value: value.strftime(DATETIME_FORMAT),
    ValueKind.DATE: lambda value: value.isoformat(),
    ValueKind.TIME: lambda value: value.strftime("%H:%M:%S"),
    ValueKind.UUID: str,
    ValueKind.ENUM: lambda value: serialize_value(value.value),
    ValueKind.ARRAY: _array,
    ValueKind.MAP: _map,
}


def serialize_value(value: Any) -> Any:
    """Convert one Python value into its JSONEachRow representation."""
    return CONVERTERS[value_kind(value)](value)
