"""
ClickHouse type system.

The parser turns type names such as ``Map(String, Array(Nullable(UInt64)))``
into ``TypeNode`` trees; a ``TypeRegistry`` resolves those trees into
``TypeHandler`` trees exposing ``cast``, ``serialize`` and ``deserialize``.
"""

from clickhouse_http.types.base import RawHandler, TypeHandler, WireFormat
from clickhouse_http.types.composite import (
    ArrayHandler,
    LowCardinalityHandler,
    MapHandler,
    NullableHandler,
    TupleHandler,
)
from clickhouse_http.types.numeric import DecimalHandler, FloatHandler, IntegerHandler
from clickhouse_http.types.parser import TypeNode, TypeParser, parse_type
from clickhouse_http.types.registry import TypeFactory, TypeRegistry, simple
from clickhouse_http.types.scalars import BoolHandler, UUIDHandler
from clickhouse_http.types.strings import EnumHandler, FixedStringHandler, StringHandler
from clickhouse_http.types.temporal import DateHandler, DateTimeHandler

__all__ = [
    "ArrayHandler",
    "BoolHandler",
    "DateHandler",
    "DateTimeHandler",
    "DecimalHandler",
    "EnumHandler",
    "FixedStringHandler",
    "FloatHandler",
    "IntegerHandler",
    "LowCardinalityHandler",
    "MapHandler",
    "NullableHandler",
    "RawHandler",
    "StringHandler",
    "TupleHandler",
    "TypeFactory",
    "TypeHandler",
    "TypeNode",
    "TypeParser",
    "TypeRegistry",
    "UUIDHandler",
    "WireFormat",
    "parse_type",
    "simple",
]
