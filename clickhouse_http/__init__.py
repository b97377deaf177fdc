"""
ClickHouse HTTP client with connection pooling, retries and a type system.
"""

from clickhouse_http.client import Client
from clickhouse_http.config import ClickHouseSettings, get_settings
from clickhouse_http.connection import Connection
from clickhouse_http.errors import (
    AuthenticationError,
    ClickHouseError,
    ConfigurationError,
    ConnectionError,
    ConnectionNotEstablished,
    ConnectionTimeout,
    PoolError,
    PoolExhausted,
    PoolTimeout,
    QueryError,
    QueryTimeout,
    SSLError,
    StatementInvalid,
    SyntaxError,
    TypeCastError,
    TypeResolutionError,
    TypeSyntaxError,
    UnknownColumn,
    UnknownDatabase,
    UnknownTable,
    UnknownTypeError,
)
from clickhouse_http.logging import configure_logging
from clickhouse_http.pool import ConnectionPool
from clickhouse_http.result import Result
from clickhouse_http.retry import RetryHandler, RetryPolicy
from clickhouse_http.streaming import StreamingResult
from clickhouse_http.types import TypeRegistry, parse_type
from clickhouse_http.version import __version__

__all__ = [
    "AuthenticationError",
    "ClickHouseError",
    "ClickHouseSettings",
    "Client",
    "ConfigurationError",
    "Connection",
    "ConnectionError",
    "ConnectionNotEstablished",
    "ConnectionPool",
    "ConnectionTimeout",
    "PoolError",
    "PoolExhausted",
    "PoolTimeout",
    "QueryError",
    "QueryTimeout",
    "Result",
    "RetryHandler",
    "RetryPolicy",
    "SSLError",
    "StatementInvalid",
    "StreamingResult",
    "SyntaxError",
    "TypeCastError",
    "TypeRegistry",
    "TypeResolutionError",
    "TypeSyntaxError",
    "UnknownColumn",
    "UnknownDatabase",
    "UnknownTable",
    "UnknownTypeError",
    "__version__",
    "configure_logging",
    "get_settings",
    "parse_type",
]
