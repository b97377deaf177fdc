"""
Error taxonomy for the ClickHouse HTTP client.
"""

import re
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel


class ErrorPayload(BaseModel):
    """Structured error description attached to error events."""

    error: str
    message: str
    code: Optional[int] = None
    http_status: Optional[str] = None
    details: Dict[str, Any] = {}


class ClickHouseError(Exception):
    """Base exception for every error raised by this package."""

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None,
                 original_error: Optional[BaseException] = None):
        self.message = message
        self.details = details or {}
        self.original_error = original_error
        super().__init__(message)

    def to_payload(self) -> ErrorPayload:
        """Convert to a structured error payload."""
        return ErrorPayload(
            error=type(self).__name__,
            message=self.message,
            code=getattr(self, "code", None),
            http_status=getattr(self, "http_status", None),
            details=self.details,
        )


# Connection errors

class ConnectionError(ClickHouseError):
    """Transport-level failure talking to the server."""


class ConnectionNotEstablished(ConnectionError):
    """The server refused the connection or could not be resolved."""


class ConnectionTimeout(ConnectionError):
    """Connecting, reading or writing exceeded its timeout."""


class SSLError(ConnectionError):
    """TLS handshake or certificate verification failed."""


# Query errors

class QueryError(ClickHouseError):
    """The server rejected a query."""

    def __init__(self, message: str = "", code: Optional[int] = None,
                 http_status: Optional[str] = None, sql: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None,
                 original_error: Optional[BaseException] = None):
        self.code = code
        self.http_status = http_status
        self.sql = sql
        super().__init__(message, details=details, original_error=original_error)

    def detailed_message(self) -> str:
        """Message joined with code, HTTP status and SQL context."""
        parts = [self.message]
        if self.code is not None:
            parts.append(f"Code: {self.code}")
        if self.http_status:
            parts.append(f"HTTP Status: {self.http_status}")
        if self.sql:
            parts.append(f"SQL: {self.sql}")
        return " | ".join(parts)

    def __str__(self) -> str:
        return self.detailed_message()


class StatementInvalid(QueryError):
    """Semantically invalid statement."""


class SyntaxError(QueryError):
    """SQL syntax error (code 62)."""


class QueryTimeout(QueryError):
    """Query exceeded its time limit (code 159)."""


class UnknownTable(QueryError):
    """Referenced table does not exist (code 60)."""


class UnknownColumn(QueryError):
    """Referenced column does not exist (code 16)."""


class UnknownDatabase(QueryError):
    """Referenced database does not exist (code 81)."""


class AuthenticationError(QueryError):
    """Wrong user name or password (code 516)."""


# Type errors

class TypeCastError(ClickHouseError):
    """A value could not be converted to or from a ClickHouse type."""

    def __init__(self, message: str, value: Any = None, to_type: Optional[str] = None,
                 from_type: Optional[str] = None):
        self.value = value
        self.to_type = to_type
        self.from_type = from_type if from_type is not None else type(value).__name__
        super().__init__(message, details={"to_type": to_type, "from_type": self.from_type})


class TypeSyntaxError(ClickHouseError):
    """A type name does not follow the type grammar."""

    def __init__(self, message: str, position: Optional[int] = None, text: Optional[str] = None):
        self.position = position
        self.text = text
        full = message
        if position is not None:
            full = f"{full} at position {position}"
        if text is not None:
            full = f"{full}: '{text}'"
        super().__init__(full, details={"position": position, "text": text})


class UnknownTypeError(ClickHouseError):
    """No handler is registered for a type name."""

    def __init__(self, type_name: str):
        self.type_name = type_name
        super().__init__(f"Unknown ClickHouse type '{type_name}'", details={"type_name": type_name})


class TypeResolutionError(ClickHouseError):
    """A type node could not be turned into a handler (wrong arity, bad parameter)."""


# Configuration and pool errors

class ConfigurationError(ClickHouseError):
    """Invalid client settings."""


class PoolError(ClickHouseError):
    """Connection pool failure."""


class PoolExhausted(PoolError):
    """No connection is available and the pool is not allowed to wait."""


class PoolTimeout(PoolError):
    """No connection became available within the pool timeout."""


ERROR_CODE_MAPPING: Dict[int, Type[QueryError]] = {
    60: UnknownTable,
    16: UnknownColumn,
    81: UnknownDatabase,
    62: SyntaxError,
    159: QueryTimeout,
    516: AuthenticationError,
}


def error_class_for_code(code: Optional[int]) -> Type[QueryError]:
    """Return the exception class for a ClickHouse error code."""
    if code is None:
        return QueryError
    return ERROR_CODE_MAPPING.get(code, QueryError)


CODE_PATTERN = re.compile(r"Code:\s*(\d+)")
MESSAGE_PATTERN = re.compile(r"DB::Exception:\s*(.+?)(?:\s*\(version|$)", re.MULTILINE)
MAX_SQL_LENGTH = 1000


def extract_error_code(body: str) -> Optional[int]:
    match = CODE_PATTERN.search(body or "")
    return int(match.group(1)) if match else None


def extract_error_message(body: str) -> Optional[str]:
    match = MESSAGE_PATTERN.search(body or "")
    return match.group(1).strip() if match else None


def query_error_from_response(status: Any, body: str, sql: Optional[str] = None) -> QueryError:
    """Build the typed error for a failed ClickHouse response body."""
    code = extract_error_code(body)
    message = extract_error_message(body) or (body or "").strip() or f"HTTP {status}"
    if sql is not None and len(sql) > MAX_SQL_LENGTH:
        sql = f"{sql[:MAX_SQL_LENGTH]}... (truncated)"
    error_class = error_class_for_code(code)
    return error_class(
        f"ClickHouse error: {message}",
        code=code,
        http_status=str(status) if status is not None else None,
        sql=sql,
        details={"body": (body or "")[:MAX_SQL_LENGTH]},
    )
