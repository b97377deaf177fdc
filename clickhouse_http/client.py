"""
ClickHouse HTTP client.

Every request follows the same path: retry handler, pooled connection,
POST, then a status check that always happens before the body is read as
data. A failed statement therefore always surfaces as an exception, even
when the body looks like a valid result.
"""

import json
import re
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

import httpx
from prometheus_client import CollectorRegistry

from clickhouse_http.config import ClickHouseSettings
from clickhouse_http.connection import Connection
from clickhouse_http.errors import QueryError, query_error_from_response
from clickhouse_http.instrumentation import Instrumentation, PublishHook
from clickhouse_http.logging import get_logger, truncate_sql
from clickhouse_http.metrics import ClientMetrics
from clickhouse_http.pool import ConnectionPool
from clickhouse_http.result import Result
from clickhouse_http.retry import RetryHandler, RetryPolicy
from clickhouse_http.streaming import StreamingResult
from clickhouse_http.types import TypeRegistry
from clickhouse_http.values import serialize_value

DEFAULT_FORMAT = "JSONCompact"
INSERT_FORMAT = "JSONEachRow"
STREAM_FORMAT = "JSONEachRow"
LOGGED_SQL_LENGTH = 200

FORMAT_SUFFIX = re.compile(r"\bFORMAT\s+(\w+)\s*$", re.IGNORECASE)
COMPACT_FORMATS = ("JSONCompact", "JSONCompactStrings")
OBJECT_FORMATS = ("JSON", "JSONStrings")
KNOWN_FORMATS = {name.lower(): name for name in COMPACT_FORMATS + OBJECT_FORMATS}


def with_format(sql: str, format: str) -> str:
    """Append ``FORMAT <format>`` unless the statement already names one."""
    statement = sql.strip().rstrip(";").rstrip()
    if FORMAT_SUFFIX.search(statement):
        return statement
    return f"{statement} FORMAT {format}"


def statement_format(sql: str, default: str) -> str:
    """Output format named by a trailing FORMAT clause, else ``default``."""
    match = FORMAT_SUFFIX.search(sql.strip().rstrip(";").rstrip())
    if match is None:
        return default
    name = match.group(1)
    return KNOWN_FORMATS.get(name.lower(), name)


def quote_identifier(name: str) -> str:
    """Backtick-quote a possibly database-qualified identifier."""
    if name.startswith("`") and name.endswith("`"):
        return name
    return ".".join("`" + part.replace("`", "\\`") + "`" for part in name.split("."))


def _param_value(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


class Client:
    """Thread-safe client for the ClickHouse HTTP interface.

    Example::

        with Client(host="localhost", port=8123) as client:
            result = client.execute("SELECT number FROM numbers(3)")
            client.insert("events", [{"id": 1, "name": "a"}])
    """

    def __init__(self,
                 settings: Optional[ClickHouseSettings] = None,
                 registry: Optional[TypeRegistry] = None,
                 hook: Optional[PublishHook] = None,
                 transport: Optional[httpx.BaseTransport] = None,
                 metrics_registry: Optional[CollectorRegistry] = None,
                 sleep=None,
                 **overrides: Any):
        if settings is None:
            settings = ClickHouseSettings.load(**overrides)
        elif overrides:
            settings = ClickHouseSettings.load(**{**settings.model_dump(), **overrides})

        self.settings = settings
        self.registry = registry or TypeRegistry.default()
        self.transport = transport
        self.metrics = ClientMetrics(metrics_registry)
        self.instrumentation = Instrumentation(hook, self.metrics)
        self.pool = ConnectionPool(
            settings,
            transport=transport,
            instrumentation=self.instrumentation,
            metrics=self.metrics,
        )
        retry_kwargs = {"sleep": sleep} if sleep is not None else {}
        self.retry_handler = RetryHandler(RetryPolicy.from_settings(settings), metrics=self.metrics, **retry_kwargs)
        self.logger = get_logger("client")

    # Queries

    def execute(self, sql: str, settings: Optional[Mapping[str, Any]] = None,
                format: str = DEFAULT_FORMAT) -> Result:
        """Run a query and return its rows as a ``Result``.

        A FORMAT clause already present in ``sql`` takes precedence over
        ``format`` and decides how the response body is parsed.
        """
        statement = with_format(sql, format)
        format = statement_format(statement, format)
        call_settings = dict(settings or {})
        query_id = call_settings.pop("query_id", None)
        payload = {"sql": truncate_sql(sql), "settings": call_settings, "format": format}

        with self.instrumentation.instrument("query", payload) as event:
            body = self.retry_handler.with_retry(
                lambda attempt_id: self._request(statement, self._params(call_settings, attempt_id), sql),
                idempotent=True,
                query_id=query_id,
            )
            result = self._parse_body(body, format, sql)
            event["row_count"] = len(result)

        self._log_statement("Query executed", sql, duration_ms=round(event["duration_ms"], 2), rows=len(result))
        return result

    def command(self, sql: str, settings: Optional[Mapping[str, Any]] = None) -> bool:
        """Run a statement that returns no rows (DDL, mutations)."""
        call_settings = dict(settings or {})
        query_id = call_settings.pop("query_id", None)
        payload = {"sql": truncate_sql(sql), "settings": call_settings, "format": None}

        with self.instrumentation.instrument("query", payload, operation="command") as event:
            self.retry_handler.with_retry(
                lambda attempt_id: self._request(sql, self._params(call_settings, attempt_id), sql),
                idempotent=True,
                query_id=query_id,
            )
            event["row_count"] = 0

        self._log_statement("Command executed", sql, duration_ms=round(event["duration_ms"], 2))
        return True

    def insert(self, table: str, rows: Sequence[Any], columns: Optional[Sequence[str]] = None,
               settings: Optional[Mapping[str, Any]] = None, format: str = INSERT_FORMAT) -> bool:
        """Bulk insert rows as JSONEachRow.

        Rows are mappings, or sequences matching ``columns``. Columns default
        to the keys of the first row. Inserts are not idempotent: only
        failures that happened before the request reached the server are
        retried. Pass ``query_id`` in ``settings`` to reuse one id across
        attempts for server-side deduplication.
        """
        if not rows:
            raise ValueError("rows must not be empty")
        if format != INSERT_FORMAT:
            raise ValueError(f"Unsupported insert format '{format}'; only {INSERT_FORMAT} is supported")

        if columns is None:
            first = rows[0]
            if not isinstance(first, Mapping):
                raise ValueError("columns are required when rows are not mappings")
            columns = list(first.keys())
        columns = list(columns)
        if not columns:
            raise ValueError("columns must not be empty")

        body = "\n".join(json.dumps(self._row_object(row, columns)) for row in rows)
        column_list = ", ".join(quote_identifier(column) for column in columns)
        statement = f"INSERT INTO {quote_identifier(table)} ({column_list}) FORMAT {INSERT_FORMAT}"

        call_settings = dict(settings or {})
        query_id = call_settings.pop("query_id", None)
        payload = {"table": table, "row_count": len(rows), "columns": columns, "settings": call_settings}

        with self.instrumentation.instrument("insert", payload) as event:
            self.retry_handler.with_retry(
                lambda attempt_id: self._request(
                    body.encode("utf-8"),
                    self._params(call_settings, attempt_id, query=statement),
                    statement,
                ),
                idempotent=False,
                query_id=query_id,
            )

        self.logger.info(
            "Insert completed",
            table=table,
            rows=len(rows),
            duration_ms=round(event["duration_ms"], 2)
        )
        return True

    def ping(self) -> bool:
        """True when the server answers /ping; never raises."""
        try:
            with self.pool.with_connection() as connection:
                return connection.ping()
        except Exception as exc:
            self.logger.warning("Ping failed", error=str(exc))
            return False

    # Streaming

    def stream_execute(self, sql: str, settings: Optional[Mapping[str, Any]] = None) -> StreamingResult:
        """Stream rows as dicts over a dedicated connection."""
        call_settings = dict(settings or {})
        query_id = call_settings.pop("query_id", None)
        return StreamingResult(
            lambda: Connection(self.settings, transport=self.transport),
            with_format(sql, STREAM_FORMAT),
            self._params(call_settings, query_id),
        )

    def each_row(self, sql: str, settings: Optional[Mapping[str, Any]] = None) -> Iterator[Dict[str, Any]]:
        yield from self.stream_execute(sql, settings)

    def each_batch(self, sql: str, batch_size: int = 1000,
                   settings: Optional[Mapping[str, Any]] = None) -> Iterator[List[Dict[str, Any]]]:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        yield from self.stream_execute(sql, settings).each_batch(batch_size)

    # Introspection

    def server_version(self) -> str:
        result = self.execute("SELECT version() AS version")
        return result.first()[0]

    def pool_stats(self) -> Dict[str, Any]:
        return self.pool.stats()

    def health_check(self) -> Dict[str, Any]:
        """Server reachability plus pool connection health."""
        return {"ping": self.ping(), "pool": self.pool.health_check()}

    def close(self) -> None:
        self.pool.shutdown()

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Internals

    def _params(self, call_settings: Mapping[str, Any], query_id: Optional[str] = None,
                query: Optional[str] = None) -> Dict[str, str]:
        params: Dict[str, str] = {"database": self.settings.database}
        merged = {**self.settings.default_settings, **call_settings}
        params.update({key: _param_value(value) for key, value in merged.items()})
        if self.settings.compression_enabled:
            params["enable_http_compression"] = "1"
        if query_id:
            params["query_id"] = query_id
        if query is not None:
            params["query"] = query
        return params

    def _request(self, body: Any, params: Dict[str, str], sql: str) -> str:
        """POST one statement; raises on any non-200 before the body is used."""
        if isinstance(body, str):
            body = body.encode("utf-8")
        with self.pool.with_connection() as connection:
            response = connection.post("/", body=body, params=params)
            if response.status_code != 200:
                raise query_error_from_response(response.status_code, response.text, sql)
            return response.text

    def _parse_body(self, body: str, format: str, sql: str) -> Result:
        if not body.strip():
            return Result.empty()
        if format not in COMPACT_FORMATS and format not in OBJECT_FORMATS:
            return Result(["result"], ["String"], [(body,)])

        try:
            data = json.loads(body)
        except json.JSONDecodeError as exc:
            raise QueryError(
                f"Failed to parse {format} response: {exc}",
                http_status="200",
                sql=truncate_sql(sql),
                original_error=exc,
            ) from exc

        strict = self.settings.strict_types
        if format in COMPACT_FORMATS:
            return Result.from_json_compact(data, self.registry, strict=strict)
        return Result.from_json(data, self.registry, strict=strict)

    @staticmethod
    def _row_object(row: Any, columns: List[str]) -> Dict[str, Any]:
        if isinstance(row, Mapping):
            return {column: serialize_value(row.get(column)) for column in columns}
        values = list(row)
        if len(values) != len(columns):
            raise ValueError(f"Row has {len(values)} values but {len(columns)} columns were given")
        return {column: serialize_value(value) for column, value in zip(columns, values)}

    def _log_statement(self, message: str, sql: str, **fields: Any) -> None:
        if self.settings.log_sql:
            self.logger.info(message, sql=sql, **fields)
        else:
            self.logger.debug(message, sql=truncate_sql(sql, LOGGED_SQL_LENGTH), **fields)

    def __repr__(self) -> str:
        return f"<Client {self.settings.base_url} database={self.settings.database}>"
