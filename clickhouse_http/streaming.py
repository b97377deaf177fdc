"""
Row-by-row iteration over JSONEachRow responses.
"""

import json
from typing import Any, Callable, Dict, Iterator, List, Optional

from clickhouse_http.connection import Connection
from clickhouse_http.errors import QueryError, query_error_from_response
from clickhouse_http.logging import get_logger, truncate_sql

PROGRESS_HEADER = "X-ClickHouse-Progress"

ProgressCallback = Callable[[Dict[str, Any]], None]


class StreamingResult:
    """Lazily streamed query result.

    Each iteration sends the query on its own connection, which is not
    part of the pool. Rows are read one line at a time, so memory use is
    bounded by the batch being consumed. The connection is closed when
    iteration finishes, fails or is abandoned.
    """

    def __init__(self, connection_factory: Callable[[], Connection], sql: str,
                 params: Optional[Dict[str, Any]] = None):
        self._connection_factory = connection_factory
        self.sql = sql
        self.params = dict(params or {})
        self._progress_callbacks: List[ProgressCallback] = []
        self.logger = get_logger("streaming")

    def on_progress(self, callback: ProgressCallback) -> "StreamingResult":
        """Register a callback receiving the server's progress headers."""
        self._progress_callbacks.append(callback)
        return self

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        params = dict(self.params)
        if self._progress_callbacks:
            params["send_progress_in_http_headers"] = "1"

        connection = self._connection_factory()
        rows = 0
        try:
            with connection.stream("POST", "/", params=params, content=self.sql.encode("utf-8")) as response:
                if response.status_code != 200:
                    body = response.read().decode("utf-8", errors="replace")
                    raise query_error_from_response(response.status_code, body, truncate_sql(self.sql))

                self._report_progress(response.headers.get_list(PROGRESS_HEADER))

                for line in response.iter_lines():
                    if not line.strip():
                        continue
                    row = self._parse_line(line)
                    rows += 1
                    yield row
        finally:
            connection.disconnect()
            self.logger.debug("Stream closed", rows=rows)

    def each_batch(self, batch_size: int = 1000) -> Iterator[List[Dict[str, Any]]]:
        """Yield rows in lists of at most ``batch_size``."""
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        batch: List[Dict[str, Any]] = []
        for row in self:
            batch.append(row)
            if len(batch) >= batch_size:
                yield batch
                batch = []
        if batch:
            yield batch

    def _parse_line(self, line: str) -> Dict[str, Any]:
        try:
            row = json.loads(line)
        except json.JSONDecodeError as exc:
            raise QueryError(
                f"Malformed row in streaming response: {line[:200]}",
                sql=truncate_sql(self.sql),
                original_error=exc,
            ) from exc

        # A failure after the 200 header arrives as a row of its own
        if isinstance(row, dict) and set(row) == {"exception"}:
            raise query_error_from_response(200, str(row["exception"]), truncate_sql(self.sql))
        return row

    def _report_progress(self, headers: List[str]) -> None:
        for header in headers:
            try:
                progress = json.loads(header)
            except json.JSONDecodeError:
                self.logger.debug("Ignoring malformed progress header", header=header)
                continue
            for callback in self._progress_callbacks:
                callback(progress)

    def __repr__(self) -> str:
        return f"<StreamingResult sql={truncate_sql(self.sql, 80)!r}>"
