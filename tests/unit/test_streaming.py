"""
Unit tests for StreamingResult.
"""

import itertools
import json

import httpx
import pytest

from clickhouse_http.connection import Connection
from clickhouse_http.errors import QueryError, UnknownTable
from clickhouse_http.streaming import PROGRESS_HEADER, StreamingResult


def each_row_body(rows):
    return "\n".join(json.dumps(row) for row in rows) + "\n"


class TestStreamingResult:
    """Test cases for StreamingResult."""

    @pytest.fixture
    def connections(self):
        """Connections opened by the stream."""
        return []

    @pytest.fixture
    def stream_factory(self, settings, fake_server, connections):
        """Build streaming results that record their connections."""
        def build(sql="SELECT number FROM numbers(5) FORMAT JSONEachRow", params=None):
            def connect():
                connection = Connection(settings, transport=fake_server.transport)
                connections.append(connection)
                return connection
            return StreamingResult(connect, sql, params or {"database": "analytics"})
        return build

    def test_iterates_rows(self, stream_factory, fake_server, connections):
        """Test rows are yielded as dicts and the connection is closed."""
        fake_server.queue(httpx.Response(200, text=each_row_body([{"number": i} for i in range(5)])))

        rows = list(stream_factory())

        assert rows == [{"number": i} for i in range(5)]
        assert fake_server.params() == {"database": "analytics"}
        assert connections[0].healthy is False

    def test_lazy_consumption(self, stream_factory, fake_server, connections):
        """Test abandoning iteration early closes the connection."""
        fake_server.queue(httpx.Response(200, text=each_row_body([{"n": i} for i in range(100)])))
        stream = iter(stream_factory())

        first_three = list(itertools.islice(stream, 3))
        stream.close()

        assert first_three == [{"n": 0}, {"n": 1}, {"n": 2}]
        assert connections[0].healthy is False

    def test_each_batch(self, stream_factory, fake_server):
        """Test rows are grouped into bounded batches."""
        fake_server.queue(httpx.Response(200, text=each_row_body([{"n": i} for i in range(5)])))

        batches = list(stream_factory().each_batch(2))

        assert [len(batch) for batch in batches] == [2, 2, 1]

    def test_each_batch_rejects_bad_size(self, stream_factory):
        """Test batch sizes must be positive."""
        with pytest.raises(ValueError):
            list(stream_factory().each_batch(0))

    def test_status_checked_before_rows(self, stream_factory, fake_server, connections):
        """Test error responses raise before any row is read."""
        fake_server.queue_error(404, "Code: 60. DB::Exception: Table default.x doesn't exist.")

        with pytest.raises(UnknownTable) as exc_info:
            list(stream_factory())

        assert exc_info.value.http_status == "404"
        assert connections[0].healthy is False

    def test_in_stream_exception(self, stream_factory, fake_server):
        """Test a server exception emitted mid-stream is raised."""
        body = json.dumps({"n": 1}) + "\n" + json.dumps({"exception": "Code: 241. DB::Exception: Memory limit exceeded"})
        fake_server.queue(httpx.Response(200, text=body))

        rows = []
        with pytest.raises(QueryError) as exc_info:
            for row in stream_factory():
                rows.append(row)

        assert rows == [{"n": 1}]
        assert exc_info.value.code == 241

    def test_malformed_line(self, stream_factory, fake_server):
        """Test lines that are not JSON raise QueryError."""
        fake_server.queue(httpx.Response(200, text="{broken\n"))

        with pytest.raises(QueryError):
            list(stream_factory())

    def test_progress_callbacks(self, stream_factory, fake_server):
        """Test progress headers reach registered callbacks."""
        fake_server.queue(httpx.Response(
            200,
            headers=[
                (PROGRESS_HEADER, '{"read_rows":"2","total_rows_to_read":"5"}'),
                (PROGRESS_HEADER, '{"read_rows":"5","total_rows_to_read":"5"}'),
            ],
            text=each_row_body([{"n": 1}]),
        ))
        progress = []

        rows = list(stream_factory().on_progress(progress.append))

        assert rows == [{"n": 1}]
        assert [p["read_rows"] for p in progress] == ["2", "5"]
        assert fake_server.params()["send_progress_in_http_headers"] == "1"


class TestClientStreaming:
    """Test cases for the client's streaming entry points."""

    def test_stream_execute(self, client, fake_server):
        """Test the client requests JSONEachRow on a dedicated connection."""
        fake_server.queue(httpx.Response(200, text=each_row_body([{"n": 1}, {"n": 2}])))

        rows = list(client.stream_execute("SELECT n FROM t"))

        assert rows == [{"n": 1}, {"n": 2}]
        assert fake_server.body() == "SELECT n FROM t FORMAT JSONEachRow"
        assert client.pool_stats()["total_connections"] == 0

    def test_each_row(self, client, fake_server):
        """Test each_row yields rows."""
        fake_server.queue(httpx.Response(200, text=each_row_body([{"n": 1}])))

        assert list(client.each_row("SELECT n FROM t")) == [{"n": 1}]

    def test_each_batch(self, client, fake_server):
        """Test each_batch groups rows."""
        fake_server.queue(httpx.Response(200, text=each_row_body([{"n": i} for i in range(3)])))

        assert [len(batch) for batch in client.each_batch("SELECT n FROM t", batch_size=2)] == [2, 1]
