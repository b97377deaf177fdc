"""
Unit tests for query results.
"""

from datetime import date
from decimal import Decimal

import pytest

from clickhouse_http.errors import QueryError, UnknownTypeError
from clickhouse_http.result import Result
from clickhouse_http.types import TypeRegistry


@pytest.fixture
def registry():
    """Registry with the built-in types."""
    return TypeRegistry.default()


@pytest.fixture
def compact_body():
    """JSONCompact response body."""
    return {
        "meta": [
            {"name": "id", "type": "UInt64"},
            {"name": "day", "type": "Date"},
            {"name": "amount", "type": "Nullable(Decimal(10, 2))"},
        ],
        "data": [
            ["1", "2024-01-01", "10.50"],
            ["2", "2024-01-02", None],
        ],
        "rows": 2,
        "statistics": {"elapsed": 0.002, "rows_read": 2, "bytes_read": 48},
    }


class TestResult:
    """Test cases for Result."""

    def test_from_json_compact(self, registry, compact_body):
        """Test rows are deserialized through the column types."""
        result = Result.from_json_compact(compact_body, registry)

        assert result.columns == ("id", "day", "amount")
        assert result.types == ("UInt64", "Date", "Nullable(Decimal(10, 2))")
        assert result.rows == (
            (1, date(2024, 1, 1), Decimal("10.50")),
            (2, date(2024, 1, 2), None),
        )

    def test_from_json(self, registry):
        """Test object rows produce the same shape as compact rows."""
        body = {
            "meta": [{"name": "a", "type": "UInt8"}, {"name": "b", "type": "String"}],
            "data": [{"a": 1, "b": "x"}, {"b": "y", "a": 2}],
        }
        result = Result.from_json(body, registry)

        assert result.rows == ((1, "x"), (2, "y"))

    def test_statistics(self, registry, compact_body):
        """Test server statistics accessors."""
        result = Result.from_json_compact(compact_body, registry)

        assert result.elapsed_time == 0.002
        assert result.rows_read == 2
        assert result.bytes_read == 48

    def test_accessors(self, registry, compact_body):
        """Test sequence-style access."""
        result = Result.from_json_compact(compact_body, registry)

        assert len(result) == 2
        assert result[0][0] == 1
        assert result.first() == result[0]
        assert result.last() == result[-1]
        assert [row[0] for row in result] == [1, 2]
        assert result.column_values("id") == [1, 2]
        assert result.column_types() == {
            "id": "UInt64",
            "day": "Date",
            "amount": "Nullable(Decimal(10, 2))",
        }
        assert result.as_dicts()[1] == {"id": 2, "day": date(2024, 1, 2), "amount": None}

    def test_unknown_column(self, registry, compact_body):
        """Test unknown column names raise KeyError."""
        with pytest.raises(KeyError):
            Result.from_json_compact(compact_body, registry).column_values("missing")

    def test_empty(self):
        """Test the empty result."""
        result = Result.empty()

        assert len(result) == 0
        assert result.is_empty
        assert result.first() is None
        assert result.columns == ()

    def test_unknown_server_type(self, registry):
        """Test unknown column types pass values through unless strict."""
        body = {"meta": [{"name": "g", "type": "Geometry"}], "data": [[[1, 2]]]}

        assert Result.from_json_compact(body, registry).rows == (([1, 2],),)
        with pytest.raises(UnknownTypeError):
            Result.from_json_compact(body, registry, strict=True)

    def test_mismatched_metadata(self):
        """Test columns and types must align."""
        with pytest.raises(ValueError):
            Result(["a", "b"], ["UInt8"], [])

    @pytest.mark.parametrize("row", [
        ["1", "2024-01-01"],
        ["1", "2024-01-01", "10.50", "extra"],
        {"id": "1", "day": "2024-01-01", "amount": None},
    ])
    def test_compact_row_shape_mismatch(self, registry, compact_body, row):
        """Test JSONCompact rows must be arrays matching the metadata."""
        compact_body["data"] = [row]

        with pytest.raises(QueryError):
            Result.from_json_compact(compact_body, registry)

    def test_json_row_must_be_object(self, registry):
        """Test JSON rows must be objects."""
        body = {"meta": [{"name": "n", "type": "UInt8"}], "data": [[1]]}

        with pytest.raises(QueryError):
            Result.from_json(body, registry)

    def test_immutable_rows(self, registry, compact_body):
        """Test rows cannot be modified."""
        result = Result.from_json_compact(compact_body, registry)

        with pytest.raises(TypeError):
            result.rows[0][0] = 5
