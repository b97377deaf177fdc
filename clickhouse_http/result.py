"""
Query results.
"""

from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from clickhouse_http.errors import QueryError
from clickhouse_http.types import TypeHandler, TypeRegistry


class Result:
    """Immutable snapshot of a completed query.

    Rows are tuples of deserialized values, one per column.
    """

    def __init__(self,
                 columns: Sequence[str] = (),
                 types: Sequence[str] = (),
                 rows: Sequence[Sequence[Any]] = (),
                 statistics: Optional[Dict[str, Any]] = None):
        if len(columns) != len(types):
            raise ValueError(f"{len(columns)} columns but {len(types)} types")
        self._columns = tuple(columns)
        self._types = tuple(types)
        self._rows = tuple(tuple(row) for row in rows)
        self._statistics = dict(statistics or {})

    @classmethod
    def empty(cls) -> "Result":
        return cls()

    @classmethod
    def from_json_compact(cls, data: Dict[str, Any], registry: TypeRegistry, strict: bool = False) -> "Result":
        """Build from a JSONCompact body: rows are arrays parallel to ``meta``."""
        columns, types, handlers = cls._read_meta(data, registry, strict)
        rows = []
        for row in data.get("data", []):
            if not isinstance(row, list) or len(row) != len(handlers):
                raise QueryError(
                    f"JSONCompact row does not match result metadata ({len(handlers)} columns): {row!r:.200}"
                )
            rows.append(tuple(handler.deserialize(value) for handler, value in zip(handlers, row)))
        return cls(columns, types, rows, data.get("statistics"))

    @classmethod
    def from_json(cls, data: Dict[str, Any], registry: TypeRegistry, strict: bool = False) -> "Result":
        """Build from a JSON body: rows are objects keyed by column name."""
        columns, types, handlers = cls._read_meta(data, registry, strict)
        rows = []
        for row in data.get("data", []):
            if not isinstance(row, dict):
                raise QueryError(f"JSON row is not an object: {row!r:.200}")
            rows.append(tuple(handler.deserialize(row.get(column)) for column, handler in zip(columns, handlers)))
        return cls(columns, types, rows, data.get("statistics"))

    @staticmethod
    def _read_meta(data: Dict[str, Any], registry: TypeRegistry,
                   strict: bool) -> Tuple[List[str], List[str], List[TypeHandler]]:
        meta = data.get("meta", [])
        columns = [column["name"] for column in meta]
        types = [column["type"] for column in meta]
        handlers = [registry.get(type_string, strict=strict) for type_string in types]
        return columns, types, handlers

    # Accessors

    @property
    def columns(self) -> Tuple[str, ...]:
        return self._columns

    @property
    def types(self) -> Tuple[str, ...]:
        return self._types

    @property
    def rows(self) -> Tuple[tuple, ...]:
        return self._rows

    @property
    def statistics(self) -> Dict[str, Any]:
        return dict(self._statistics)

    @property
    def elapsed_time(self) -> Optional[float]:
        return self._statistics.get("elapsed")

    @property
    def rows_read(self) -> Optional[int]:
        return self._statistics.get("rows_read")

    @property
    def bytes_read(self) -> Optional[int]:
        return self._statistics.get("bytes_read")

    @property
    def is_empty(self) -> bool:
        return not self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def __getitem__(self, index):
        return self._rows[index]

    def __iter__(self) -> Iterator[tuple]:
        return iter(self._rows)

    def first(self) -> Optional[tuple]:
        return self._rows[0] if self._rows else None

    def last(self) -> Optional[tuple]:
        return self._rows[-1] if self._rows else None

    def column_values(self, name: str) -> List[Any]:
        """All values of one column, in row order."""
        try:
            index = self._columns.index(name)
        except ValueError:
            raise KeyError(f"Unknown column '{name}'; available: {', '.join(self._columns)}") from None
        return [row[index] for row in self._rows]

    def column_types(self) -> Dict[str, str]:
        return dict(zip(self._columns, self._types))

    def as_dicts(self) -> List[Dict[str, Any]]:
        return [dict(zip(self._columns, row)) for row in self._rows]

    def __repr__(self) -> str:
        return f"<Result columns={list(self._columns)} rows={len(self._rows)}>"
