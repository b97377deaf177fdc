"""
Composite type handlers: Array, Map, Tuple, Nullable and LowCardinality.

Composite handlers own their inner handlers; the handler tree mirrors the
parsed type tree. Values may arrive either as JSON structures or as
ClickHouse text literals.
"""

from typing import Any, Dict, List, Optional, Sequence

from clickhouse_http.types.base import TypeHandler, WireFormat
from clickhouse_http.types.literals import find_top_level, parse_element, split_top_level, strip_brackets


class ArrayHandler(TypeHandler):
    kind = "array"

    def __init__(self, element: TypeHandler):
        super().__init__(f"Array({element.name})")
        self.element = element

    def _items(self, value: Any) -> List[Any]:
        if isinstance(value, (list, tuple)):
            return list(value)
        if isinstance(value, str):
            inner = strip_brackets(value, "[", "]")
            if inner is None:
                raise self.cast_error(value, f"Invalid array format: '{value}'")
            return [parse_element(item) for item in split_top_level(inner)]
        raise self.cast_error(value)

    def _cast(self, value: Any) -> List[Any]:
        return [self.element.cast(item) for item in self._items(value)]

    def _deserialize(self, value: Any) -> List[Any]:
        return [self.element.deserialize(item) for item in self._items(value)]

    def _to_sql(self, value: List[Any]) -> str:
        return "[" + ", ".join(self.element.serialize(item) for item in value) + "]"

    def _to_json(self, value: List[Any]) -> List[Any]:
        return [self.element.serialize(item, wire=WireFormat.JSON) for item in value]


class MapHandler(TypeHandler):
    kind = "map"

    def __init__(self, key: TypeHandler, value: TypeHandler):
        super().__init__(f"Map({key.name}, {value.name})")
        self.key = key
        self.value = value

    def _pairs(self, value: Any) -> Dict[Any, Any]:
        if isinstance(value, dict):
            return value
        if isinstance(value, str):
            inner = strip_brackets(value, "{", "}")
            if inner is None:
                raise self.cast_error(value, f"Invalid map format: '{value}'")
            pairs = {}
            for item in split_top_level(inner):
                colon = find_top_level(item, ":")
                if colon is None:
                    raise self.cast_error(value, f"Invalid map pair format: '{item}'")
                pairs[parse_element(item[:colon].strip())] = parse_element(item[colon + 1:].strip())
            return pairs
        raise self.cast_error(value)

    def _cast(self, value: Any) -> Dict[Any, Any]:
        return {self.key.cast(k): self.value.cast(v) for k, v in self._pairs(value).items()}

    def _deserialize(self, value: Any) -> Dict[Any, Any]:
        return {self.key.deserialize(k): self.value.deserialize(v) for k, v in self._pairs(value).items()}

    def _to_sql(self, value: Dict[Any, Any]) -> str:
        pairs = (f"{self.key.serialize(k)}: {self.value.serialize(v)}" for k, v in value.items())
        return "{" + ", ".join(pairs) + "}"

    def _to_json(self, value: Dict[Any, Any]) -> Dict[Any, Any]:
        return {
            self.key.serialize(k, wire=WireFormat.JSON): self.value.serialize(v, wire=WireFormat.JSON)
            for k, v in value.items()
        }


class TupleHandler(TypeHandler):
    """Fixed-length heterogeneous tuple, optionally with named elements."""

    kind = "tuple"

    def __init__(self, elements: Sequence[TypeHandler], field_names: Optional[Sequence[Optional[str]]] = None):
        self.elements = tuple(elements)
        names = tuple(field_names) if field_names and any(field_names) else None
        self.field_names = names
        if names:
            parts = [f"{field} {element.name}" if field else element.name for field, element in zip(names, self.elements)]
        else:
            parts = [element.name for element in self.elements]
        super().__init__(f"Tuple({', '.join(parts)})")

    def _items(self, value: Any) -> List[Any]:
        if isinstance(value, dict):
            if not self.field_names:
                raise self.cast_error(value, f"Cannot cast dict to unnamed {self.name}")
            try:
                items = [value[field] for field in self.field_names]
            except KeyError as exc:
                raise self.cast_error(value, f"Missing tuple element {exc} for {self.name}") from None
        elif isinstance(value, (list, tuple)):
            items = list(value)
        elif isinstance(value, str):
            inner = strip_brackets(value, "(", ")")
            if inner is None:
                raise self.cast_error(value, f"Invalid tuple format: '{value}'")
            items = [parse_element(item) for item in split_top_level(inner)]
        else:
            raise self.cast_error(value)

        if len(items) != len(self.elements):
            raise self.cast_error(value, f"{self.name} expects {len(self.elements)} elements, got {len(items)}")
        return items

    def _cast(self, value: Any) -> tuple:
        return tuple(element.cast(item) for element, item in zip(self.elements, self._items(value)))

    def _deserialize(self, value: Any) -> tuple:
        return tuple(element.deserialize(item) for element, item in zip(self.elements, self._items(value)))

    def _to_sql(self, value: tuple) -> str:
        inner = ", ".join(element.serialize(item) for element, item in zip(self.elements, value))
        if len(value) == 1:
            return f"tuple({inner})"
        return f"({inner})"

    def _to_json(self, value: tuple) -> List[Any]:
        return [element.serialize(item, wire=WireFormat.JSON) for element, item in zip(self.elements, value)]


class NullableHandler(TypeHandler):
    """Adds NULL to the inner type; non-null values go to the inner handler."""

    kind = "nullable"

    def __init__(self, inner: TypeHandler):
        super().__init__(f"Nullable({inner.name})")
        self.inner = inner

    @property
    def nullable(self) -> bool:
        return True

    def cast(self, value: Any) -> Any:
        if value is None:
            return None
        return self.inner.cast(value)

    def serialize(self, value: Any, wire: WireFormat = WireFormat.SQL) -> Any:
        if value is None:
            return "NULL" if wire == WireFormat.SQL else None
        return self.inner.serialize(value, wire=wire)

    def deserialize(self, value: Any) -> Any:
        # \N is the NULL marker of the text formats
        if value is None or value == "\\N":
            return None
        return self.inner.deserialize(value)


class LowCardinalityHandler(TypeHandler):
    """Dictionary-encoded storage; values behave exactly like the inner type."""

    kind = "low_cardinality"

    def __init__(self, inner: TypeHandler):
        super().__init__(f"LowCardinality({inner.name})")
        self.inner = inner

    @property
    def nullable(self) -> bool:
        return self.inner.nullable

    def cast(self, value: Any) -> Any:
        return self.inner.cast(value)

    def serialize(self, value: Any, wire: WireFormat = WireFormat.SQL) -> Any:
        return self.inner.serialize(value, wire=wire)

    def deserialize(self, value: Any) -> Any:
        return self.inner.deserialize(value)
