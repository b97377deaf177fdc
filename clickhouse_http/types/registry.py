"""
Type registry: maps type names to handler factories and resolves parsed
type trees into handler trees.

A registry is an ordinary object owned by a client, not process-wide
state, so two clients can carry different custom registrations.
"""

import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from clickhouse_http.errors import TypeResolutionError, UnknownTypeError
from clickhouse_http.logging import get_logger
from clickhouse_http.types.base import RawHandler, TypeHandler
from clickhouse_http.types.composite import (
    ArrayHandler,
    LowCardinalityHandler,
    MapHandler,
    NullableHandler,
    TupleHandler,
)
from clickhouse_http.types.numeric import DECIMAL_PRECISION, DecimalHandler, FloatHandler, IntegerHandler
from clickhouse_http.types.parser import TypeNode, parse_type
from clickhouse_http.types.scalars import BoolHandler, UUIDHandler
from clickhouse_http.types.strings import EnumHandler, FixedStringHandler, StringHandler
from clickhouse_http.types.temporal import DateHandler, DateTimeHandler

logger = get_logger("types")

Builder = Callable[[TypeNode, Sequence], TypeHandler]


@dataclass(frozen=True)
class TypeFactory:
    """Builds handlers for one type name.

    ``builder(node, args)`` receives the node being resolved and either the
    already-resolved argument handlers or, when ``literal_args`` is set, the
    literal argument nodes (``16`` in ``FixedString(16)``).
    """

    builder: Builder
    min_args: int = 0
    max_args: Optional[int] = 0
    literal_args: bool = False

    def build(self, node: TypeNode, args: Sequence = ()) -> TypeHandler:
        return self.builder(node, args)

    def check_arity(self, node: TypeNode) -> None:
        count = len(node.args)
        if count < self.min_args or (self.max_args is not None and count > self.max_args):
            if self.max_args is None:
                expected = f"at least {self.min_args}"
            elif self.min_args == self.max_args:
                expected = str(self.min_args)
            else:
                expected = f"{self.min_args}-{self.max_args}"
            raise TypeResolutionError(
                f"{node.name} expects {expected} argument(s), got {count} in '{node}'",
                details={"type": str(node), "arguments": count},
            )


def simple(handler_class, **kwargs) -> TypeFactory:
    """Factory for a parameterless type."""
    return TypeFactory(lambda node, args: handler_class(node.name, **kwargs))


def _int_literal(node: TypeNode, owner: TypeNode) -> int:
    try:
        return int(node.literal_value)
    except ValueError:
        raise TypeResolutionError(f"Expected an integer parameter in '{owner}', got {node.name}") from None


def _build_decimal(node: TypeNode, args: Sequence[TypeNode]) -> TypeHandler:
    if node.name in DECIMAL_PRECISION:
        return DecimalHandler(str(node), DECIMAL_PRECISION[node.name], _int_literal(args[0], node))
    scale = _int_literal(args[1], node) if len(args) > 1 else 0
    return DecimalHandler(str(node), _int_literal(args[0], node), scale)


def _build_fixed_string(node: TypeNode, args: Sequence[TypeNode]) -> TypeHandler:
    return FixedStringHandler(str(node), _int_literal(args[0], node))


def _build_datetime(node: TypeNode, args: Sequence[TypeNode]) -> TypeHandler:
    if node.name == "DateTime64":
        precision = _int_literal(args[0], node)
        tz = args[1].literal_value if len(args) > 1 else None
        return DateTimeHandler(str(node), precision=precision, timezone_name=tz)
    tz = args[0].literal_value if args else None
    return DateTimeHandler(str(node), timezone_name=tz)


def _build_enum(node: TypeNode, args: Sequence[TypeNode]) -> TypeHandler:
    width = {"Enum8": 8, "Enum16": 16}.get(node.name)
    return EnumHandler(str(node), EnumHandler.parse_entries([arg.name for arg in args]), width=width)


def _build_tuple(node: TypeNode, args: Sequence[TypeHandler]) -> TypeHandler:
    return TupleHandler(args, [arg.field for arg in node.args])


class TypeRegistry:
    """Name → factory table plus a cache of resolved handlers."""

    def __init__(self):
        self._factories: Dict[str, TypeFactory] = {}
        self._cache: Dict[tuple, TypeHandler] = {}
        self._lock = threading.Lock()

    @classmethod
    def default(cls) -> "TypeRegistry":
        """A new registry holding every built-in ClickHouse type."""
        registry = cls()
        registry.register_defaults()
        return registry

    def register(self, name: str, factory: TypeFactory) -> None:
        """Register or replace the factory for a type name."""
        with self._lock:
            self._factories[name] = factory
            self._cache.clear()

    def lookup(self, name: str) -> TypeFactory:
        """Return the factory for a type name."""
        try:
            return self._factories[name]
        except KeyError:
            raise UnknownTypeError(name) from None

    def __contains__(self, name: str) -> bool:
        return name in self._factories

    @property
    def names(self) -> List[str]:
        return sorted(self._factories)

    def resolve(self, node: TypeNode, strict: bool = True) -> TypeHandler:
        """Build the handler tree for a parsed type, resolving arguments first.

        With ``strict=False`` unknown type names become pass-through
        ``RawHandler`` leaves instead of raising ``UnknownTypeError``.
        """
        if node.is_literal:
            raise TypeResolutionError(f"Expected a type, got literal {node.name}")

        try:
            factory = self.lookup(node.name)
        except UnknownTypeError:
            if strict:
                raise
            logger.debug("Unknown type resolved as raw", type=str(node))
            return RawHandler(str(node))

        factory.check_arity(node)
        if factory.literal_args:
            for arg in node.args:
                if not arg.is_literal:
                    raise TypeResolutionError(f"Expected a literal parameter in '{node}', got {arg}")
            return factory.build(node, node.args)

        handlers = [self.resolve(arg, strict=strict) for arg in node.args]
        return factory.build(node, handlers)

    def get(self, type_string: str, strict: bool = True) -> TypeHandler:
        """Parse and resolve a type string, caching the handler."""
        key = (type_string, strict)
        handler = self._cache.get(key)
        if handler is not None:
            return handler

        handler = self.resolve(parse_type(type_string), strict=strict)
        with self._lock:
            self._cache[key] = handler
        return handler

    def register_defaults(self) -> None:
        for width in (8, 16, 32, 64, 128, 256):
            self.register(f"Int{width}", simple(IntegerHandler, width=width, signed=True))
            self.register(f"UInt{width}", simple(IntegerHandler, width=width, signed=False))

        self.register("Float32", simple(FloatHandler, width=32))
        self.register("Float64", simple(FloatHandler, width=64))

        self.register("Decimal", TypeFactory(_build_decimal, 1, 2, literal_args=True))
        for name in DECIMAL_PRECISION:
            self.register(name, TypeFactory(_build_decimal, 1, 1, literal_args=True))

        self.register("String", simple(StringHandler))
        self.register("FixedString", TypeFactory(_build_fixed_string, 1, 1, literal_args=True))
        self.register("IPv4", simple(StringHandler))
        self.register("IPv6", simple(StringHandler))

        self.register("Date", simple(DateHandler))
        self.register("Date32", simple(DateHandler))
        self.register("DateTime", TypeFactory(_build_datetime, 0, 1, literal_args=True))
        self.register("DateTime64", TypeFactory(_build_datetime, 1, 2, literal_args=True))

        self.register("UUID", simple(UUIDHandler))
        self.register("Bool", simple(BoolHandler))
        self.register("Boolean", simple(BoolHandler))

        for name in ("Enum", "Enum8", "Enum16"):
            self.register(name, TypeFactory(_build_enum, 1, None, literal_args=True))

        self.register("Array", TypeFactory(lambda node, args: ArrayHandler(args[0]), 1, 1))
        self.register("Map", TypeFactory(lambda node, args: MapHandler(args[0], args[1]), 2, 2))
        self.register("Tuple", TypeFactory(_build_tuple, 1, None))
        self.register("Nullable", TypeFactory(lambda node, args: NullableHandler(args[0]), 1, 1))
        self.register("LowCardinality", TypeFactory(lambda node, args: LowCardinalityHandler(args[0]), 1, 1))

        # Type of a bare NULL literal, e.g. SELECT NULL -> Nullable(Nothing)
        self.register("Nothing", simple(RawHandler))
