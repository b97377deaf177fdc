"""
Unit tests for the type registry.
"""

import pytest

from clickhouse_http.errors import TypeResolutionError, UnknownTypeError
from clickhouse_http.types import (
    ArrayHandler,
    DateTimeHandler,
    DecimalHandler,
    EnumHandler,
    FixedStringHandler,
    FloatHandler,
    IntegerHandler,
    LowCardinalityHandler,
    MapHandler,
    NullableHandler,
    RawHandler,
    StringHandler,
    TupleHandler,
    TypeFactory,
    TypeRegistry,
    parse_type,
    simple,
)


class TestTypeRegistry:
    """Test cases for TypeRegistry."""

    @pytest.fixture
    def registry(self):
        """Create a registry with the built-in types."""
        return TypeRegistry.default()

    @pytest.mark.parametrize("type_string,handler_class", [
        ("UInt8", IntegerHandler),
        ("Int256", IntegerHandler),
        ("String", StringHandler),
        ("FixedString(16)", FixedStringHandler),
        ("Decimal(18, 4)", DecimalHandler),
        ("Decimal64(4)", DecimalHandler),
        ("DateTime", DateTimeHandler),
        ("DateTime64(3, 'UTC')", DateTimeHandler),
        ("Enum8('a' = 1, 'b' = 2)", EnumHandler),
        ("Array(UInt8)", ArrayHandler),
        ("Map(String, UInt64)", MapHandler),
        ("Tuple(String, UInt64)", TupleHandler),
        ("Nullable(Int32)", NullableHandler),
        ("LowCardinality(String)", LowCardinalityHandler),
    ])
    def test_resolves_builtin_types(self, registry, type_string, handler_class):
        """Test built-in type strings resolve to the expected handler."""
        assert isinstance(registry.get(type_string), handler_class)

    def test_composite_tree_mirrors_parse_tree(self, registry):
        """Test composite handlers own their resolved inner handlers."""
        handler = registry.resolve(parse_type("Map(String, Array(Nullable(UInt64)))"))

        assert isinstance(handler.key, StringHandler)
        assert isinstance(handler.value, ArrayHandler)
        assert isinstance(handler.value.element, NullableHandler)
        inner = handler.value.element.inner
        assert isinstance(inner, IntegerHandler)
        assert inner.width == 64 and inner.signed is False

    def test_handler_parameters(self, registry):
        """Test literal parameters reach the handlers."""
        decimal = registry.get("Decimal(10, 2)")
        datetime64 = registry.get("DateTime64(6, 'Asia/Tokyo')")
        fixed = registry.get("FixedString(4)")

        assert (decimal.precision, decimal.scale) == (10, 2)
        assert (datetime64.precision, datetime64.timezone_name) == (6, "Asia/Tokyo")
        assert fixed.length == 4

    def test_unknown_type(self, registry):
        """Test unknown names raise UnknownTypeError naming the token."""
        with pytest.raises(UnknownTypeError) as exc_info:
            registry.get("Array(Geometry)")

        assert exc_info.value.type_name == "Geometry"

    def test_unknown_type_non_strict(self, registry):
        """Test non-strict resolution puts a raw handler at unknown leaves."""
        handler = registry.get("Array(Geometry)", strict=False)

        assert isinstance(handler.element, RawHandler)
        assert handler.deserialize(["x"]) == ["x"]

    @pytest.mark.parametrize("type_string", [
        "Array()",
        "Array(String, String)",
        "Map(String)",
        "Nullable()",
        "Tuple()",
        "String(1)",
        "FixedString()",
        "DateTime64()",
    ])
    def test_arity_mismatch(self, registry, type_string):
        """Test wrong argument counts raise TypeResolutionError."""
        with pytest.raises(TypeResolutionError):
            registry.get(type_string)

    def test_type_expected_where_literal_given(self, registry):
        """Test a literal in a type position is rejected."""
        with pytest.raises(TypeResolutionError):
            registry.get("Array(16)")

    def test_literal_expected_where_type_given(self, registry):
        """Test a type in a literal position is rejected."""
        with pytest.raises(TypeResolutionError):
            registry.get("FixedString(String)")

    def test_invalid_parameters(self, registry):
        """Test out-of-range parameters are rejected at resolution."""
        with pytest.raises(TypeResolutionError):
            registry.get("Decimal(80, 2)")
        with pytest.raises(TypeResolutionError):
            registry.get("DateTime64(3, 'Mars/Olympus')")

    def test_register_custom_type(self, registry):
        """Test custom registrations and cache invalidation."""
        assert "JSON" not in registry

        registry.register("JSON", simple(RawHandler))

        assert "JSON" in registry
        assert isinstance(registry.get("Array(JSON)").element, RawHandler)

    def test_registrations_are_per_instance(self, registry):
        """Test two registries never share custom registrations."""
        other = TypeRegistry.default()
        registry.register("Point", TypeFactory(lambda node, args: TupleHandler(
            [FloatHandler("Float64", 64)] * 2)))

        assert "Point" in registry
        assert "Point" not in other

    def test_lookup(self, registry):
        """Test lookup returns factories and rejects unknown names."""
        assert isinstance(registry.lookup("String"), TypeFactory)
        with pytest.raises(UnknownTypeError):
            registry.lookup("Nope")

    def test_get_is_cached(self, registry):
        """Test repeated lookups return the same handler instance."""
        assert registry.get("Array(UInt8)") is registry.get("Array(UInt8)")

    def test_names(self, registry):
        """Test names lists the registered types."""
        assert {"String", "Array", "Map", "Tuple", "Nullable"} <= set(registry.names)
