"""
Integer, floating point and decimal type handlers.
"""

import math
import struct
from decimal import Decimal, InvalidOperation
from typing import Any

from clickhouse_http.errors import TypeResolutionError
from clickhouse_http.types.base import TypeHandler

DECIMAL_PRECISION = {
    "Decimal32": 9,
    "Decimal64": 18,
    "Decimal128": 38,
    "Decimal256": 76,
}
MAX_DECIMAL_PRECISION = 76


class IntegerHandler(TypeHandler):
    """Signed or unsigned integer of a fixed bit width.

    Out-of-range values raise ``TypeCastError``; nothing is wrapped or
    truncated. Floats and decimals are accepted only when integral.
    """

    kind = "integer"

    def __init__(self, name: str, width: int, signed: bool):
        super().__init__(name)
        self.width = width
        self.signed = signed
        if signed:
            self.min_value = -(2 ** (width - 1))
            self.max_value = 2 ** (width - 1) - 1
        else:
            self.min_value = 0
            self.max_value = 2 ** width - 1

    def _cast(self, value: Any) -> int:
        if isinstance(value, bool):
            result = int(value)
        elif isinstance(value, int):
            result = value
        elif isinstance(value, (float, Decimal)):
            if not _is_integral(value):
                raise self.cast_error(value, f"Cannot cast non-integral {value!r} to {self.name}")
            result = int(value)
        elif isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise self.cast_error(value, f"Cannot cast empty string to {self.name}")
            try:
                result = int(stripped)
            except ValueError:
                raise self.cast_error(value, f"Cannot cast '{value}' to {self.name}") from None
        else:
            raise self.cast_error(value)

        if result < self.min_value or result > self.max_value:
            raise self.cast_error(
                value, f"Value {result} is out of range for {self.name} ({self.min_value}..{self.max_value})"
            )
        return result


def _is_integral(value) -> bool:
    if isinstance(value, float):
        return math.isfinite(value) and value.is_integer()
    return value.is_finite() and value == value.to_integral_value()


class FloatHandler(TypeHandler):
    """Float32 or Float64.

    Float32 values are rounded to single precision on cast, matching what
    the server stores.
    """

    kind = "float"

    SPECIAL = {
        "inf": math.inf, "+inf": math.inf, "infinity": math.inf, "+infinity": math.inf,
        "-inf": -math.inf, "-infinity": -math.inf,
        "nan": math.nan, "+nan": math.nan, "-nan": math.nan,
    }

    def __init__(self, name: str, width: int):
        super().__init__(name)
        self.width = width

    def _cast(self, value: Any) -> float:
        if isinstance(value, bool):
            raise self.cast_error(value)
        if isinstance(value, (int, float, Decimal)):
            result = float(value)
        elif isinstance(value, str):
            result = self._parse(value)
        else:
            raise self.cast_error(value)

        if self.width == 32 and math.isfinite(result):
            try:
                result = struct.unpack("f", struct.pack("f", result))[0]
            except OverflowError:
                raise self.cast_error(value, f"Value {value!r} is out of range for {self.name}") from None
        return result

    def _parse(self, value: str) -> float:
        stripped = value.strip().lower()
        if stripped in self.SPECIAL:
            return self.SPECIAL[stripped]
        if not stripped:
            raise self.cast_error(value, f"Cannot cast empty string to {self.name}")
        try:
            return float(stripped)
        except ValueError:
            raise self.cast_error(value, f"Cannot cast '{value}' to {self.name}") from None

    def _to_sql(self, value: float) -> str:
        if math.isnan(value):
            return "nan"
        if math.isinf(value):
            return "inf" if value > 0 else "-inf"
        return repr(value)

    def _to_json(self, value: float) -> Any:
        if math.isfinite(value):
            return value
        return self._to_sql(value)


class DecimalHandler(TypeHandler):
    """Fixed-point decimal with precision P and scale S."""

    kind = "decimal"

    def __init__(self, name: str, precision: int, scale: int):
        if not 1 <= precision <= MAX_DECIMAL_PRECISION:
            raise TypeResolutionError(f"Decimal precision must be 1-{MAX_DECIMAL_PRECISION}, got {precision}")
        if not 0 <= scale <= precision:
            raise TypeResolutionError(f"Decimal scale must be 0-{precision}, got {scale}")
        super().__init__(name)
        self.precision = precision
        self.scale = scale

    def _cast(self, value: Any) -> Decimal:
        if isinstance(value, bool):
            raise self.cast_error(value)
        try:
            if isinstance(value, Decimal):
                result = value
            elif isinstance(value, (int, float)):
                result = Decimal(repr(value)) if isinstance(value, float) else Decimal(value)
            elif isinstance(value, str):
                result = Decimal(value.strip())
            else:
                raise self.cast_error(value)
        except InvalidOperation:
            raise self.cast_error(value, f"Cannot cast '{value}' to {self.name}") from None

        if not result.is_finite():
            raise self.cast_error(value, f"{self.name} cannot hold {value!r}")

        integer_digits = max(result.adjusted() + 1, 0) if result else 0
        max_digits = self.precision - self.scale
        if integer_digits > max_digits:
            raise self.cast_error(
                value, f"Value {result} exceeds maximum integer digits ({max_digits}) for {self.name}"
            )
        return result

    def _deserialize(self, value: Any) -> Decimal:
        if isinstance(value, float):
            value = repr(value)
        return self._cast(value)

    def _to_sql(self, value: Decimal) -> str:
        return format(value, "f")

    def _to_json(self, value: Decimal) -> str:
        return format(value, "f")
