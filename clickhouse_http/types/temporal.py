"""
Date and DateTime type handlers.
"""

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from clickhouse_http.errors import TypeResolutionError
from clickhouse_http.types.base import TypeHandler, quote_string

EPOCH = date(1970, 1, 1)
MAX_DATETIME64_PRECISION = 9

_DATETIME_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})"
    r"(?:[ T](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?)?"
    r"\s*(Z|[+-]\d{2}:?\d{2})?$"
)


def parse_datetime_text(text: str) -> datetime:
    """Parse the text forms the server emits, including 9-digit fractions."""
    match = _DATETIME_RE.match(text.strip())
    if not match:
        raise ValueError(f"Invalid date/time '{text}'")
    year, month, day, hour, minute, second, fraction, offset = match.groups()
    micro = int((fraction or "0")[:6].ljust(6, "0"))
    tzinfo = None
    if offset:
        if offset == "Z":
            tzinfo = timezone.utc
        else:
            digits = offset.replace(":", "")
            delta = timedelta(hours=int(digits[1:3]), minutes=int(digits[3:5]))
            tzinfo = timezone(-delta if digits[0] == "-" else delta)
    return datetime(
        int(year), int(month), int(day),
        int(hour or 0), int(minute or 0), int(second or 0), micro,
        tzinfo=tzinfo,
    )


class DateHandler(TypeHandler):
    """Date and Date32. Integers are read as days since 1970-01-01."""

    kind = "date"

    def _cast(self, value: Any) -> date:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return EPOCH + timedelta(days=value)
        if isinstance(value, str):
            if not value.strip():
                raise self.cast_error(value, f"Cannot cast empty string to {self.name}")
            try:
                return parse_datetime_text(value).date()
            except ValueError as exc:
                raise self.cast_error(value, f"Cannot cast '{value}' to {self.name}: {exc}") from None
        raise self.cast_error(value)

    def _to_sql(self, value: date) -> str:
        return quote_string(value.isoformat())

    def _to_json(self, value: date) -> str:
        return value.isoformat()


class DateTimeHandler(TypeHandler):
    """DateTime and DateTime64(precision[, timezone]).

    Without a timezone parameter values are naive datetimes (aware input is
    converted to UTC first). With one, values are aware datetimes in that
    zone. Sub-second digits beyond the precision are dropped on cast.
    """

    kind = "datetime"

    def __init__(self, name: str, precision: int = 0, timezone_name: Optional[str] = None):
        if not 0 <= precision <= MAX_DATETIME64_PRECISION:
            raise TypeResolutionError(f"DateTime64 precision must be 0-{MAX_DATETIME64_PRECISION}, got {precision}")
        super().__init__(name)
        self.precision = precision
        self.timezone_name = timezone_name
        self.tz = None
        if timezone_name:
            try:
                self.tz = ZoneInfo(timezone_name)
            except (ZoneInfoNotFoundError, ValueError):
                raise TypeResolutionError(f"Unknown timezone '{timezone_name}' in {name}") from None

    def _cast(self, value: Any) -> datetime:
        if isinstance(value, datetime):
            result = value
        elif isinstance(value, date):
            result = datetime.combine(value, time())
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            result = datetime.fromtimestamp(value, tz=timezone.utc)
        elif isinstance(value, str):
            if not value.strip():
                raise self.cast_error(value, f"Cannot cast empty string to {self.name}")
            try:
                result = parse_datetime_text(value)
            except ValueError as exc:
                raise self.cast_error(value, f"Cannot cast '{value}' to {self.name}: {exc}") from None
        else:
            raise self.cast_error(value)
        return self._normalize(result)

    def _normalize(self, value: datetime) -> datetime:
        if self.tz is not None:
            value = value.astimezone(self.tz) if value.tzinfo else value.replace(tzinfo=self.tz)
        elif value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)

        if self.precision < 6:
            step = 10 ** (6 - self.precision)
            value = value.replace(microsecond=value.microsecond - value.microsecond % step)
        return value

    def format(self, value: datetime) -> str:
        text = value.strftime("%Y-%m-%d %H:%M:%S")
        if self.precision > 0:
            digits = f"{value.microsecond:06d}".ljust(self.precision, "0")
            text += "." + digits[:self.precision]
        return text

    def _to_sql(self, value: datetime) -> str:
        return quote_string(self.format(value))

    def _to_json(self, value: datetime) -> str:
        return self.format(value)
