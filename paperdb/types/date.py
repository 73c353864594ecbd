"""
Date & timestamp types.

    PaperDBDate       ↔ {"type": "date", "iso8601": "2020-01-01T00:00:00.000Z"}
    PaperDBTimestamp  ↔ {"type": "timestamp", "ms": 1577836800000}

Both use millisecond precision on the wire.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Union

from paperdb.engine.errors import InvalidPayloadError
from paperdb.types.converter import Converter, TypedObject, expect_typed_object

DATE_TYPE = "date"
TIMESTAMP_TYPE = "timestamp"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)
# Range of ms that datetime can represent
MIN_TIMESTAMP_MS = (datetime.min.replace(tzinfo=timezone.utc) - _EPOCH) // _ONE_MS
MAX_TIMESTAMP_MS = (datetime.max.replace(tzinfo=timezone.utc) - _EPOCH) // _ONE_MS


class PaperDBDate(datetime):
    """A drop-in ``datetime`` that always lives in UTC and converts to a TypedObject."""

    @classmethod
    def from_datetime(cls, value: datetime) -> "PaperDBDate":
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        # Truncate to the wire precision
        micro = (value.microsecond // 1000) * 1000
        return cls(
            value.year, value.month, value.day,
            value.hour, value.minute, value.second, micro,
            tzinfo=timezone.utc,
        )

    @classmethod
    def parse(cls, iso8601: str) -> "PaperDBDate":
        try:
            return cls.from_datetime(datetime.fromisoformat(iso8601.replace("Z", "+00:00")))
        except ValueError as e:
            raise InvalidPayloadError(f"Invalid ISO 8601 date: {iso8601!r}", type_name=DATE_TYPE) from e

    @classmethod
    def utcnow_ms(cls) -> "PaperDBDate":
        return cls.from_datetime(datetime.now(timezone.utc))

    def iso8601(self) -> str:
        value = self if self.tzinfo else self.replace(tzinfo=timezone.utc)
        text = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
        return text.replace("+00:00", "Z")

    def to_typed_object(self) -> TypedObject:
        return {"type": DATE_TYPE, "iso8601": self.iso8601()}

    def to_timestamp(self) -> "PaperDBTimestamp":
        value = self if self.tzinfo else self.replace(tzinfo=timezone.utc)
        return PaperDBTimestamp(round(value.timestamp() * 1000))


@dataclass(frozen=True)
class PaperDBTimestamp:
    """Milliseconds since the Unix epoch."""

    ms: Union[int, float]

    def to_typed_object(self) -> TypedObject:
        return {"type": TIMESTAMP_TYPE, "ms": self.ms}

    def to_date(self) -> PaperDBDate:
        """
        Raises:
            InvalidPayloadError: ms is outside the range of a datetime.
        """
        try:
            return PaperDBDate.from_datetime(_EPOCH + timedelta(milliseconds=self.ms))
        except (OverflowError, ValueError) as e:
            raise InvalidPayloadError(f"Timestamp out of range: {self.ms!r}", type_name=TIMESTAMP_TYPE) from e


def decode_date(obj: Any, db: Any = None) -> PaperDBDate:
    if isinstance(obj, PaperDBDate):
        return obj
    expect_typed_object(obj, DATE_TYPE)
    iso8601 = obj.get("iso8601")
    if not isinstance(iso8601, str):
        raise InvalidPayloadError("'iso8601' must be a string", type_name=DATE_TYPE)
    return PaperDBDate.parse(iso8601)


def decode_timestamp(obj: Any, db: Any = None) -> PaperDBTimestamp:
    if isinstance(obj, PaperDBTimestamp):
        return obj
    expect_typed_object(obj, TIMESTAMP_TYPE)
    ms = obj.get("ms")
    if isinstance(ms, bool) or not isinstance(ms, (int, float)) or not math.isfinite(ms):
        raise InvalidPayloadError(f"'ms' must be a finite number, got {ms!r}", type_name=TIMESTAMP_TYPE)
    if not MIN_TIMESTAMP_MS <= ms <= MAX_TIMESTAMP_MS:
        raise InvalidPayloadError(f"'ms' is out of range, got {ms!r}", type_name=TIMESTAMP_TYPE)
    return PaperDBTimestamp(ms)


def encode_date(value: Any) -> TypedObject:
    if isinstance(value, PaperDBDate):
        return value.to_typed_object()
    if isinstance(value, datetime):
        return PaperDBDate.from_datetime(value).to_typed_object()
    raise InvalidPayloadError(f"Cannot encode {type(value).__name__} as a date", type_name=DATE_TYPE)


DATE_CONVERTER = Converter(type_name=DATE_TYPE, version=1, decode=decode_date, encode=encode_date)
TIMESTAMP_CONVERTER = Converter(type_name=TIMESTAMP_TYPE, version=1, decode=decode_timestamp)
