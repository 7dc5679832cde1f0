"""Metric data structures emitted by plugins."""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union


class UnsignedInt(int):
    """Integer field value serialized as unsigned (``u`` suffix)."""

    def __new__(cls, value: int):
        if int(value) < 0:
            raise ValueError(f"unsigned value must not be negative: {value}")
        return super().__new__(cls, value)


Timestamp = Union[int, datetime, None]


def to_nanoseconds(timestamp: Timestamp) -> int:
    """
    Normalize a timestamp to integer nanoseconds since the epoch.

    Args:
        timestamp: ``None`` for now, integer nanoseconds, or a datetime
            (naive datetimes are taken as UTC)

    Returns:
        int: Nanoseconds since the epoch
    """
    if timestamp is None:
        return time.time_ns()

    if isinstance(timestamp, datetime):
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        delta = timestamp - datetime(1970, 1, 1, tzinfo=timezone.utc)
        return (delta.days * 86_400 + delta.seconds) * 1_000_000_000 + delta.microseconds * 1_000

    if isinstance(timestamp, bool) or not isinstance(timestamp, int):
        raise TypeError(f"unsupported timestamp type: {type(timestamp).__name__}")

    return timestamp


@dataclass(frozen=True)
class Metric:
    """
    A single immutable data point.

    Tags and fields are stored as read-only mappings. Tag order is
    irrelevant (the serializer sorts them); field order is kept as given.
    """

    name: str
    tags: Mapping[str, str]
    fields: Mapping[str, Any]
    timestamp: int

    def __post_init__(self):
        """Freeze tag and field mappings."""
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    @classmethod
    def new(
        cls,
        name: str,
        fields: Mapping[str, Any],
        tags: Optional[Mapping[str, str]] = None,
        timestamp: Timestamp = None,
    ) -> "Metric":
        """Build a metric, stamping it with the current time if needed."""
        return cls(
            name=name,
            tags=tags or {},
            fields=fields,
            timestamp=to_nanoseconds(timestamp),
        )
