"""Half-open time intervals.

An interval ``[start, end)`` occupies every instant from ``start`` up to but
not including ``end``. Two intervals that merely touch (``a.end == b.start``)
do not overlap, so back-to-back meetings are allowed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from roombook.core.exceptions import ValidationError


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True, slots=True)
class Interval:
    """Half-open ``[start, end)`` range of aware UTC datetimes."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        # Callers are expected to go through make_interval(); this guards the
        # type itself against inverted or empty ranges.
        if self.end <= self.start:
            raise ValueError("Interval end must be after start")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: Interval) -> bool:
        return overlaps(self, other)

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end

    def clip(self, other: Interval) -> Interval | None:
        """Return the part of this interval inside ``other``, if any."""
        start = max(self.start, other.start)
        end = min(self.end, other.end)
        if end <= start:
            return None
        return Interval(start, end)


def overlaps(a: Interval, b: Interval) -> bool:
    """True when the two half-open intervals share at least one instant."""
    return a.start < b.end and b.start < a.end


def make_interval(
    start: datetime | None,
    end: datetime | None,
    *,
    start_field: str = "startTime",
    end_field: str = "endTime",
) -> Interval:
    """Validate raw boundary values and build an :class:`Interval`.

    Raises:
        ValidationError: If a bound is missing or the range is empty/inverted.
    """
    if start is None:
        raise ValidationError("is required", field=start_field)
    if end is None:
        raise ValidationError("is required", field=end_field)

    start = ensure_utc(start)
    end = ensure_utc(end)
    if end <= start:
        raise ValidationError("must be after start time", field=end_field)
    return Interval(start, end)
