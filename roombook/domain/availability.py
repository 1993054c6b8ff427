"""Per-room availability index.

The index is a read model over persisted bookings. Each room maps to an
immutable :class:`RoomSchedule` snapshot of its active bookings ordered by
start time; mutations swap in a new snapshot, so a reader that grabbed a
schedule keeps a single consistent view while writers proceed. Everything here
can be re-derived from booking rows at any time via :meth:`AvailabilityIndex.rebuild`.
"""

from __future__ import annotations

import logging
import time
from bisect import bisect_left, bisect_right
from collections.abc import Callable, Hashable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from itertools import islice

from roombook.domain.interval import Interval

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass(frozen=True, slots=True)
class IndexEntry:
    """An active booking's occupancy of a room."""

    booking_id: Hashable
    interval: Interval

    @property
    def start(self) -> datetime:
        return self.interval.start

    @property
    def end(self) -> datetime:
        return self.interval.end


@dataclass(frozen=True, slots=True)
class TimeWindow:
    """A busy or free stretch of time inside a queried range."""

    start: datetime
    end: datetime
    booking_ids: tuple = field(default=())

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


class WindowSequence:
    """Lazy, finite and restartable sequence of windows.

    Iterating twice walks the same snapshot twice; nothing is computed until a
    caller pulls windows, so ``take(3)`` never materialises a whole day.
    """

    def __init__(self, factory: Callable[[], Iterator[TimeWindow]]) -> None:
        self._factory = factory

    def __iter__(self) -> Iterator[TimeWindow]:
        return self._factory()

    def take(self, limit: int | None = None) -> list[TimeWindow]:
        if limit is None:
            return list(self)
        return list(islice(self, limit))

    def first(self) -> TimeWindow | None:
        return next(iter(self), None)

    def limited(self, limit: int | None) -> WindowSequence:
        if limit is None:
            return self
        return WindowSequence(lambda: islice(self._factory(), limit))


class RoomSchedule:
    """Immutable ordered snapshot of one room's active bookings."""

    __slots__ = ("room_id", "entries", "_starts", "_ends", "loaded_at")

    def __init__(
        self,
        room_id: Hashable,
        entries: Iterable[IndexEntry] = (),
        loaded_at: float | None = None,
    ) -> None:
        self.room_id = room_id
        self.entries: tuple[IndexEntry, ...] = tuple(
            sorted(entries, key=lambda e: (e.start, e.end, str(e.booking_id)))
        )
        # Active bookings never overlap, so ends are ordered the same way as starts.
        self._starts = [e.start for e in self.entries]
        self._ends = [e.end for e in self.entries]
        self.loaded_at = time.monotonic() if loaded_at is None else loaded_at

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[IndexEntry]:
        return iter(self.entries)

    def __contains__(self, booking_id: object) -> bool:
        return any(e.booking_id == booking_id for e in self.entries)

    def find_conflicts(
        self,
        interval: Interval,
        exclude_booking_id: Hashable | None = None,
    ) -> list[IndexEntry]:
        """Active entries overlapping ``interval``, optionally ignoring one booking."""
        lo = bisect_right(self._ends, interval.start)
        hi = bisect_left(self._starts, interval.end)
        return [
            entry
            for entry in islice(self.entries, lo, max(lo, hi))
            if entry.booking_id != exclude_booking_id and entry.interval.overlaps(interval)
        ]

    def is_free(self, interval: Interval, exclude_booking_id: Hashable | None = None) -> bool:
        return not self.find_conflicts(interval, exclude_booking_id)

    def busy_windows(self, window: Interval) -> WindowSequence:
        """Occupied stretches clipped to ``window``; touching bookings are merged."""
        return WindowSequence(lambda: self._iter_busy(window))

    def free_windows(self, window: Interval) -> WindowSequence:
        """Gaps between busy stretches, including the open ends of ``window``."""
        return WindowSequence(lambda: self._iter_free(window))

    def _iter_busy(self, window: Interval) -> Iterator[TimeWindow]:
        lo = bisect_right(self._ends, window.start)
        hi = bisect_left(self._starts, window.end)

        current_start: datetime | None = None
        current_end: datetime | None = None
        booking_ids: list = []
        for entry in islice(self.entries, lo, max(lo, hi)):
            start = max(entry.start, window.start)
            end = min(entry.end, window.end)
            if current_end is not None and start <= current_end:
                current_end = max(current_end, end)
                booking_ids.append(entry.booking_id)
                continue
            if current_start is not None and current_end is not None:
                yield TimeWindow(current_start, current_end, tuple(booking_ids))
            current_start, current_end, booking_ids = start, end, [entry.booking_id]

        if current_start is not None and current_end is not None:
            yield TimeWindow(current_start, current_end, tuple(booking_ids))

    def _iter_free(self, window: Interval) -> Iterator[TimeWindow]:
        cursor = window.start
        for busy in self._iter_busy(window):
            if busy.start > cursor:
                yield TimeWindow(cursor, busy.start)
            cursor = max(cursor, busy.end)
        if cursor < window.end:
            yield TimeWindow(cursor, window.end)

    def with_entry(self, entry: IndexEntry) -> RoomSchedule:
        remaining = (e for e in self.entries if e.booking_id != entry.booking_id)
        return RoomSchedule(self.room_id, [*remaining, entry], self.loaded_at)

    def without(self, booking_id: Hashable) -> RoomSchedule:
        remaining = [e for e in self.entries if e.booking_id != booking_id]
        return RoomSchedule(self.room_id, remaining, self.loaded_at)


def round_up(instant: datetime, step: timedelta) -> datetime:
    """Round ``instant`` up to the next multiple of ``step`` since the epoch."""
    remainder = (instant - _EPOCH) % step
    if not remainder:
        return instant
    return instant + (step - remainder)


def first_fit(
    schedule: RoomSchedule,
    search: Interval,
    duration: timedelta,
    granularity: timedelta,
) -> Interval | None:
    """Earliest slot of ``duration`` inside ``search`` starting on a granularity boundary."""
    for free in schedule.free_windows(search):
        start = round_up(free.start, granularity)
        if start + duration <= free.end:
            return Interval(start, start + duration)
    return None


class AvailabilityIndex:
    """Cache of per-room schedules, keyed by room id.

    Each room carries a generation counter bumped on every write or
    invalidation. A reader that loaded rows from storage passes the generation
    it observed before querying; if a writer got in first, the reader's rows
    are discarded instead of overwriting the newer snapshot.
    """

    def __init__(self, ttl_seconds: float | None = None) -> None:
        self.ttl_seconds = ttl_seconds
        self._schedules: dict[Hashable, RoomSchedule] = {}
        self._generations: dict[Hashable, int] = {}

    def generation(self, room_id: Hashable) -> int:
        return self._generations.get(room_id, 0)

    def _bump(self, room_id: Hashable) -> None:
        self._generations[room_id] = self.generation(room_id) + 1

    def get(self, room_id: Hashable) -> RoomSchedule | None:
        """Cached schedule for ``room_id``, or None when missing or expired."""
        schedule = self._schedules.get(room_id)
        if schedule is None:
            return None
        if self.ttl_seconds is not None and time.monotonic() - schedule.loaded_at > self.ttl_seconds:
            return None
        return schedule

    def rebuild(
        self,
        room_id: Hashable,
        entries: Iterable[IndexEntry],
        expected_generation: int | None = None,
    ) -> RoomSchedule:
        """Replace a room's schedule with one derived from stored rows."""
        schedule = RoomSchedule(room_id, entries)
        if expected_generation is not None and expected_generation != self.generation(room_id):
            logger.debug(f"Discarding stale availability snapshot for room {room_id}")
            return schedule
        self._schedules[room_id] = schedule
        self._bump(room_id)
        logger.debug(f"Rebuilt availability index for room {room_id}: {len(schedule)} active bookings")
        return schedule

    def add(self, room_id: Hashable, entry: IndexEntry) -> None:
        """Insert or replace one booking's entry in a loaded room."""
        schedule = self._schedules.get(room_id)
        if schedule is None:
            return
        self._schedules[room_id] = schedule.with_entry(entry)
        self._bump(room_id)

    def remove(self, room_id: Hashable, booking_id: Hashable) -> None:
        schedule = self._schedules.get(room_id)
        if schedule is None:
            return
        self._schedules[room_id] = schedule.without(booking_id)
        self._bump(room_id)

    def invalidate(self, room_id: Hashable) -> None:
        self._schedules.pop(room_id, None)
        self._bump(room_id)

    def clear(self) -> None:
        for room_id in list(self._schedules):
            self.invalidate(room_id)
