"""Conflict-safe booking service.

Creating, rescheduling, confirming and cancelling a booking all run inside a
per-room critical section: the room's lock is taken (and, on PostgreSQL, the
room row is locked ``FOR UPDATE``), the room's availability index is re-derived
from storage, the conflict check runs against that fresh snapshot, and the
write is committed before the index is updated and the lock released. Two
overlapping requests for the same room therefore cannot both succeed; the
loser sees :class:`ConflictError`. Requests for different rooms never wait on
each other.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.config import Settings, settings
from roombook.core.exceptions import (
    AppException,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from roombook.core.locks import RoomLockRegistry
from roombook.core.permissions import AuthorizationScoper, Principal, UserRole
from roombook.domain.availability import (
    AvailabilityIndex,
    IndexEntry,
    RoomSchedule,
    WindowSequence,
    first_fit,
)
from roombook.domain.booking_state import (
    ACTIVE_STATUSES,
    BookingStatus,
    assert_booking_transition,
    initial_status,
)
from roombook.domain.interval import Interval, ensure_utc, make_interval
from roombook.models.booking import Booking
from roombook.models.room import Room
from roombook.models.types import utcnow
from roombook.services.directory import (
    RoomDirectory,
    RoomInfo,
    UserDirectory,
    room_directory,
    user_directory,
)

logger = logging.getLogger(__name__)

_ACTIVE_VALUES = [s.value for s in ACTIVE_STATUSES]


@dataclass(frozen=True)
class RoomAvailability:
    """Free/busy view of one room over a query range."""

    room_id: uuid.UUID
    window: Interval
    busy: WindowSequence
    free: WindowSequence


@dataclass
class CriticalSection:
    """What a writer sees while holding a room: its fresh schedule and deadline."""

    room_id: uuid.UUID
    schedule: RoomSchedule
    deadline: asyncio.Timeout


class BookingService:
    """Service for the booking lifecycle and room availability."""

    def __init__(
        self,
        rooms: RoomDirectory = room_directory,
        users: UserDirectory = user_directory,
        index: AvailabilityIndex | None = None,
        locks: RoomLockRegistry | None = None,
        config: Settings = settings,
    ) -> None:
        self.rooms = rooms
        self.users = users
        self.config = config
        self.scoper = AuthorizationScoper(rooms)
        self.index = index or AvailabilityIndex(ttl_seconds=config.availability_cache_ttl_seconds)
        self.locks = locks or RoomLockRegistry(timeout=config.room_lock_timeout_seconds)

    # ==================== WRITES ====================

    async def create(
        self,
        db: AsyncSession,
        principal: Principal,
        room_id: uuid.UUID,
        start_time: datetime | None,
        end_time: datetime | None,
        title: str,
        description: str | None = None,
        owner_id: uuid.UUID | None = None,
        idempotency_key: str | None = None,
    ) -> Booking:
        """Book ``room_id`` for ``[start_time, end_time)``.

        Raises:
            ValidationError: Malformed interval/title, or the room is inactive.
            NotFoundError: Unknown room or owner.
            ForbiddenError: Booking on someone else's behalf without rights over the room.
            ConflictError: The interval collides with an active booking.
            RoomBusyError: The room's critical section timed out; nothing was written.
        """
        interval = self._validate_interval(start_time, end_time)
        title = self._validate_title(title)

        room = await self._get_room(db, room_id)
        if not room.is_active:
            raise ValidationError("Room is not available for booking", field="roomId")

        owner_id = owner_id or principal.user_id
        if owner_id != principal.user_id:
            await self.scoper.require_room_manager(db, principal, room_id)
            if not await self.users.exists(db, owner_id):
                raise NotFoundError("User", str(owner_id))

        async with self._critical_section(db, room_id) as section:
            self._assert_free(section.schedule, interval)

            status = initial_status(self.config.booking_requires_approval)
            now = utcnow()
            booking = Booking(
                id=uuid.uuid4(),
                room_id=room_id,
                user_id=owner_id,
                start_time=interval.start,
                end_time=interval.end,
                title=title,
                description=description,
                status=status.value,
                idempotency_key=idempotency_key,
                confirmed_at=now if status is BookingStatus.CONFIRMED else None,
                created_at=now,
                updated_at=now,
            )
            db.add(booking)
            await self._commit(db, section, interval)
            self.index.add(room_id, IndexEntry(booking.id, interval))

        logger.info(
            f"Booking created: id={booking.id} room={room_id} owner={owner_id} "
            f"[{interval.start.isoformat()}, {interval.end.isoformat()}) status={booking.status}"
        )
        return booking

    async def reschedule(
        self,
        db: AsyncSession,
        principal: Principal,
        booking_id: uuid.UUID,
        start_time: datetime | None,
        end_time: datetime | None,
    ) -> Booking:
        """Move an active booking, ignoring its own current interval when checking conflicts."""
        booking = await self._get_booking(db, booking_id)
        await self.scoper.require_booking_access(db, principal, booking)
        interval = self._validate_interval(start_time, end_time)

        async with self._critical_section(db, booking.room_id) as section:
            booking = await self._get_booking(db, booking_id, for_update=True)
            if not booking.is_active:
                raise ValidationError("Cancelled bookings cannot be rescheduled", field="status")

            self._assert_free(section.schedule, interval, exclude_booking_id=booking.id)

            previous = booking.interval
            booking.start_time = interval.start
            booking.end_time = interval.end
            booking.updated_at = utcnow()
            await self._commit(db, section, interval, exclude_booking_id=booking.id)
            self.index.add(booking.room_id, IndexEntry(booking.id, interval))

        logger.info(
            f"Booking rescheduled: id={booking.id} room={booking.room_id} "
            f"from {previous.start.isoformat()} to {interval.start.isoformat()}"
        )
        return booking

    async def cancel(
        self,
        db: AsyncSession,
        principal: Principal,
        booking_id: uuid.UUID,
    ) -> Booking:
        """Cancel a booking, releasing its slot in the same commit."""
        booking = await self._get_booking(db, booking_id)
        await self.scoper.require_booking_access(db, principal, booking)

        async with self._critical_section(db, booking.room_id) as section:
            booking = await self._get_booking(db, booking_id, for_update=True)
            assert_booking_transition(booking.status, BookingStatus.CANCELLED)

            now = utcnow()
            booking.status = BookingStatus.CANCELLED.value
            booking.cancelled_at = now
            booking.cancelled_by = principal.user_id
            booking.updated_at = now
            await self._commit(db, section)
            self.index.remove(booking.room_id, booking.id)

        logger.info(f"Booking cancelled: id={booking.id} room={booking.room_id} by={principal.user_id}")
        return booking

    async def confirm(
        self,
        db: AsyncSession,
        principal: Principal,
        booking_id: uuid.UUID,
    ) -> Booking:
        """Approve a PENDING booking (room managers and admins only)."""
        booking = await self._get_booking(db, booking_id)
        await self.scoper.require_room_manager(db, principal, booking.room_id)

        async with self._critical_section(db, booking.room_id) as section:
            booking = await self._get_booking(db, booking_id, for_update=True)
            assert_booking_transition(booking.status, BookingStatus.CONFIRMED)

            now = utcnow()
            booking.status = BookingStatus.CONFIRMED.value
            booking.confirmed_at = now
            booking.updated_at = now
            await self._commit(db, section)

        logger.info(f"Booking confirmed: id={booking.id} by={principal.user_id}")
        return booking

    async def change_status(
        self,
        db: AsyncSession,
        principal: Principal,
        booking_id: uuid.UUID,
        target: BookingStatus | str,
    ) -> Booking:
        """Apply a requested status change through the state machine."""
        target = BookingStatus(target)
        if target is BookingStatus.CANCELLED:
            return await self.cancel(db, principal, booking_id)
        if target is BookingStatus.CONFIRMED:
            return await self.confirm(db, principal, booking_id)

        booking = await self._get_booking(db, booking_id)
        await self.scoper.require_booking_access(db, principal, booking)
        # No edge leads back to PENDING; this always raises.
        assert_booking_transition(booking.status, target)
        return booking

    async def update_details(
        self,
        db: AsyncSession,
        principal: Principal,
        booking_id: uuid.UUID,
        title: str | None = None,
        description: str | None = None,
    ) -> Booking:
        """Edit the title/description of an active booking."""
        return await self.update(db, principal, booking_id, title=title, description=description)

    async def update(
        self,
        db: AsyncSession,
        principal: Principal,
        booking_id: uuid.UUID,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        title: str | None = None,
        description: str | None = None,
        status: BookingStatus | str | None = None,
    ) -> Booking:
        """Apply a partial edit of times, details and status as one unit.

        A single time bound may be given; the other keeps its current value.
        Every requested change is authorized and validated before anything is
        written, and all of them land in one commit or none do.

        Raises:
            ValidationError: Bad interval/title, editing a cancelled booking, or
                moving a booking that is being cancelled.
            ForbiddenError: The caller may not act on the booking, or confirms
                without managing the room.
            InvalidTransition: The requested status is not reachable.
            ConflictError: The new interval collides with an active booking.
        """
        target = BookingStatus(status) if status is not None else None
        moving = start_time is not None or end_time is not None
        if title is not None:
            title = self._validate_title(title)

        booking = await self._get_booking(db, booking_id)
        await self.scoper.require_booking_access(db, principal, booking)
        if target is BookingStatus.CONFIRMED and target.value != booking.status:
            await self.scoper.require_room_manager(db, principal, booking.room_id)
        if moving and target is BookingStatus.CANCELLED:
            raise ValidationError("Cannot reschedule a booking while cancelling it", field="status")
        if not moving and target is None and title is None and description is None:
            return booking

        async with self._critical_section(db, booking.room_id) as section:
            booking = await self._get_booking(db, booking_id, for_update=True)
            if target is not None and target.value == booking.status:
                target = None
            if target is not None:
                assert_booking_transition(booking.status, target)
            elif not booking.is_active:
                verb = "rescheduled" if moving else "edited"
                raise ValidationError(f"Cancelled bookings cannot be {verb}", field="status")

            interval = None
            if moving:
                interval = self._validate_interval(
                    start_time or booking.start_time, end_time or booking.end_time
                )
                self._assert_free(section.schedule, interval, exclude_booking_id=booking.id)

            now = utcnow()
            if interval is not None:
                booking.start_time = interval.start
                booking.end_time = interval.end
            if title is not None:
                booking.title = title
            if description is not None:
                booking.description = description
            if target is BookingStatus.CANCELLED:
                booking.status = target.value
                booking.cancelled_at = now
                booking.cancelled_by = principal.user_id
            elif target is BookingStatus.CONFIRMED:
                booking.status = target.value
                booking.confirmed_at = now
            booking.updated_at = now

            await self._commit(db, section, interval, exclude_booking_id=booking.id)
            if target is BookingStatus.CANCELLED:
                self.index.remove(booking.room_id, booking.id)
            elif interval is not None:
                self.index.add(booking.room_id, IndexEntry(booking.id, interval))

        logger.info(
            f"Booking updated: id={booking.id} room={booking.room_id} by={principal.user_id} "
            f"status={booking.status}"
        )
        return booking

    # ==================== READS ====================

    async def get(self, db: AsyncSession, principal: Principal, booking_id: uuid.UUID) -> Booking:
        booking = await self._get_booking(db, booking_id)
        await self.scoper.require_booking_view(db, principal, booking)
        return booking

    async def list_bookings(
        self,
        db: AsyncSession,
        principal: Principal,
        room_id: uuid.UUID | None = None,
        location_id: uuid.UUID | None = None,
        range_start: datetime | None = None,
        range_end: datetime | None = None,
        status: BookingStatus | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[Booking], int]:
        """Bookings visible to ``principal``, ordered by start time, with the total count."""
        if location_id is not None and not await self.rooms.location_exists(db, location_id):
            raise NotFoundError("Location", str(location_id))

        query = select(Booking)

        if principal.role is UserRole.USER:
            query = query.where(Booking.user_id == principal.user_id)

        needs_room = principal.role is UserRole.MANAGER or location_id is not None
        if needs_room:
            query = query.join(Room, Room.id == Booking.room_id)
        if principal.role is UserRole.MANAGER:
            query = query.where(Room.location_id.in_(principal.location_ids))
        if location_id is not None:
            query = query.where(Room.location_id == location_id)

        if room_id is not None:
            query = query.where(Booking.room_id == room_id)
        if status is not None:
            query = query.where(Booking.status == BookingStatus(status).value)
        if range_start is not None:
            query = query.where(Booking.end_time > ensure_utc(range_start))
        if range_end is not None:
            query = query.where(Booking.start_time < ensure_utc(range_end))

        count_result = await db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar() or 0

        offset = (page - 1) * page_size
        query = query.order_by(Booking.start_time, Booking.id).offset(offset).limit(page_size)
        result = await db.execute(query)
        return list(result.scalars().all()), total

    async def check_availability(
        self,
        db: AsyncSession,
        room_id: uuid.UUID,
        start_time: datetime | None,
        end_time: datetime | None,
    ) -> bool:
        interval = make_interval(start_time, end_time)
        await self._get_room(db, room_id)
        schedule = await self._snapshot(db, room_id)
        return schedule.is_free(interval)

    async def list_availability(
        self,
        db: AsyncSession,
        room_id: uuid.UUID,
        range_start: datetime | None,
        range_end: datetime | None,
        limit: int | None = None,
    ) -> RoomAvailability:
        """Free/busy windows for a room, at most ``limit`` of each; never mutates anything."""
        window = make_interval(range_start, range_end, start_field="startDate", end_field="endDate")
        if window.duration > timedelta(days=self.config.availability_max_range_days):
            raise ValidationError(
                f"Range may span at most {self.config.availability_max_range_days} days",
                field="endDate",
            )
        await self._get_room(db, room_id)
        schedule = await self._snapshot(db, room_id)
        return RoomAvailability(
            room_id=room_id,
            window=window,
            busy=schedule.busy_windows(window).limited(limit),
            free=schedule.free_windows(window).limited(limit),
        )

    async def find_available_rooms(
        self,
        db: AsyncSession,
        start_time: datetime | None,
        end_time: datetime | None,
        location_id: uuid.UUID | None = None,
        min_capacity: int | None = None,
        amenities: list[str] | None = None,
    ) -> list[RoomInfo]:
        """Active rooms matching the filters that are free for the whole interval."""
        interval = make_interval(start_time, end_time)
        candidates = await self.rooms.search(
            db, location_id=location_id, min_capacity=min_capacity, amenities=amenities
        )
        if not candidates:
            return []

        busy = await db.execute(
            select(Booking.room_id)
            .where(
                Booking.room_id.in_([r.id for r in candidates]),
                Booking.status.in_(_ACTIVE_VALUES),
                Booking.start_time < interval.end,
                Booking.end_time > interval.start,
            )
            .distinct()
        )
        busy_ids = set(busy.scalars().all())
        return [r for r in candidates if r.id not in busy_ids]

    async def suggest_slot(
        self,
        db: AsyncSession,
        room_id: uuid.UUID,
        duration_minutes: int,
        not_before: datetime | None = None,
    ) -> Interval | None:
        """Earliest bookable slot of the given length, or None within the search horizon."""
        if duration_minutes <= 0:
            raise ValidationError("must be positive", field="duration")
        duration = timedelta(minutes=duration_minutes)
        if duration > timedelta(hours=self.config.max_booking_duration_hours):
            raise ValidationError(
                f"may not exceed {self.config.max_booking_duration_hours} hours", field="duration"
            )

        room = await self._get_room(db, room_id)
        if not room.is_active:
            return None

        start = utcnow()
        if not_before is not None:
            start = max(start, ensure_utc(not_before))
        search = Interval(start, start + timedelta(days=self.config.suggestion_horizon_days))

        schedule = await self._snapshot(db, room_id)
        return first_fit(
            schedule,
            search,
            duration,
            timedelta(minutes=self.config.suggestion_granularity_minutes),
        )

    # ==================== INTERNALS ====================

    def _validate_interval(self, start_time: datetime | None, end_time: datetime | None) -> Interval:
        interval = make_interval(start_time, end_time)
        if interval.duration > timedelta(hours=self.config.max_booking_duration_hours):
            raise ValidationError(
                f"Booking may last at most {self.config.max_booking_duration_hours} hours",
                field="endTime",
            )
        earliest = utcnow() - timedelta(minutes=self.config.booking_past_grace_minutes)
        if interval.start < earliest:
            raise ValidationError("Cannot book in the past", field="startTime")
        return interval

    @staticmethod
    def _validate_title(title: str | None) -> str:
        title = (title or "").strip()
        if not title:
            raise ValidationError("is required", field="title")
        if len(title) > 200:
            raise ValidationError("must be at most 200 characters", field="title")
        return title

    def _assert_free(
        self,
        schedule: RoomSchedule,
        interval: Interval,
        exclude_booking_id: uuid.UUID | None = None,
    ) -> None:
        conflicts = schedule.find_conflicts(interval, exclude_booking_id)
        if conflicts:
            ids = [c.booking_id for c in conflicts]
            logger.warning(
                f"Booking conflict on room {schedule.room_id} for "
                f"[{interval.start.isoformat()}, {interval.end.isoformat()}): {ids}"
            )
            raise ConflictError(ids)

    async def _get_room(self, db: AsyncSession, room_id: uuid.UUID) -> RoomInfo:
        room = await self.rooms.get(db, room_id)
        if room is None:
            raise NotFoundError("Room", str(room_id))
        return room

    async def _get_booking(
        self, db: AsyncSession, booking_id: uuid.UUID, for_update: bool = False
    ) -> Booking:
        query = select(Booking).where(Booking.id == booking_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        booking = result.scalar_one_or_none()
        if not booking:
            raise NotFoundError("Booking", str(booking_id))
        return booking

    async def _active_entries(self, db: AsyncSession, room_id: uuid.UUID) -> list[IndexEntry]:
        result = await db.execute(
            select(Booking.id, Booking.start_time, Booking.end_time).where(
                Booking.room_id == room_id,
                Booking.status.in_(_ACTIVE_VALUES),
            )
        )
        return [IndexEntry(row.id, Interval(row.start_time, row.end_time)) for row in result]

    async def _snapshot(self, db: AsyncSession, room_id: uuid.UUID) -> RoomSchedule:
        """Cached schedule for reads, re-derived from storage when missing or expired."""
        schedule = self.index.get(room_id)
        if schedule is not None:
            return schedule
        generation = self.index.generation(room_id)
        entries = await self._active_entries(db, room_id)
        return self.index.rebuild(room_id, entries, expected_generation=generation)

    @asynccontextmanager
    async def _critical_section(
        self, db: AsyncSession, room_id: uuid.UUID
    ) -> AsyncIterator[CriticalSection]:
        """Serialize check-and-commit for one room and yield its fresh schedule.

        Domain rejections are raised before anything is written, so they just
        end the transaction. Any other failure rolls back and drops the room's
        cached schedule so the next reader re-derives it.
        """
        async with self.locks.hold(room_id) as deadline:
            try:
                # Row lock serializes writers across processes on PostgreSQL.
                await db.execute(select(Room.id).where(Room.id == room_id).with_for_update())
                entries = await self._active_entries(db, room_id)
                yield CriticalSection(room_id, self.index.rebuild(room_id, entries), deadline)
            except AppException:
                # Releases the row lock without expiring the caller's objects.
                await db.commit()
                raise
            except BaseException:
                await db.rollback()
                self.index.invalidate(room_id)
                raise

    async def _commit(
        self,
        db: AsyncSession,
        section: CriticalSection,
        interval: Interval | None = None,
        exclude_booking_id: uuid.UUID | None = None,
    ) -> None:
        """Commit, translating a storage-level overlap rejection into ConflictError.

        The section's deadline no longer applies: once the write is in flight
        the caller gets the commit's real outcome, not a timeout.
        """
        room_id = section.room_id
        section.deadline.reschedule(None)
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            if interval is None:
                raise
            entries = await self._active_entries(db, room_id)
            schedule = self.index.rebuild(room_id, entries)
            conflicts = schedule.find_conflicts(interval, exclude_booking_id)
            if not conflicts:
                logger.error(f"Integrity error committing booking on room {room_id}: {e}")
                raise
            logger.warning(f"Storage rejected overlapping booking on room {room_id}")
            raise ConflictError([c.booking_id for c in conflicts]) from e


booking_service = BookingService()
