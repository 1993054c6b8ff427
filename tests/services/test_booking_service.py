import asyncio
import uuid
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select

from roombook.config import settings
from roombook.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransition,
    NotFoundError,
    RoomBusyError,
    ValidationError,
)
from roombook.core.locks import RoomLockRegistry
from roombook.domain.booking_state import BookingStatus
from roombook.domain.interval import Interval, overlaps
from roombook.models import Booking
from roombook.services.booking_service import BookingService


def at(day: datetime, hour: float) -> datetime:
    return day + timedelta(hours=hour)


async def active_bookings(session_factory, room_id) -> list[Booking]:
    async with session_factory() as session:
        result = await session.execute(
            select(Booking)
            .where(Booking.room_id == room_id, Booking.status != BookingStatus.CANCELLED.value)
            .order_by(Booking.start_time)
        )
        return list(result.scalars().all())


async def book(service, db, principal, room_id, day, start, end, **kwargs):
    return await service.create(
        db, principal, room_id, at(day, start), at(day, end), kwargs.pop("title", "Standup"), **kwargs
    )


# ==================== CREATE ====================


async def test_create_defaults_to_confirmed(service, db, world, tomorrow):
    booking = await book(service, db, world.alice, world.room, tomorrow, 10, 11)

    assert booking.status == BookingStatus.CONFIRMED.value
    assert booking.user_id == world.alice.user_id
    assert booking.confirmed_at is not None
    assert booking.start_time == at(tomorrow, 10)
    assert booking.start_time.tzinfo is not None


async def test_back_to_back_bookings_allowed(service, db, world, tomorrow, session_factory):
    await book(service, db, world.alice, world.room, tomorrow, 10, 11)
    await book(service, db, world.bob, world.room, tomorrow, 11, 12)

    assert len(await active_bookings(session_factory, world.room)) == 2


async def test_overlap_rejected_with_conflicting_ids(service, db, world, tomorrow, session_factory):
    first = await book(service, db, world.alice, world.room, tomorrow, 10, 11)

    with pytest.raises(ConflictError) as exc:
        await book(service, db, world.bob, world.room, tomorrow, 10.5, 11.5)

    assert exc.value.conflicting_booking_ids == [str(first.id)]
    assert exc.value.status_code == 409
    assert [b.id for b in await active_bookings(session_factory, world.room)] == [first.id]


async def test_same_interval_on_other_room_is_fine(service, db, world, tomorrow):
    await book(service, db, world.alice, world.room, tomorrow, 10, 11)
    await book(service, db, world.alice, world.large_room, tomorrow, 10, 11)


async def test_concurrent_creates_exactly_one_wins(service, world, tomorrow, session_factory):
    async def attempt(principal):
        async with session_factory() as session:
            return await book(service, session, principal, world.room, tomorrow, 9, 10)

    results = await asyncio.gather(
        attempt(world.alice), attempt(world.bob), return_exceptions=True
    )

    created = [r for r in results if isinstance(r, Booking)]
    conflicts = [r for r in results if isinstance(r, ConflictError)]
    assert len(created) == 1
    assert len(conflicts) == 1
    assert conflicts[0].conflicting_booking_ids == [str(created[0].id)]

    stored = await active_bookings(session_factory, world.room)
    assert [b.id for b in stored] == [created[0].id]


async def test_many_concurrent_creates_never_overlap(service, world, tomorrow, session_factory):
    # Staggered half-hour offsets: lots of pairwise collisions.
    async def attempt(i):
        async with session_factory() as session:
            start = 8 + i * 0.5
            return await book(service, session, world.alice, world.room, tomorrow, start, start + 1)

    results = await asyncio.gather(*(attempt(i) for i in range(8)), return_exceptions=True)
    assert all(isinstance(r, (Booking, ConflictError)) for r in results)

    stored = await active_bookings(session_factory, world.room)
    assert len(stored) == sum(isinstance(r, Booking) for r in results)
    for i, a in enumerate(stored):
        for b in stored[i + 1 :]:
            assert not overlaps(a.interval, b.interval)


@pytest.mark.parametrize(
    "start, end, field",
    [
        (None, 11, "startTime"),
        (10, None, "endTime"),
        (11, 10, "endTime"),
        (10, 10, "endTime"),
        (0, 25, "endTime"),
    ],
)
async def test_create_validation(service, db, world, tomorrow, start, end, field):
    with pytest.raises(ValidationError) as exc:
        await service.create(
            db,
            world.alice,
            world.room,
            at(tomorrow, start) if start is not None else None,
            at(tomorrow, end) if end is not None else None,
            "Standup",
        )
    assert exc.value.field == field


async def test_create_in_the_past_rejected(service, db, world):
    start = datetime.now(UTC) - timedelta(hours=2)
    with pytest.raises(ValidationError) as exc:
        await service.create(db, world.alice, world.room, start, start + timedelta(hours=1), "Late")
    assert exc.value.field == "startTime"


async def test_create_within_grace_period_allowed(service, db, world):
    start = datetime.now(UTC) - timedelta(minutes=1)
    booking = await service.create(db, world.alice, world.room, start, start + timedelta(hours=1), "Now")
    assert booking.status == BookingStatus.CONFIRMED.value


async def test_blank_title_rejected(service, db, world, tomorrow):
    with pytest.raises(ValidationError) as exc:
        await book(service, db, world.alice, world.room, tomorrow, 10, 11, title="   ")
    assert exc.value.field == "title"


async def test_unknown_room(service, db, world, tomorrow):
    with pytest.raises(NotFoundError):
        await book(service, db, world.alice, uuid.uuid4(), tomorrow, 10, 11)


async def test_inactive_room_rejected(service, db, world, tomorrow):
    with pytest.raises(ValidationError) as exc:
        await book(service, db, world.alice, world.closed_room, tomorrow, 10, 11)
    assert exc.value.field == "roomId"


async def test_manager_books_on_behalf_within_grant(service, db, world, tomorrow):
    booking = await book(
        service, db, world.manager, world.room, tomorrow, 10, 11, owner_id=world.alice.user_id
    )
    assert booking.user_id == world.alice.user_id


async def test_booking_on_behalf_outside_grant_forbidden(service, db, world, tomorrow):
    with pytest.raises(ForbiddenError):
        await book(
            service, db, world.manager, world.remote_room, tomorrow, 10, 11, owner_id=world.alice.user_id
        )
    with pytest.raises(ForbiddenError):
        await book(service, db, world.bob, world.room, tomorrow, 10, 11, owner_id=world.alice.user_id)


async def test_idempotency_key_is_stored(service, db, world, tomorrow):
    booking = await book(service, db, world.alice, world.room, tomorrow, 10, 11, idempotency_key="abc-123")
    assert booking.idempotency_key == "abc-123"


# ==================== RESCHEDULE ====================


async def test_reschedule_ignores_own_interval(service, db, world, tomorrow):
    booking = await book(service, db, world.alice, world.room, tomorrow, 10, 11)

    moved = await service.reschedule(db, world.alice, booking.id, at(tomorrow, 10.5), at(tomorrow, 11.5))

    assert moved.start_time == at(tomorrow, 10.5)
    assert moved.end_time == at(tomorrow, 11.5)


async def test_reschedule_into_other_booking_conflicts(service, db, world, tomorrow):
    booking = await book(service, db, world.alice, world.room, tomorrow, 10, 11)
    other = await book(service, db, world.bob, world.room, tomorrow, 12, 13)

    with pytest.raises(ConflictError) as exc:
        await service.reschedule(db, world.alice, booking.id, at(tomorrow, 11.5), at(tomorrow, 12.5))
    assert exc.value.conflicting_booking_ids == [str(other.id)]

    refreshed = await service.get(db, world.alice, booking.id)
    assert refreshed.start_time == at(tomorrow, 10)


async def test_reschedule_frees_old_slot(service, db, world, tomorrow):
    booking = await book(service, db, world.alice, world.room, tomorrow, 10, 11)
    await service.reschedule(db, world.alice, booking.id, at(tomorrow, 14), at(tomorrow, 15))

    await book(service, db, world.bob, world.room, tomorrow, 10, 11)


async def test_reschedule_by_stranger_forbidden(service, db, world, tomorrow):
    booking = await book(service, db, world.alice, world.room, tomorrow, 10, 11)
    with pytest.raises(ForbiddenError):
        await service.reschedule(db, world.bob, booking.id, at(tomorrow, 12), at(tomorrow, 13))


async def test_reschedule_cancelled_booking_rejected(service, db, world, tomorrow):
    booking = await book(service, db, world.alice, world.room, tomorrow, 10, 11)
    await service.cancel(db, world.alice, booking.id)
    with pytest.raises(ValidationError):
        await service.reschedule(db, world.alice, booking.id, at(tomorrow, 12), at(tomorrow, 13))


# ==================== CANCEL / STATUS ====================


async def test_cancel_frees_slot(service, db, world, tomorrow):
    booking = await book(service, db, world.alice, world.room, tomorrow, 10, 11)
    await service.reschedule(db, world.alice, booking.id, at(tomorrow, 10.5), at(tomorrow, 11.5))

    cancelled = await service.cancel(db, world.alice, booking.id)
    assert cancelled.status == BookingStatus.CANCELLED.value
    assert cancelled.cancelled_by == world.alice.user_id
    assert cancelled.cancelled_at is not None

    await book(service, db, world.bob, world.room, tomorrow, 10.5, 11.5)


async def test_cancel_twice_is_invalid_transition(service, db, world, tomorrow):
    booking = await book(service, db, world.alice, world.room, tomorrow, 10, 11)
    await service.cancel(db, world.alice, booking.id)

    with pytest.raises(InvalidTransition) as exc:
        await service.cancel(db, world.alice, booking.id)
    assert exc.value.from_status == "CANCELLED"


async def test_manager_cancel_is_scoped_to_grants(service, db, world, tomorrow):
    in_scope = await book(service, db, world.alice, world.room, tomorrow, 10, 11)
    out_of_scope = await book(service, db, world.alice, world.remote_room, tomorrow, 10, 11)

    with pytest.raises(ForbiddenError):
        await service.cancel(db, world.manager, out_of_scope.id)

    cancelled = await service.cancel(db, world.manager, in_scope.id)
    assert cancelled.status == BookingStatus.CANCELLED.value


async def test_admin_can_cancel_anything(service, db, world, tomorrow):
    booking = await book(service, db, world.alice, world.remote_room, tomorrow, 10, 11)
    await service.cancel(db, world.admin, booking.id)


async def test_confirmed_to_pending_is_invalid(service, db, world, tomorrow):
    booking = await book(service, db, world.alice, world.room, tomorrow, 10, 11)
    with pytest.raises(InvalidTransition) as exc:
        await service.change_status(db, world.alice, booking.id, BookingStatus.PENDING)
    assert (exc.value.from_status, exc.value.to_status) == ("CONFIRMED", "PENDING")


async def test_change_status_to_cancelled_cancels(service, db, world, tomorrow):
    booking = await book(service, db, world.alice, world.room, tomorrow, 10, 11)
    updated = await service.change_status(db, world.alice, booking.id, "CANCELLED")
    assert updated.status == BookingStatus.CANCELLED.value


async def test_missing_booking(service, db, world):
    with pytest.raises(NotFoundError) as exc:
        await service.cancel(db, world.admin, uuid.uuid4())
    assert exc.value.to_dict()["resourceType"] == "Booking"


# ==================== APPROVAL WORKFLOW ====================


@pytest.fixture
def approval_service():
    return BookingService(config=settings.model_copy(update={"booking_requires_approval": True}))


async def test_pending_booking_blocks_and_can_be_confirmed(approval_service, db, world, tomorrow):
    booking = await book(approval_service, db, world.alice, world.room, tomorrow, 10, 11)
    assert booking.status == BookingStatus.PENDING.value

    with pytest.raises(ConflictError):
        await book(approval_service, db, world.bob, world.room, tomorrow, 10, 11)

    with pytest.raises(ForbiddenError):
        await approval_service.confirm(db, world.alice, booking.id)

    confirmed = await approval_service.confirm(db, world.manager, booking.id)
    assert confirmed.status == BookingStatus.CONFIRMED.value
    assert confirmed.confirmed_at is not None

    with pytest.raises(InvalidTransition):
        await approval_service.confirm(db, world.manager, booking.id)


# ==================== DETAILS / READS ====================


async def test_update_details(service, db, world, tomorrow):
    booking = await book(service, db, world.alice, world.room, tomorrow, 10, 11)
    updated = await service.update_details(db, world.alice, booking.id, title="Retro", description="Sprint 12")
    assert (updated.title, updated.description) == ("Retro", "Sprint 12")

    with pytest.raises(ForbiddenError):
        await service.update_details(db, world.bob, booking.id, title="Mine now")


async def test_update_applies_everything_in_one_commit(service, db, world, tomorrow, session_factory):
    booking = await book(service, db, world.alice, world.room, tomorrow, 10, 11)

    updated = await service.update(
        db, world.alice, booking.id, end_time=at(tomorrow, 12), title="Longer", description="Two hours"
    )
    assert (updated.start_time, updated.end_time) == (at(tomorrow, 10), at(tomorrow, 12))
    assert (updated.title, updated.description) == ("Longer", "Two hours")
    assert [(b.start_time, b.end_time) for b in await active_bookings(session_factory, world.room)] == [
        (at(tomorrow, 10), at(tomorrow, 12))
    ]


async def test_update_with_invalid_status_writes_nothing(service, db, world, tomorrow, session_factory):
    booking = await book(service, db, world.alice, world.room, tomorrow, 10, 11)

    with pytest.raises(InvalidTransition):
        await service.update(
            db,
            world.alice,
            booking.id,
            start_time=at(tomorrow, 13),
            end_time=at(tomorrow, 14),
            title="Moved",
            status=BookingStatus.PENDING,
        )

    [stored] = await active_bookings(session_factory, world.room)
    assert (stored.start_time, stored.end_time, stored.title) == (at(tomorrow, 10), at(tomorrow, 11), "Standup")
    assert service.index.get(world.room).find_conflicts(booking.interval)
    assert service.index.get(world.room).is_free(Interval(at(tomorrow, 13), at(tomorrow, 14)))


async def test_update_conflict_keeps_details(service, db, world, tomorrow, session_factory):
    first = await book(service, db, world.alice, world.room, tomorrow, 10, 11)
    await book(service, db, world.bob, world.room, tomorrow, 12, 13)

    with pytest.raises(ConflictError):
        await service.update(
            db, world.alice, first.id, start_time=at(tomorrow, 12), end_time=at(tomorrow, 13), title="Clash"
        )

    stored = await active_bookings(session_factory, world.room)
    assert [b.title for b in stored] == ["Standup", "Standup"]


async def test_update_confirm_needs_room_manager(approval_service, db, world, tomorrow, session_factory):
    booking = await book(approval_service, db, world.alice, world.room, tomorrow, 10, 11)

    with pytest.raises(ForbiddenError):
        await approval_service.update(db, world.alice, booking.id, title="Approved?", status="CONFIRMED")
    [stored] = await active_bookings(session_factory, world.room)
    assert (stored.title, stored.status) == ("Standup", BookingStatus.PENDING.value)

    confirmed = await approval_service.update(
        db, world.manager, booking.id, title="Approved", status=BookingStatus.CONFIRMED
    )
    assert (confirmed.title, confirmed.status) == ("Approved", BookingStatus.CONFIRMED.value)
    assert confirmed.confirmed_at is not None


async def test_update_with_status_cancelled_frees_slot(service, db, world, tomorrow):
    booking = await book(service, db, world.alice, world.room, tomorrow, 10, 11)

    cancelled = await service.update(db, world.alice, booking.id, description="No longer needed", status="CANCELLED")
    assert cancelled.status == BookingStatus.CANCELLED.value
    assert cancelled.cancelled_by == world.alice.user_id
    assert await service.check_availability(db, world.room, at(tomorrow, 10), at(tomorrow, 11))

    with pytest.raises(ValidationError) as exc:
        await service.update(db, world.alice, booking.id, title="Revived")
    assert exc.value.field == "status"


async def test_get_is_scoped(service, db, world, tomorrow):
    booking = await book(service, db, world.alice, world.remote_room, tomorrow, 10, 11)
    assert (await service.get(db, world.admin, booking.id)).id == booking.id
    with pytest.raises(ForbiddenError):
        await service.get(db, world.bob, booking.id)
    with pytest.raises(ForbiddenError):
        await service.get(db, world.manager, booking.id)


async def test_list_bookings_role_scoping(service, db, world, tomorrow):
    mine = await book(service, db, world.alice, world.room, tomorrow, 10, 11)
    remote = await book(service, db, world.alice, world.remote_room, tomorrow, 10, 11)
    bobs = await book(service, db, world.bob, world.large_room, tomorrow, 10, 11)

    alice_view, total = await service.list_bookings(db, world.alice)
    assert {b.id for b in alice_view} == {mine.id, remote.id}
    assert total == 2

    manager_view, _ = await service.list_bookings(db, world.manager)
    assert {b.id for b in manager_view} == {mine.id, bobs.id}

    admin_view, total = await service.list_bookings(db, world.admin)
    assert total == 3

    by_location, _ = await service.list_bookings(db, world.admin, location_id=world.annex)
    assert [b.id for b in by_location] == [remote.id]


async def test_list_bookings_filters(service, db, world, tomorrow):
    morning = await book(service, db, world.alice, world.room, tomorrow, 9, 10)
    afternoon = await book(service, db, world.alice, world.room, tomorrow, 14, 15)
    await service.cancel(db, world.alice, afternoon.id)

    in_range, _ = await service.list_bookings(
        db, world.admin, range_start=at(tomorrow, 8), range_end=at(tomorrow, 12)
    )
    assert [b.id for b in in_range] == [morning.id]

    cancelled, _ = await service.list_bookings(db, world.admin, status=BookingStatus.CANCELLED)
    assert [b.id for b in cancelled] == [afternoon.id]

    page, total = await service.list_bookings(db, world.admin, page=2, page_size=1)
    assert total == 2
    assert [b.id for b in page] == [afternoon.id]


async def test_check_availability(service, db, world, tomorrow):
    await book(service, db, world.alice, world.room, tomorrow, 10, 11)
    assert not await service.check_availability(db, world.room, at(tomorrow, 10.5), at(tomorrow, 11.5))
    assert await service.check_availability(db, world.room, at(tomorrow, 11), at(tomorrow, 12))


async def test_list_availability_is_idempotent(service, db, world, tomorrow):
    first = await book(service, db, world.alice, world.room, tomorrow, 10, 11)
    await book(service, db, world.bob, world.room, tomorrow, 11, 12)

    a = await service.list_availability(db, world.room, at(tomorrow, 8), at(tomorrow, 18))
    b = await service.list_availability(db, world.room, at(tomorrow, 8), at(tomorrow, 18))

    assert a.busy.take() == b.busy.take()
    assert a.free.take() == b.free.take()

    [busy] = a.busy.take()
    assert (busy.start, busy.end) == (at(tomorrow, 10), at(tomorrow, 12))
    assert busy.booking_ids[0] == first.id
    assert [(w.start, w.end) for w in a.free.take()] == [
        (at(tomorrow, 8), at(tomorrow, 10)),
        (at(tomorrow, 12), at(tomorrow, 18)),
    ]


async def test_availability_snapshot_survives_later_writes(service, db, world, tomorrow):
    view = await service.list_availability(db, world.room, at(tomorrow, 8), at(tomorrow, 18))
    await book(service, db, world.alice, world.room, tomorrow, 10, 11)

    assert view.busy.take() == []
    fresh = await service.list_availability(db, world.room, at(tomorrow, 8), at(tomorrow, 18))
    assert len(fresh.busy.take()) == 1


async def test_list_availability_rejects_huge_range(service, db, world, tomorrow):
    with pytest.raises(ValidationError) as exc:
        await service.list_availability(db, world.room, tomorrow, tomorrow + timedelta(days=60))
    assert exc.value.field == "endDate"


async def test_find_available_rooms(service, db, world, tomorrow):
    await book(service, db, world.alice, world.room, tomorrow, 10, 11)

    rooms = await service.find_available_rooms(db, at(tomorrow, 10), at(tomorrow, 11))
    assert {r.id for r in rooms} == {world.large_room, world.remote_room}

    rooms = await service.find_available_rooms(
        db, at(tomorrow, 10), at(tomorrow, 11), location_id=world.hq, amenities=["projector"]
    )
    assert [r.id for r in rooms] == [world.large_room]

    rooms = await service.find_available_rooms(db, at(tomorrow, 11), at(tomorrow, 12), min_capacity=10)
    assert [r.id for r in rooms] == [world.large_room]


async def test_suggest_slot_skips_busy_time(service, db, world, tomorrow):
    await book(service, db, world.alice, world.room, tomorrow, 9, 10)
    await book(service, db, world.alice, world.room, tomorrow, 10.5, 12)

    slot = await service.suggest_slot(db, world.room, 60, not_before=at(tomorrow, 9))
    assert (slot.start, slot.end) == (at(tomorrow, 12), at(tomorrow, 13))

    short = await service.suggest_slot(db, world.room, 30, not_before=at(tomorrow, 9))
    assert short.start == at(tomorrow, 10)


async def test_suggest_slot_rounds_to_quarter_hour(service, db, world, tomorrow):
    slot = await service.suggest_slot(db, world.room, 30, not_before=at(tomorrow, 9) + timedelta(minutes=7))
    assert slot.start == at(tomorrow, 9.25)


async def test_suggest_slot_validates_duration(service, db, world):
    with pytest.raises(ValidationError):
        await service.suggest_slot(db, world.room, 0)


# ==================== FAILURE HANDLING ====================


async def test_room_busy_when_lock_cannot_be_taken(db, world, tomorrow, session_factory):
    locks = RoomLockRegistry(timeout=0.05)
    service = BookingService(locks=locks)

    # Another writer is stuck inside the room.
    lock = locks._lock_for(world.room)
    await lock.acquire()
    try:
        with pytest.raises(RoomBusyError) as exc:
            await book(service, db, world.alice, world.room, tomorrow, 10, 11)
    finally:
        lock.release()

    assert exc.value.status_code == 503
    assert await active_bookings(session_factory, world.room) == []


async def test_commit_failure_leaves_no_trace(service, db, world, tomorrow, session_factory, monkeypatch):
    await service.check_availability(db, world.room, at(tomorrow, 10), at(tomorrow, 11))
    assert service.index.get(world.room) is not None

    async def broken_commit():
        raise RuntimeError("connection lost")

    monkeypatch.setattr(db, "commit", broken_commit)
    with pytest.raises(RuntimeError):
        await book(service, db, world.alice, world.room, tomorrow, 10, 11)

    assert service.index.get(world.room) is None
    assert await active_bookings(session_factory, world.room) == []


async def test_slow_commit_acknowledgement_reports_success(
    db, world, tomorrow, session_factory, monkeypatch
):
    service = BookingService(locks=RoomLockRegistry(timeout=0.2))
    real_commit = db.commit

    async def slow_commit():
        await real_commit()
        await asyncio.sleep(0.5)

    monkeypatch.setattr(db, "commit", slow_commit)
    booking = await book(service, db, world.alice, world.room, tomorrow, 10, 11)

    stored = await active_bookings(session_factory, world.room)
    assert [b.id for b in stored] == [booking.id]
    assert not service.locks.is_locked(world.room)


async def test_slow_work_before_commit_still_times_out(db, world, tomorrow, session_factory, monkeypatch):
    service = BookingService(locks=RoomLockRegistry(timeout=0.2))
    real_active_entries = service._active_entries

    async def slow_active_entries(session, room_id):
        await asyncio.sleep(0.5)
        return await real_active_entries(session, room_id)

    monkeypatch.setattr(service, "_active_entries", slow_active_entries)
    with pytest.raises(RoomBusyError):
        await book(service, db, world.alice, world.room, tomorrow, 10, 11)

    assert await active_bookings(session_factory, world.room) == []


async def test_conflict_keeps_index_consistent(service, db, world, tomorrow, session_factory):
    await book(service, db, world.alice, world.room, tomorrow, 10, 11)
    with pytest.raises(ConflictError):
        await book(service, db, world.bob, world.room, tomorrow, 10, 11)

    schedule = service.index.get(world.room)
    stored = await active_bookings(session_factory, world.room)
    assert [e.booking_id for e in schedule] == [b.id for b in stored]



async def test_list_bookings_unknown_location(service, db, world):
    with pytest.raises(NotFoundError) as exc:
        await service.list_bookings(db, world.admin, location_id=uuid.uuid4())
    assert exc.value.resource_type == "Location"
