"""Room availability and search endpoints."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query

from roombook.api.deps import Bookings, CurrentPrincipal, DbSession
from roombook.schemas.availability import (
    AvailabilityCheckResponse,
    AvailabilityResponse,
    AvailableRoomResponse,
    SlotSuggestionResponse,
    TimeWindowResponse,
)

router = APIRouter()


@router.get("/available", response_model=list[AvailableRoomResponse])
async def find_available_rooms(
    db: DbSession,
    principal: CurrentPrincipal,
    service: Bookings,
    start_time: Annotated[datetime, Query(alias="startTime")],
    end_time: Annotated[datetime, Query(alias="endTime")],
    location_id: Annotated[UUID | None, Query(alias="locationId")] = None,
    min_capacity: Annotated[int | None, Query(alias="minCapacity", ge=1)] = None,
    amenities: Annotated[list[str] | None, Query()] = None,
) -> list[AvailableRoomResponse]:
    """Active rooms matching the filters with no booking in the interval."""
    rooms = await service.find_available_rooms(
        db,
        start_time,
        end_time,
        location_id=location_id,
        min_capacity=min_capacity,
        amenities=amenities,
    )
    return [
        AvailableRoomResponse(
            id=r.id,
            name=r.name,
            location_id=r.location_id,
            capacity=r.capacity,
            amenities=sorted(r.amenities),
        )
        for r in rooms
    ]


@router.get("/{room_id}/availability", response_model=AvailabilityResponse)
async def get_room_availability(
    room_id: UUID,
    db: DbSession,
    principal: CurrentPrincipal,
    service: Bookings,
    start_date: Annotated[datetime, Query(alias="startDate")],
    end_date: Annotated[datetime, Query(alias="endDate")],
    limit: Annotated[int | None, Query(ge=1, le=500)] = None,
) -> AvailabilityResponse:
    """Busy and free windows for a room, at most ``limit`` of each."""
    view = await service.list_availability(db, room_id, start_date, end_date, limit=limit)
    return AvailabilityResponse(
        room_id=room_id,
        start_date=view.window.start,
        end_date=view.window.end,
        busy=[
            TimeWindowResponse(start=w.start, end=w.end, booking_ids=list(w.booking_ids))
            for w in view.busy
        ],
        free=[TimeWindowResponse(start=w.start, end=w.end) for w in view.free],
    )


@router.get("/{room_id}/availability/check", response_model=AvailabilityCheckResponse)
async def check_room_availability(
    room_id: UUID,
    db: DbSession,
    principal: CurrentPrincipal,
    service: Bookings,
    start_time: Annotated[datetime, Query(alias="startTime")],
    end_time: Annotated[datetime, Query(alias="endTime")],
) -> AvailabilityCheckResponse:
    available = await service.check_availability(db, room_id, start_time, end_time)
    return AvailabilityCheckResponse(
        room_id=room_id, start_time=start_time, end_time=end_time, available=available
    )


@router.get("/{room_id}/suggest", response_model=SlotSuggestionResponse)
async def suggest_booking_time(
    room_id: UUID,
    db: DbSession,
    principal: CurrentPrincipal,
    service: Bookings,
    duration: Annotated[int, Query(ge=1, description="Minutes")],
    not_before: Annotated[datetime | None, Query(alias="notBefore")] = None,
) -> SlotSuggestionResponse:
    """Earliest free slot of ``duration`` minutes on a quarter-hour boundary."""
    slot = await service.suggest_slot(db, room_id, duration, not_before=not_before)
    return SlotSuggestionResponse(
        room_id=room_id,
        duration_minutes=duration,
        start_time=slot.start if slot else None,
        end_time=slot.end if slot else None,
    )
