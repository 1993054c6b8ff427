"""Booking endpoints."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from roombook.api.deps import Bookings, CurrentPrincipal, DbSession, limit_booking_writes
from roombook.domain.booking_state import BookingStatus
from roombook.schemas.booking import (
    BookingCreate,
    BookingListResponse,
    BookingResponse,
    BookingUpdate,
)

router = APIRouter()

RateLimited = Annotated[None, Depends(limit_booking_writes)]


@router.get("", response_model=BookingListResponse)
async def list_bookings(
    db: DbSession,
    principal: CurrentPrincipal,
    service: Bookings,
    room_id: Annotated[UUID | None, Query(alias="roomId")] = None,
    location_id: Annotated[UUID | None, Query(alias="locationId")] = None,
    start_date: Annotated[datetime | None, Query(alias="startDate")] = None,
    end_date: Annotated[datetime | None, Query(alias="endDate")] = None,
    booking_status: Annotated[BookingStatus | None, Query(alias="status")] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200, alias="pageSize"),
) -> BookingListResponse:
    """List bookings visible to the caller (own, managed locations, or all for admins)."""
    bookings, total = await service.list_bookings(
        db,
        principal,
        room_id=room_id,
        location_id=location_id,
        range_start=start_date,
        range_end=end_date,
        status=booking_status,
        page=page,
        page_size=page_size,
    )
    return BookingListResponse(
        bookings=[BookingResponse.model_validate(b) for b in bookings],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    db: DbSession,
    principal: CurrentPrincipal,
    service: Bookings,
):
    booking = await service.get(db, principal, booking_id)
    return BookingResponse.model_validate(booking)


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    request: BookingCreate,
    db: DbSession,
    principal: CurrentPrincipal,
    service: Bookings,
    _: RateLimited,
):
    """Create a booking; 409 with the conflicting ids if the slot is taken."""
    booking = await service.create(
        db,
        principal,
        room_id=request.room_id,
        start_time=request.start_time,
        end_time=request.end_time,
        title=request.title,
        description=request.description,
        owner_id=request.user_id,
        idempotency_key=request.idempotency_key,
    )
    return BookingResponse.model_validate(booking)


@router.patch("/{booking_id}", response_model=BookingResponse)
async def update_booking(
    booking_id: UUID,
    request: BookingUpdate,
    db: DbSession,
    principal: CurrentPrincipal,
    service: Bookings,
    _: RateLimited,
):
    """Reschedule, edit and/or change the status of a booking in one step.

    A single bound may be sent; the other keeps its current value. Either all
    requested changes are applied or none are.
    """
    booking = await service.update(
        db,
        principal,
        booking_id,
        start_time=request.start_time,
        end_time=request.end_time,
        title=request.title,
        description=request.description,
        status=request.status,
    )
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: UUID,
    db: DbSession,
    principal: CurrentPrincipal,
    service: Bookings,
    _: RateLimited,
):
    """Approve a pending booking (room managers and admins)."""
    booking = await service.confirm(db, principal, booking_id)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    db: DbSession,
    principal: CurrentPrincipal,
    service: Bookings,
    _: RateLimited,
):
    booking = await service.cancel(db, principal, booking_id)
    return BookingResponse.model_validate(booking)


@router.delete("/{booking_id}", response_model=BookingResponse)
async def delete_booking(
    booking_id: UUID,
    db: DbSession,
    principal: CurrentPrincipal,
    service: Bookings,
    _: RateLimited,
):
    """Bookings are never hard-deleted; this cancels and keeps the history."""
    booking = await service.cancel(db, principal, booking_id)
    return BookingResponse.model_validate(booking)
