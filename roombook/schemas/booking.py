"""Booking-related Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from roombook.domain.booking_state import BookingStatus
from roombook.schemas.base import CamelModel


class BookingCreate(CamelModel):
    """Schema for creating a booking.

    Interval checks (order, duration, past start) are left to the service so
    every entry point reports them the same way.
    """

    room_id: UUID
    start_time: datetime | None = None
    end_time: datetime | None = None
    title: str = Field(..., max_length=200)
    description: str | None = Field(None, max_length=2000)
    # Book on someone else's behalf (room managers only)
    user_id: UUID | None = None
    idempotency_key: str | None = Field(None, max_length=100)


class BookingUpdate(CamelModel):
    """Schema for updating a booking.

    Any subset may be sent. New times reschedule; ``status`` goes through the
    state machine.
    """

    start_time: datetime | None = None
    end_time: datetime | None = None
    title: str | None = Field(None, max_length=200)
    description: str | None = Field(None, max_length=2000)
    status: BookingStatus | None = None


class BookingResponse(CamelModel):
    """Schema for booking response."""

    id: UUID
    room_id: UUID
    user_id: UUID
    start_time: datetime
    end_time: datetime
    title: str
    description: str | None = None
    status: BookingStatus

    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancelled_by: UUID | None = None

    created_at: datetime
    updated_at: datetime


class BookingListResponse(CamelModel):
    """Schema for paginated booking list."""

    bookings: list[BookingResponse]
    total: int
    page: int
    page_size: int
