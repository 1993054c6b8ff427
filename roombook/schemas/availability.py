"""Availability and room search schemas."""

from datetime import datetime
from uuid import UUID

from roombook.schemas.base import CamelModel


class TimeWindowResponse(CamelModel):
    start: datetime
    end: datetime
    booking_ids: list[UUID] = []


class AvailabilityResponse(CamelModel):
    """Free/busy breakdown of one room over a range."""

    room_id: UUID
    start_date: datetime
    end_date: datetime
    busy: list[TimeWindowResponse]
    free: list[TimeWindowResponse]


class AvailabilityCheckResponse(CamelModel):
    room_id: UUID
    start_time: datetime
    end_time: datetime
    available: bool


class AvailableRoomResponse(CamelModel):
    id: UUID
    name: str
    location_id: UUID
    capacity: int
    amenities: list[str]


class SlotSuggestionResponse(CamelModel):
    """Earliest bookable slot; both times are null when nothing fits the horizon."""

    room_id: UUID
    duration_minutes: int
    start_time: datetime | None = None
    end_time: datetime | None = None
