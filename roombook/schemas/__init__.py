"""Pydantic schemas for API validation."""

from roombook.schemas.availability import (
    AvailabilityCheckResponse,
    AvailabilityResponse,
    AvailableRoomResponse,
    SlotSuggestionResponse,
    TimeWindowResponse,
)
from roombook.schemas.booking import (
    BookingCreate,
    BookingListResponse,
    BookingResponse,
    BookingUpdate,
)
from roombook.schemas.feedback import (
    FeedbackCreate,
    FeedbackResponse,
    FeedbackStatusUpdate,
)

__all__ = [
    "AvailabilityCheckResponse",
    "AvailabilityResponse",
    "AvailableRoomResponse",
    "BookingCreate",
    "BookingListResponse",
    "BookingResponse",
    "BookingUpdate",
    "FeedbackCreate",
    "FeedbackResponse",
    "FeedbackStatusUpdate",
    "SlotSuggestionResponse",
    "TimeWindowResponse",
]
