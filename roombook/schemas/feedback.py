"""Room feedback schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from roombook.domain.feedback_state import FeedbackStatus
from roombook.schemas.base import CamelModel


class FeedbackCreate(CamelModel):
    room_id: UUID
    message: str = Field(..., min_length=1, max_length=2000)


class FeedbackStatusUpdate(CamelModel):
    status: FeedbackStatus
    comment: str | None = Field(None, max_length=2000)


class FeedbackResponse(CamelModel):
    """Schema for feedback response."""

    id: UUID
    room_id: UUID
    user_id: UUID
    message: str
    status: FeedbackStatus
    resolved_by: UUID | None = None
    resolution_comment: str | None = None
    created_at: datetime
    updated_at: datetime
