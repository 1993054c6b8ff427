"""Room feedback endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, status

from roombook.api.deps import CurrentPrincipal, DbSession, Feedback
from roombook.domain.feedback_state import FeedbackStatus
from roombook.schemas.feedback import FeedbackCreate, FeedbackResponse, FeedbackStatusUpdate

router = APIRouter()


@router.get("", response_model=list[FeedbackResponse])
async def list_feedback(
    db: DbSession,
    principal: CurrentPrincipal,
    service: Feedback,
    feedback_status: Annotated[FeedbackStatus | None, Query(alias="status")] = None,
):
    items = await service.list(db, principal, status=feedback_status)
    return [FeedbackResponse.model_validate(f) for f in items]


@router.get("/room/{room_id}", response_model=list[FeedbackResponse])
async def list_room_feedback(
    room_id: UUID,
    db: DbSession,
    principal: CurrentPrincipal,
    service: Feedback,
    feedback_status: Annotated[FeedbackStatus | None, Query(alias="status")] = None,
):
    items = await service.list(db, principal, room_id=room_id, status=feedback_status)
    return [FeedbackResponse.model_validate(f) for f in items]


@router.post("", response_model=FeedbackResponse, status_code=status.HTTP_201_CREATED)
async def create_feedback(
    request: FeedbackCreate,
    db: DbSession,
    principal: CurrentPrincipal,
    service: Feedback,
):
    """Report an issue with a room."""
    feedback = await service.create(db, principal, request.room_id, request.message)
    return FeedbackResponse.model_validate(feedback)


@router.patch("/{feedback_id}/status", response_model=FeedbackResponse)
async def update_feedback_status(
    feedback_id: UUID,
    request: FeedbackStatusUpdate,
    db: DbSession,
    principal: CurrentPrincipal,
    service: Feedback,
):
    feedback = await service.update_status(
        db, principal, feedback_id, request.status, comment=request.comment
    )
    return FeedbackResponse.model_validate(feedback)
