"""API dependencies for authentication and common operations."""

from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.core.exceptions import AuthenticationError
from roombook.core.middleware import booking_limiter
from roombook.core.permissions import Principal
from roombook.core.security import user_id_from_token
from roombook.database import get_db
from roombook.services.booking_service import BookingService, booking_service
from roombook.services.directory import user_directory
from roombook.services.feedback_service import FeedbackService, feedback_service

# Security scheme
security = HTTPBearer(auto_error=False)

DbSession = Annotated[AsyncSession, Depends(get_db)]


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: DbSession,
) -> Principal:
    """Resolve the bearer token to the acting user's role and grants."""
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    user_id = user_id_from_token(credentials.credentials)
    principal = await user_directory.get_principal(db, user_id)
    if principal is None:
        raise AuthenticationError("User not found or deactivated")
    return principal


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]


async def limit_booking_writes(principal: CurrentPrincipal) -> None:
    """Per-user sliding-window limit on booking mutations."""
    await booking_limiter.hit(str(principal.user_id))


def get_booking_service() -> BookingService:
    return booking_service


def get_feedback_service() -> FeedbackService:
    return feedback_service


Bookings = Annotated[BookingService, Depends(get_booking_service)]
Feedback = Annotated[FeedbackService, Depends(get_feedback_service)]
