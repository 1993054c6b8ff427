"""Core utilities: errors, authorization, locking and security."""

from roombook.core.exceptions import (
    AppException,
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    InvalidTransition,
    NotFoundError,
    RateLimitExceeded,
    RoomBusyError,
    ValidationError,
)

__all__ = [
    "AppException",
    "AuthenticationError",
    "ConflictError",
    "ForbiddenError",
    "InvalidTransition",
    "NotFoundError",
    "RateLimitExceeded",
    "RoomBusyError",
    "ValidationError",
]
