"""Custom application exceptions."""

from typing import Any

from fastapi import HTTPException, status


class AppException(HTTPException):
    """Base application exception."""

    error_type = "internal_error"

    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: str = "An unexpected error occurred",
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=detail, headers=headers)

    @property
    def extra(self) -> dict[str, Any]:
        """Machine-readable fields surfaced alongside the detail message."""
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.detail, "error": self.error_type, **self.extra}


class ValidationError(AppException):
    """Malformed input, rejected before any shared state is touched."""

    error_type = "validation_error"

    def __init__(self, reason: str = "Validation failed", field: str | None = None) -> None:
        self.field = field
        self.reason = reason
        detail = f"{field}: {reason}" if field else reason
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)

    @property
    def extra(self) -> dict[str, Any]:
        return {"field": self.field, "reason": self.reason}


class NotFoundError(AppException):
    """Resource not found exception."""

    error_type = "not_found"

    def __init__(self, resource_type: str = "Resource", identifier: str | None = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier
        detail = f"{resource_type} not found"
        if identifier:
            detail = f"{resource_type} with ID '{identifier}' not found"
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

    @property
    def extra(self) -> dict[str, Any]:
        return {"resourceType": self.resource_type, "id": self.identifier}


class AuthenticationError(AppException):
    """Authentication failed exception."""

    error_type = "authentication_error"

    def __init__(self, detail: str = "Authentication failed") -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenError(AppException):
    """Authorization denied exception."""

    error_type = "forbidden"

    def __init__(self, detail: str = "You don't have permission to access this resource") -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class ConflictError(AppException):
    """Requested interval collides with active bookings on the same room."""

    error_type = "conflict"

    def __init__(self, conflicting_booking_ids: list[Any]) -> None:
        self.conflicting_booking_ids = [str(b) for b in conflicting_booking_ids]
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail="Room is not available for the selected time slot",
        )

    @property
    def extra(self) -> dict[str, Any]:
        return {"conflictingBookingIds": self.conflicting_booking_ids}


class InvalidTransition(AppException):
    """Illegal status change requested by the caller."""

    error_type = "invalid_transition"

    def __init__(self, from_status: str, to_status: str) -> None:
        self.from_status = getattr(from_status, "value", str(from_status))
        self.to_status = getattr(to_status, "value", str(to_status))
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Invalid transition: {self.from_status} → {self.to_status}",
        )

    @property
    def extra(self) -> dict[str, Any]:
        return {"from": self.from_status, "to": self.to_status}


class RoomBusyError(AppException):
    """A room's critical section could not be entered or completed in time."""

    error_type = "room_busy"

    def __init__(self, room_id: Any) -> None:
        self.room_id = str(room_id)
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Room is busy processing another booking. Please try again.",
            headers={"Retry-After": "1"},
        )

    @property
    def extra(self) -> dict[str, Any]:
        return {"roomId": self.room_id}


class RateLimitExceeded(AppException):
    """Rate limit exceeded exception."""

    error_type = "rate_limited"

    def __init__(self, detail: str = "Too many requests. Please try again later.") -> None:
        super().__init__(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=detail)
