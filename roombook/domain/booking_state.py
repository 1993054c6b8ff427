"""Booking state machine."""

from enum import Enum

from roombook.core.exceptions import InvalidTransition


class BookingStatus(str, Enum):
    """Booking lifecycle states."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.CANCELLED},
    BookingStatus.CANCELLED: set(),
}

# Statuses that occupy the room. PENDING is a soft hold and still blocks.
ACTIVE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


def is_active(status: str | BookingStatus) -> bool:
    return BookingStatus(status) in ACTIVE_STATUSES


def initial_status(requires_approval: bool) -> BookingStatus:
    """Starting status for a new booking under the deployment's approval policy."""
    return BookingStatus.PENDING if requires_approval else BookingStatus.CONFIRMED


def assert_booking_transition(current: str | BookingStatus, target: str | BookingStatus) -> None:
    current = BookingStatus(current)
    target = BookingStatus(target)
    if target not in BOOKING_TRANSITIONS[current]:
        raise InvalidTransition(current, target)
