"""Database models."""

from roombook.models.booking import Booking
from roombook.models.feedback import RoomFeedback
from roombook.models.room import Location, Room
from roombook.models.user import ManagerLocation, User

__all__ = [
    # User
    "User",
    "ManagerLocation",
    # Location
    "Location",
    "Room",
    # Booking
    "Booking",
    # Feedback
    "RoomFeedback",
]
