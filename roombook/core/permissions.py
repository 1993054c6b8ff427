"""Role-based, location-scoped access control.

Every capability check goes through :class:`AuthorizationScoper`. Roles are a
closed set and each one is handled as an explicit case:

- ADMIN: unrestricted.
- MANAGER: restricted to the locations in their grants.
- USER: may act on their own bookings only.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from roombook.core.exceptions import ForbiddenError

if TYPE_CHECKING:
    from roombook.services.directory import RoomInfo

logger = logging.getLogger(__name__)


class UserRole(str, Enum):
    """User roles in the system."""

    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    USER = "USER"


@dataclass(frozen=True, slots=True)
class Principal:
    """The acting user as seen by authorization checks."""

    user_id: uuid.UUID
    role: UserRole
    location_ids: frozenset[uuid.UUID] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        # Only managers hold meaningful grants; admins implicitly hold them all.
        if self.role is not UserRole.MANAGER and self.location_ids:
            object.__setattr__(self, "location_ids", frozenset())

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.ADMIN


class BookingLike(Protocol):
    user_id: uuid.UUID
    room_id: uuid.UUID


class RoomLookup(Protocol):
    async def get(self, db: AsyncSession, room_id: uuid.UUID) -> RoomInfo | None: ...


class AuthorizationScoper:
    """Capability checks with one entry point per action.

    Resolving a booking takes one hop: booking → room → location → grants, so
    the scoper depends on the room directory for the room → location mapping.
    """

    def __init__(self, rooms: RoomLookup) -> None:
        self.rooms = rooms

    def can_manage_location(self, principal: Principal, location_id: uuid.UUID) -> bool:
        if principal.role is UserRole.ADMIN:
            return True
        if principal.role is UserRole.MANAGER:
            return location_id in principal.location_ids
        if principal.role is UserRole.USER:
            return False
        raise ValueError(f"Unknown role: {principal.role}")

    async def can_manage_room(
        self, db: AsyncSession, principal: Principal, room_id: uuid.UUID
    ) -> bool:
        """True if ADMIN, or a MANAGER holding a grant for the room's location."""
        if principal.role is UserRole.ADMIN:
            return True
        if principal.role is UserRole.USER:
            return False
        room = await self.rooms.get(db, room_id)
        if room is None:
            return False
        return self.can_manage_location(principal, room.location_id)

    async def can_act_on_booking(
        self, db: AsyncSession, principal: Principal, booking: BookingLike
    ) -> bool:
        """True for the booking owner, ADMIN, or a MANAGER scoped to the booking's room."""
        if booking.user_id == principal.user_id:
            return True
        return await self.can_manage_room(db, principal, booking.room_id)

    async def can_view_booking(
        self, db: AsyncSession, principal: Principal, booking: BookingLike
    ) -> bool:
        return await self.can_act_on_booking(db, principal, booking)

    async def require_room_manager(
        self, db: AsyncSession, principal: Principal, room_id: uuid.UUID
    ) -> None:
        if not await self.can_manage_room(db, principal, room_id):
            logger.info(f"Denied room management: user={principal.user_id} room={room_id}")
            raise ForbiddenError("Not authorized to manage this room")

    async def require_booking_access(
        self, db: AsyncSession, principal: Principal, booking: BookingLike
    ) -> None:
        if not await self.can_act_on_booking(db, principal, booking):
            logger.info(
                f"Denied booking access: user={principal.user_id} booking_room={booking.room_id}"
            )
            raise ForbiddenError("Not authorized to act on this booking")

    async def require_booking_view(
        self, db: AsyncSession, principal: Principal, booking: BookingLike
    ) -> None:
        if not await self.can_view_booking(db, principal, booking):
            raise ForbiddenError("Not authorized to view this booking")

