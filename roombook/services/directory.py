"""Read-only directories over rooms and users.

The booking engine never writes rooms, locations, users or grants; it only
resolves them through these lookups.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from roombook.core.permissions import Principal, UserRole
from roombook.models.room import Location, Room
from roombook.models.user import ManagerLocation, User


@dataclass(frozen=True, slots=True)
class RoomInfo:
    """The parts of a room the booking engine cares about."""

    id: uuid.UUID
    location_id: uuid.UUID
    capacity: int
    amenities: frozenset[str]
    is_active: bool
    name: str = ""

    @classmethod
    def from_model(cls, room: Room) -> RoomInfo:
        return cls(
            id=room.id,
            location_id=room.location_id,
            capacity=room.capacity,
            amenities=frozenset(room.amenities or ()),
            is_active=bool(room.is_active),
            name=room.name,
        )


class RoomDirectory:
    """Room id → location, capacity, amenities and active flag."""

    async def get(self, db: AsyncSession, room_id: uuid.UUID) -> RoomInfo | None:
        result = await db.execute(select(Room).where(Room.id == room_id))
        room = result.scalar_one_or_none()
        return RoomInfo.from_model(room) if room else None

    async def location_exists(self, db: AsyncSession, location_id: uuid.UUID) -> bool:
        result = await db.execute(select(Location.id).where(Location.id == location_id))
        return result.scalar_one_or_none() is not None

    async def search(
        self,
        db: AsyncSession,
        location_id: uuid.UUID | None = None,
        min_capacity: int | None = None,
        amenities: list[str] | None = None,
    ) -> list[RoomInfo]:
        """Active rooms matching every given filter, ordered by name."""
        query = select(Room).where(Room.is_active.is_(True))
        if location_id:
            query = query.where(Room.location_id == location_id)
        if min_capacity:
            query = query.where(Room.capacity >= min_capacity)

        result = await db.execute(query.order_by(Room.name))
        rooms = [RoomInfo.from_model(r) for r in result.scalars().all()]

        # Amenities are a JSON list; filter in Python to stay backend-neutral.
        if amenities:
            wanted = set(amenities)
            rooms = [r for r in rooms if wanted <= r.amenities]
        return rooms


class UserDirectory:
    """User id → role and managed locations."""

    async def get_principal(self, db: AsyncSession, user_id: uuid.UUID) -> Principal | None:
        result = await db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user is None or not user.is_active:
            return None

        role = UserRole(user.role)
        location_ids: frozenset[uuid.UUID] = frozenset()
        if role is UserRole.MANAGER:
            grants = await db.execute(
                select(ManagerLocation.location_id).where(ManagerLocation.user_id == user_id)
            )
            location_ids = frozenset(grants.scalars().all())
        return Principal(user_id=user.id, role=role, location_ids=location_ids)

    async def exists(self, db: AsyncSession, user_id: uuid.UUID) -> bool:
        result = await db.execute(select(User.id).where(User.id == user_id))
        return result.scalar_one_or_none() is not None


room_directory = RoomDirectory()
user_directory = UserDirectory()
