#!/usr/bin/env python3
"""Seed a demo location with rooms and users, and print bearer tokens for them."""

import asyncio
from uuid import uuid4

from sqlalchemy import select

from roombook.core.security import create_access_token
from roombook.database import get_db_context
from roombook.models import Location, ManagerLocation, Room, User

DEMO_USERS = [
    ("admin@example.com", "Ada", "Admin", "ADMIN"),
    ("manager@example.com", "Max", "Manager", "MANAGER"),
    ("user@example.com", "Uma", "User", "USER"),
]

DEMO_ROOMS = [
    ("Aurora", 4, ["whiteboard"]),
    ("Borealis", 8, ["whiteboard", "projector"]),
    ("Cosmos", 20, ["projector", "video_conference"]),
]


async def get_or_create_user(session, email: str, first_name: str, last_name: str, role: str) -> User:
    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user:
        user.role = role
        user.is_active = True
        return user

    user = User(
        id=uuid4(),
        email=email,
        first_name=first_name,
        last_name=last_name,
        role=role,
        is_active=True,
    )
    session.add(user)
    return user


async def seed(location_name: str = "Headquarters", city: str = "Berlin") -> None:
    async with get_db_context() as session:
        result = await session.execute(select(Location).where(Location.name == location_name))
        location = result.scalar_one_or_none()
        if location is None:
            location = Location(id=uuid4(), name=location_name, city=city, timezone="Europe/Berlin")
            session.add(location)
            for name, capacity, amenities in DEMO_ROOMS:
                session.add(
                    Room(
                        id=uuid4(),
                        name=name,
                        location_id=location.id,
                        capacity=capacity,
                        amenities=amenities,
                    )
                )
            print(f"Created location {location_name} with {len(DEMO_ROOMS)} rooms")

        users = [await get_or_create_user(session, *spec) for spec in DEMO_USERS]
        await session.flush()

        manager = next(u for u in users if u.role == "MANAGER")
        grant = await session.execute(
            select(ManagerLocation).where(
                ManagerLocation.user_id == manager.id,
                ManagerLocation.location_id == location.id,
            )
        )
        if grant.scalar_one_or_none() is None:
            session.add(ManagerLocation(id=uuid4(), user_id=manager.id, location_id=location.id))

        print(f"Location: {location.id}")
        for user in users:
            print(f"{user.role:8} {user.email}: {create_access_token(user.id)}")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Seed demo rooms and users")
    parser.add_argument("--location", default="Headquarters", help="Location name")
    parser.add_argument("--city", default="Berlin", help="Location city")

    args = parser.parse_args()

    asyncio.run(seed(location_name=args.location, city=args.city))
