"""Shared fixtures: a throwaway SQLite database seeded with a small directory."""

import os

os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite://")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import uuid
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import roombook.models  # noqa: F401
from roombook.core.permissions import Principal, UserRole
from roombook.database import Base
from roombook.models import Location, ManagerLocation, Room, User
from roombook.services.booking_service import BookingService


@pytest.fixture
async def engine(tmp_path):
    # File-backed so concurrent sessions get their own connections.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def world(session_factory):
    """Two locations, three rooms and four users; the manager holds a grant for ``hq`` only."""
    hq = Location(id=uuid.uuid4(), name="HQ", city="Berlin")
    annex = Location(id=uuid.uuid4(), name="Annex", city="Hamburg")

    small = Room(id=uuid.uuid4(), name="Aurora", location_id=hq.id, capacity=4, amenities=["whiteboard"])
    large = Room(
        id=uuid.uuid4(),
        name="Borealis",
        location_id=hq.id,
        capacity=12,
        amenities=["whiteboard", "projector"],
    )
    remote = Room(id=uuid.uuid4(), name="Cosmos", location_id=annex.id, capacity=8, amenities=["projector"])
    closed = Room(
        id=uuid.uuid4(), name="Dormant", location_id=hq.id, capacity=6, amenities=[], is_active=False
    )

    admin = User(id=uuid.uuid4(), email="admin@example.com", role="ADMIN")
    manager = User(id=uuid.uuid4(), email="manager@example.com", role="MANAGER")
    alice = User(id=uuid.uuid4(), email="alice@example.com", role="USER")
    bob = User(id=uuid.uuid4(), email="bob@example.com", role="USER")

    async with session_factory() as session:
        session.add_all([hq, annex])
        await session.flush()
        session.add_all([small, large, remote, closed, admin, manager, alice, bob])
        await session.flush()
        session.add(ManagerLocation(id=uuid.uuid4(), user_id=manager.id, location_id=hq.id))
        await session.commit()

    return SimpleNamespace(
        hq=hq.id,
        annex=annex.id,
        room=small.id,
        large_room=large.id,
        remote_room=remote.id,
        closed_room=closed.id,
        admin=Principal(admin.id, UserRole.ADMIN),
        manager=Principal(manager.id, UserRole.MANAGER, frozenset({hq.id})),
        alice=Principal(alice.id, UserRole.USER),
        bob=Principal(bob.id, UserRole.USER),
    )


@pytest.fixture
def service():
    # asyncio locks bind to the running loop; a fresh service per test.
    return BookingService()


@pytest.fixture
def tomorrow():
    """Today's date + 1 at 00:00 UTC."""
    now = datetime.now(UTC)
    return datetime(now.year, now.month, now.day, tzinfo=UTC) + timedelta(days=1)
