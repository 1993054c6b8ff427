import pytest
from httpx import ASGITransport, AsyncClient

from roombook.api.deps import get_booking_service, get_feedback_service
from roombook.core.security import create_access_token
from roombook.database import get_db
from roombook.main import create_application
from roombook.services.booking_service import BookingService
from roombook.services.feedback_service import FeedbackService


@pytest.fixture
async def client(session_factory, world):
    app = create_application()

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    service = BookingService()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_booking_service] = lambda: service
    app.dependency_overrides[get_feedback_service] = lambda: FeedbackService()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def auth(world):
    """Authorization headers keyed by seeded user name."""
    return {
        name: {"Authorization": f"Bearer {create_access_token(getattr(world, name).user_id)}"}
        for name in ("admin", "manager", "alice", "bob")
    }
