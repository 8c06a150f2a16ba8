import os
import tempfile
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio
from dotenv import load_dotenv

# Load environment variables from .env file, then pin everything the tests rely on
load_dotenv()

TEST_DATABASE_PATH = os.path.join(tempfile.gettempdir(), f"therapy_scheduler_test_{os.getpid()}.db")
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{TEST_DATABASE_PATH}"

os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ.setdefault("REDIS_HOST", "localhost")
os.environ.setdefault("REDIS_PORT", "6379")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ["NOTIFICATION_BACKEND"] = "log"
os.environ["CLINIC_TIMEZONE"] = "UTC"
os.environ["LOG_FORMAT"] = "console"

from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import insert  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from therapy_scheduler.core.authorization import Actor, ActorRole  # noqa: E402
from therapy_scheduler.core.exceptions import DeliveryException  # noqa: E402
from therapy_scheduler.core.security import create_access_token  # noqa: E402
from therapy_scheduler.database import build_engine, get_db  # noqa: E402
from therapy_scheduler.dependencies import get_cache_manager  # noqa: E402
from therapy_scheduler.main import app  # noqa: E402
from therapy_scheduler.models import metadata  # noqa: E402
from therapy_scheduler.models.users import users  # noqa: E402
from therapy_scheduler.schemas.notifications import NotificationAck, NotificationRequest  # noqa: E402
from therapy_scheduler.schemas.sessions import SessionCreate, SessionResponse  # noqa: E402
from therapy_scheduler.services.booking_service import BookingService  # noqa: E402
from therapy_scheduler.services.notification_service import NotificationDispatcher  # noqa: E402

# Every connection is fresh so concurrent sessions really compete for the write lock
test_engine = build_engine(TEST_DATABASE_URL, poolclass=NullPool)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# Booking moment and slot shared by the service-level tests
BOOKED_ON = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
BOOKED_SLOT = datetime(2025, 3, 10, 10, 0, tzinfo=UTC)


class RecordingDispatcher(NotificationDispatcher):
    """Dispatcher that records requests and can be told to fail."""

    def __init__(self, fail: bool = False):
        self.sent: list[NotificationRequest] = []
        self.fail = fail

    async def send(self, request: NotificationRequest) -> NotificationAck:
        self.sent.append(request)
        if self.fail:
            raise DeliveryException("Push gateway unreachable")
        return NotificationAck(success_count=1, failure_count=0)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session on a freshly created schema."""
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)


@pytest.fixture
def session_factory() -> async_sessionmaker[AsyncSession]:
    """Factory for extra sessions competing with db_session."""
    return TestSessionLocal


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client with the cache disabled."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache_manager] = lambda: None

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Factory inserting a user row and returning it as a dict."""

    async def _make_user(
        role: str,
        full_name: str,
        is_approved: bool = True,
        is_active: bool = True,
    ) -> dict[str, Any]:
        user_id = uuid4()
        values = {
            "id": user_id,
            "email": f"{role}-{user_id.hex[:8]}@example.com",
            "full_name": full_name,
            "role": role,
            "is_active": is_active,
            "is_approved": is_approved,
        }
        await db_session.execute(insert(users).values(**values))
        await db_session.commit()
        return values

    return _make_user


@pytest_asyncio.fixture
async def therapist(make_user) -> dict[str, Any]:
    """Approved therapist."""
    return await make_user("therapist", "Sarah Miller")


@pytest_asyncio.fixture
async def other_therapist(make_user) -> dict[str, Any]:
    """A second approved therapist."""
    return await make_user("therapist", "James Chen")


@pytest_asyncio.fixture
async def patient(make_user) -> dict[str, Any]:
    """Patient."""
    return await make_user("patient", "Alex Morgan")


@pytest_asyncio.fixture
async def other_patient(make_user) -> dict[str, Any]:
    """A second patient."""
    return await make_user("patient", "Jordan Lee")


@pytest_asyncio.fixture
async def admin(make_user) -> dict[str, Any]:
    """Administrator."""
    return await make_user("admin", "Admin User")


@pytest.fixture
def therapist_actor(therapist) -> Actor:
    return Actor(id=therapist["id"], role=ActorRole.THERAPIST)


@pytest.fixture
def other_therapist_actor(other_therapist) -> Actor:
    return Actor(id=other_therapist["id"], role=ActorRole.THERAPIST)


@pytest.fixture
def patient_actor(patient) -> Actor:
    return Actor(id=patient["id"], role=ActorRole.PATIENT)


@pytest.fixture
def admin_actor(admin) -> Actor:
    return Actor(id=admin["id"], role=ActorRole.ADMIN)


def _auth_headers(user: dict[str, Any]) -> dict[str, str]:
    token = create_access_token(data={"sub": str(user["id"])}, expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def therapist_headers(therapist) -> dict[str, str]:
    """Authentication headers for the therapist."""
    return _auth_headers(therapist)


@pytest.fixture
def other_therapist_headers(other_therapist) -> dict[str, str]:
    """Authentication headers for the second therapist."""
    return _auth_headers(other_therapist)


@pytest.fixture
def patient_headers(patient) -> dict[str, str]:
    """Authentication headers for the patient."""
    return _auth_headers(patient)


@pytest.fixture
def admin_headers(admin) -> dict[str, str]:
    """Authentication headers for the administrator."""
    return _auth_headers(admin)


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    """Dispatcher recording every notification."""
    return RecordingDispatcher()


@pytest.fixture
def failing_dispatcher() -> RecordingDispatcher:
    """Dispatcher whose every delivery fails."""
    return RecordingDispatcher(fail=True)


@pytest_asyncio.fixture
async def booked_session(db_session, therapist_actor, patient) -> SessionResponse:
    """Individual session on 2025-03-10 at 10:00 UTC, booked on 2025-03-01."""
    service = BookingService(db_session, clock=lambda: BOOKED_ON)
    return await service.book(
        therapist_actor,
        SessionCreate(
            therapist_id=therapist_actor.id,
            patient_id=patient["id"],
            scheduled_at=BOOKED_SLOT,
            duration_minutes=60,
        ),
    )
