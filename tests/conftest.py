import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["ADMIN_NOTIFICATION_SECRET"] = "test-admin-secret"
os.environ["BOOKING_LOCK_BACKEND"] = "local"

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from telemed.core.exceptions import DeliveryError
from telemed.core.security import create_access_token
from telemed.database import create_tables, get_db
from telemed.dependencies import (
    get_booking_lock,
    get_channel_registry,
    get_clock,
    get_video_call_service,
)
from telemed.main import app
from telemed.models.users import users
from telemed.repositories.appointments import AppointmentRepository
from telemed.repositories.notifications import NotificationRepository
from telemed.repositories.users import UserDirectory
from telemed.schemas.appointments import AppointmentCreate, ConsultationType
from telemed.schemas.notifications import NotificationChannel, NotificationRecord
from telemed.schemas.users import UserRecord
from telemed.schemas.video_calls import CallRole, VideoCallData, VideoCallSession
from telemed.services.appointment_service import AppointmentService
from telemed.services.booking_lock import LocalBookingLock
from telemed.services.channels import ChannelRegistry
from telemed.services.notification_service import NotificationService
from telemed.services.slot_resolver import SlotResolver

# A Monday, well clear of any slot boundary.
START = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingSender:
    """Channel sender that remembers what it was asked to deliver."""

    def __init__(self) -> None:
        self.sent: list[tuple[NotificationRecord, UserRecord | None]] = []

    async def send(self, notification: NotificationRecord, recipient: UserRecord | None) -> None:
        self.sent.append((notification, recipient))


class FailingSender:
    """Channel sender that always fails."""

    def __init__(self, channel: NotificationChannel, reason: str = "provider unavailable"):
        self.channel = channel
        self.reason = reason
        self.attempts = 0

    async def send(self, notification: NotificationRecord, recipient: UserRecord | None) -> None:
        self.attempts += 1
        raise DeliveryError(self.channel.value, self.reason)


class StubVideoCalls:
    """Video provider handing out a fixed call."""

    def __init__(self) -> None:
        self.created: list[UUID] = []
        self.ended: list[str] = []

    async def create_call(self, appointment_id: UUID) -> VideoCallData:
        self.created.append(appointment_id)
        return VideoCallData(
            call_id="c1",
            call_url="http://x/c1",
            room_id="room-c1",
            expires_at=START + timedelta(days=7),
        )

    async def end_call(self, call_id: str) -> VideoCallSession:
        self.ended.append(call_id)
        return VideoCallSession(call_id=call_id, ended_at=START)

    async def generate_token(self, call_id: str, user_id: UUID, role: CallRole) -> str:
        return f"tok-{role.value}-{user_id}"


class BrokenVideoCalls(StubVideoCalls):
    """Video provider that cannot open rooms."""

    async def create_call(self, appointment_id: UUID) -> VideoCallData:
        raise RuntimeError("provider down")


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(engine)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


async def _seed_user(db_session: AsyncSession, role: str, **overrides: Any) -> UserRecord:
    user_id = uuid4()
    values = {
        "id": user_id,
        "email": f"{role}-{user_id.hex[:8]}@example.com",
        "full_name": f"Test {role.title()}",
        "phone": "+15550000000",
        "role": role,
        "is_active": True,
        **overrides,
    }
    await db_session.execute(insert(users).values(**values))
    await db_session.commit()
    return UserRecord.model_validate(values)


@pytest_asyncio.fixture
async def patient(db_session) -> UserRecord:
    return await _seed_user(db_session, "patient", full_name="Jane Patient", phone="+15551230001")


@pytest_asyncio.fixture
async def other_patient(db_session) -> UserRecord:
    return await _seed_user(db_session, "patient", full_name="Other Patient")


@pytest_asyncio.fixture
async def doctor(db_session) -> UserRecord:
    return await _seed_user(db_session, "doctor", full_name="Gregory House")


@pytest_asyncio.fixture
async def other_doctor(db_session) -> UserRecord:
    return await _seed_user(db_session, "doctor", full_name="Lisa Cuddy")


@pytest_asyncio.fixture
async def admin(db_session) -> UserRecord:
    return await _seed_user(db_session, "admin", full_name="Ada Admin")


@pytest_asyncio.fixture
async def inactive_patient(db_session) -> UserRecord:
    return await _seed_user(db_session, "patient", full_name="Gone Away", is_active=False)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def slot_at(clock):
    """Aware datetime ``days`` after the clock's day at ``hour:minute``."""

    def _slot_at(days: int = 1, hour: int = 10, minute: int = 0) -> datetime:
        return (clock.now + timedelta(days=days)).replace(
            hour=hour, minute=minute, second=0, microsecond=0
        )

    return _slot_at


@pytest.fixture
def senders() -> dict[NotificationChannel, RecordingSender]:
    return {channel: RecordingSender() for channel in NotificationChannel}


@pytest.fixture
def channels(senders) -> ChannelRegistry:
    return ChannelRegistry(senders)


@pytest.fixture
def fail_channel(channels):
    """Swap a channel's sender for one that always fails."""

    def _fail(channel: NotificationChannel, reason: str = "provider unavailable") -> FailingSender:
        sender = FailingSender(channel, reason)
        channels.register(channel, sender)
        return sender

    return _fail


@pytest.fixture
def video_calls() -> StubVideoCalls:
    return StubVideoCalls()


@pytest.fixture
def broken_video_calls() -> BrokenVideoCalls:
    return BrokenVideoCalls()


@pytest.fixture
def notification_service(db_session, channels, clock) -> NotificationService:
    return NotificationService(
        repository=NotificationRepository(db_session),
        channels=channels,
        users=UserDirectory(db_session),
        clock=clock,
        expiry_days=30,
    )


@pytest.fixture
def appointment_repository(db_session) -> AppointmentRepository:
    return AppointmentRepository(db_session)


@pytest.fixture
def appointment_service(
    db_session, appointment_repository, notification_service, video_calls, clock
) -> AppointmentService:
    return AppointmentService(
        appointments=appointment_repository,
        users=UserDirectory(db_session),
        notifications=notification_service,
        slots=SlotResolver(appointment_repository, clock=clock),
        video_calls=video_calls,
        booking_lock=LocalBookingLock(),
        clock=clock,
    )


@pytest.fixture
def book(appointment_service, patient, doctor, slot_at):
    """Book an appointment through the service."""

    async def _book(
        appointment_at: datetime | None = None,
        *,
        patient_id: UUID | None = None,
        doctor_id: UUID | None = None,
        consultation_type: ConsultationType = ConsultationType.IN_PERSON,
        duration_minutes: int = 30,
    ):
        data = AppointmentCreate(
            doctor_id=doctor_id or doctor.id,
            appointment_at=appointment_at or slot_at(1, 10),
            duration_minutes=duration_minutes,
            consultation_type=consultation_type,
            symptoms="Persistent headache for a week",
            specialization="Neurology",
            fee=50.0,
        )
        return await appointment_service.create_appointment(patient_id or patient.id, data)

    return _book


@pytest.fixture
def insert_appointment(appointment_repository, patient, doctor, clock):
    """Store an appointment row directly, bypassing booking rules."""

    async def _insert(appointment_at: datetime, **overrides: Any):
        values = {
            "id": uuid4(),
            "patient_id": patient.id,
            "doctor_id": doctor.id,
            "appointment_at": appointment_at,
            "duration_minutes": 30,
            "consultation_type": "in-person",
            "status": "scheduled",
            "symptoms": "Routine follow-up visit",
            "specialization": "General",
            "fee": 30.0,
            "payment_status": "pending",
            "created_at": clock.now,
            "updated_at": clock.now,
            **overrides,
        }
        return await appointment_repository.create(values)

    return _insert


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession, channels, video_calls, clock
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the database, channels, video provider and clock swapped out."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    booking_lock = LocalBookingLock()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_channel_registry] = lambda: channels
    app.dependency_overrides[get_video_call_service] = lambda: video_calls
    app.dependency_overrides[get_booking_lock] = lambda: booking_lock
    app.dependency_overrides[get_clock] = lambda: clock

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def _auth_headers(user: UserRecord) -> dict:
    token = create_access_token({"sub": str(user.id)}, expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def patient_headers(patient) -> dict:
    return _auth_headers(patient)


@pytest.fixture
def doctor_headers(doctor) -> dict:
    return _auth_headers(doctor)


@pytest.fixture
def other_patient_headers(other_patient) -> dict:
    return _auth_headers(other_patient)


@pytest.fixture
def admin_headers(admin) -> dict:
    return _auth_headers(admin)


@pytest.fixture
def admin_secret_headers() -> dict:
    return {"X-Admin-Secret": "test-admin-secret"}
