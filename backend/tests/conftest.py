"""
Pytest fixtures for test database, client, and authentication.

Each test gets its own SQLite file (WAL, busy timeout) so concurrent
sessions behave like separate connections to a real database.
"""

from datetime import datetime, timezone, timedelta
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.main import app
from app.api.dependencies import get_dispatcher
from app.core.security import create_access_token
from app.db.base import Base
from app.db.session import build_engine, build_session_factory, get_db
from app.models.event import Event
from app.schemas.event import EventCreate, PaymentMethodCreate, TicketCategoryCreate
from app.services.channel_broker import ChannelBroker
from app.services.event_service import create_event
from app.services.notification_service import NotificationDispatcher

ORGANIZER_ID = "organizer-1"
ATTENDEE_ID = "attendee-1"
OTHER_ATTENDEE_ID = "attendee-2"
STRANGER_ID = "stranger-1"
ADMIN_ID = "admin-1"


def bearer(user_id: str, role: str = "user", **claims) -> dict:
    token = create_access_token(data={"sub": user_id, "role": role, **claims})
    return {"Authorization": f"Bearer {token}"}


def future(days: int = 30) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


def instant(value: str) -> datetime:
    """Parse an API timestamp, which may use the Z suffix."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh database file with all tables for every test."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ticket_core.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield build_session_factory(engine)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def broker() -> ChannelBroker:
    return ChannelBroker(queue_size=10)


@pytest_asyncio.fixture
async def dispatcher(session_factory, broker) -> AsyncGenerator[NotificationDispatcher, None]:
    dispatcher = NotificationDispatcher(session_factory, broker, write_retries=2, retry_backoff=0.01)
    yield dispatcher
    await dispatcher.close()
    await broker.close_all()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, dispatcher) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client wired to the test database and dispatcher."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def organizer_headers() -> dict:
    return bearer(ORGANIZER_ID, name="Olive Organizer", email="olive@example.com", phone="+15550100")


@pytest.fixture
def attendee_headers() -> dict:
    return bearer(ATTENDEE_ID, name="Ari Attendee", email="ari@example.com")


@pytest.fixture
def other_attendee_headers() -> dict:
    return bearer(OTHER_ATTENDEE_ID)


@pytest.fixture
def stranger_headers() -> dict:
    return bearer(STRANGER_ID)


@pytest.fixture
def admin_headers() -> dict:
    return bearer(ADMIN_ID, role="admin")


@pytest_asyncio.fixture
async def test_event(db_session: AsyncSession) -> Event:
    """Published event: 100 general at 25.00, 2 vip at 80.00, bank transfer accepted."""
    return await create_event(
        db_session,
        EventCreate(
            title="Test Concert",
            description="A test event",
            date=future(),
            location="Test Venue",
            categories=[
                TicketCategoryCreate(name="general", unit_price=Decimal("25.00"), capacity=100),
                TicketCategoryCreate(name="vip", unit_price=Decimal("80.00"), capacity=2),
            ],
            payment_methods=[
                PaymentMethodCreate(type="bank_transfer", details={"iban": "DE00 1234"}),
                PaymentMethodCreate(type="mobile_money", is_active=False),
            ],
        ),
        ORGANIZER_ID,
    )


@pytest_asyncio.fixture
async def single_ticket_event(db_session: AsyncSession) -> Event:
    """One general ticket left in the whole event."""
    return await create_event(
        db_session,
        EventCreate(
            title="Tiny Venue",
            date=future(),
            categories=[TicketCategoryCreate(name="general", unit_price=Decimal("10.00"), capacity=1)],
            payment_methods=[PaymentMethodCreate(type="bank_transfer")],
        ),
        ORGANIZER_ID,
    )


@pytest.fixture
def book(client: AsyncClient, attendee_headers):
    """POST a booking and return the response."""

    async def _book(event_id, tickets=None, payment_method="bank_transfer", headers=None):
        return await client.post(
            "/api/v1/bookings/",
            json={
                "event_id": event_id,
                "tickets": tickets or [{"type": "general", "quantity": 2}],
                "payment_method": payment_method,
            },
            headers=headers or attendee_headers,
        )

    return _book


@pytest.fixture
def submit_receipt(client: AsyncClient, attendee_headers):
    """POST a payment receipt for a booking response body."""

    async def _submit(booking: dict, amount=None, headers=None):
        return await client.post(
            "/api/v1/payment-receipts/",
            json={
                "event_id": booking["event_id"],
                "booking_id": booking["id"],
                "amount": amount or booking["total_amount"],
                "proof_ref": "s3://receipts/transfer.jpg",
                "payment_method": "bank_transfer",
                "transaction_reference": "TRX-001",
            },
            headers=headers or attendee_headers,
        )

    return _submit
