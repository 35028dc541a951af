"""
Tests for booking endpoints including concurrency scenarios.
"""

import asyncio
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from app.core.exceptions import CapacityExceededError
from app.models.booking import Booking
from app.models.notification import Notification
from app.schemas.booking import BookingCreate, TicketRequest
from app.services.booking_service import BookingOrchestrator
from conftest import ATTENDEE_ID, ORGANIZER_ID, future


async def category_counters(client: AsyncClient, event_id: int, name: str) -> dict:
    response = await client.get(f"/api/v1/events/{event_id}")
    return next(c for c in response.json()["categories"] if c["name"] == name)


async def notifications_of(session_factory, user_id: str, notification_type: str) -> list:
    async with session_factory() as session:
        result = await session.execute(
            select(Notification).where(
                Notification.user_id == user_id, Notification.type == notification_type
            )
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_create_pending_booking(client: AsyncClient, book, test_event, session_factory):
    """Off-platform payment leaves the booking pending with a hold deadline."""
    response = await book(
        test_event.id,
        tickets=[{"type": "general", "quantity": 2}, {"type": "vip", "quantity": 1}],
    )
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["payment_status"] == "pending"
    assert data["expires_at"] is not None
    assert Decimal(data["total_amount"]) == Decimal("130.00")
    assert [(i["category_name"], i["quantity"]) for i in data["items"]] == [("general", 2), ("vip", 1)]

    general = await category_counters(client, test_event.id, "general")
    assert general["reserved_count"] == 2
    assert general["confirmed_count"] == 0

    reminders = await notifications_of(session_factory, ATTENDEE_ID, "payment_reminder")
    assert len(reminders) == 1
    assert reminders[0].payload["booking_id"] == data["id"]
    assert reminders[0].payload["payment_details"][0]["type"] == "bank_transfer"


@pytest.mark.asyncio
async def test_pay_at_event_confirms_immediately(client: AsyncClient, book, test_event, session_factory):
    response = await book(test_event.id, payment_method="pay_at_event")
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "confirmed"
    assert data["expires_at"] is None

    general = await category_counters(client, test_event.id, "general")
    assert general["reserved_count"] == 2
    assert general["confirmed_count"] == 2

    confirmed = await notifications_of(session_factory, ATTENDEE_ID, "booking_confirmed")
    assert len(confirmed) == 1


@pytest.mark.asyncio
async def test_book_unauthenticated(client: AsyncClient, test_event):
    """Unauthenticated booking returns 401."""
    response = await client.post(
        "/api/v1/bookings/",
        json={
            "event_id": test_event.id,
            "tickets": [{"type": "general", "quantity": 1}],
            "payment_method": "pay_at_event",
        },
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_cannot_book_own_event(book, test_event, organizer_headers):
    response = await book(test_event.id, headers=organizer_headers)
    assert response.status_code == 403
    assert response.json()["code"] == "self_booking_forbidden"


@pytest.mark.asyncio
async def test_book_unknown_event(book):
    response = await book(999999)
    assert response.status_code == 404
    assert response.json()["code"] == "event_not_found"


@pytest.mark.asyncio
async def test_book_unknown_category(client: AsyncClient, book, test_event):
    response = await book(test_event.id, tickets=[{"type": "balcony", "quantity": 1}])
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_category"


@pytest.mark.asyncio
async def test_book_with_unaccepted_payment_method(book, test_event):
    response = await book(test_event.id, payment_method="crypto")
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_payment_method"

    # Configured but switched off
    response = await book(test_event.id, payment_method="mobile_money")
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_payment_method"


@pytest.mark.asyncio
async def test_zero_quantity_rejected_by_schema(book, test_event):
    response = await book(test_event.id, tickets=[{"type": "general", "quantity": 0}])
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_multi_category_booking_is_all_or_nothing(client: AsyncClient, book, test_event, attendee_headers):
    """vip cannot cover 3, so the general units must not stay reserved either."""
    response = await book(
        test_event.id,
        tickets=[{"type": "general", "quantity": 5}, {"type": "vip", "quantity": 3}],
    )
    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "capacity_exceeded"
    assert body["details"] == {"category": "vip", "requested": 3, "remaining": 2}

    assert (await category_counters(client, test_event.id, "general"))["reserved_count"] == 0
    assert (await category_counters(client, test_event.id, "vip"))["reserved_count"] == 0

    listing = await client.get("/api/v1/bookings/", headers=attendee_headers)
    assert listing.json() == []


@pytest.mark.asyncio
async def test_last_ticket_two_concurrent_requests(session_factory, dispatcher, single_ticket_event):
    """Two attendees race for the only ticket: exactly one wins."""

    async def attempt(user_id: str):
        async with session_factory() as session:
            orchestrator = BookingOrchestrator(session, dispatcher)
            return await orchestrator.create_booking(
                user_id,
                BookingCreate(
                    event_id=single_ticket_event.id,
                    tickets=[TicketRequest(type="general", quantity=1)],
                    payment_method="bank_transfer",
                ),
            )

    results = await asyncio.gather(attempt("fan-a"), attempt("fan-b"), return_exceptions=True)

    bookings = [r for r in results if isinstance(r, Booking)]
    failures = [r for r in results if isinstance(r, CapacityExceededError)]
    assert len(bookings) == 1
    assert len(failures) == 1
    assert failures[0].remaining == 0

    async with session_factory() as session:
        count = (await session.execute(select(func.count()).select_from(Booking))).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_cancelled_event_not_bookable(client: AsyncClient, book, test_event, organizer_headers):
    await client.patch(
        f"/api/v1/events/{test_event.id}/status",
        json={"status": "cancelled", "reason": "Venue closed"},
        headers=organizer_headers,
    )

    response = await book(test_event.id)
    assert response.status_code == 409
    assert response.json()["code"] == "event_not_bookable"


@pytest.mark.asyncio
async def test_draft_event_not_bookable(client: AsyncClient, book, organizer_headers):
    created = await client.post(
        "/api/v1/events/",
        json={
            "title": "Unannounced",
            "date": future().isoformat(),
            "status": "draft",
            "categories": [{"name": "general", "unit_price": "5.00", "capacity": 10}],
        },
        headers=organizer_headers,
    )
    assert created.status_code == 201

    response = await book(created.json()["id"], payment_method="pay_at_event")
    assert response.status_code == 409
    assert response.json()["code"] == "event_not_bookable"


@pytest.mark.asyncio
async def test_cancel_pending_booking_releases_tickets(
    client: AsyncClient, book, test_event, attendee_headers, session_factory
):
    booking = (await book(test_event.id)).json()

    response = await client.post(f"/api/v1/bookings/{booking['id']}/cancel", headers=attendee_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "cancelled"
    assert data["payment_status"] == "failed"
    assert data["cancellation_reason"] == "cancelled by attendee"

    assert (await category_counters(client, test_event.id, "general"))["reserved_count"] == 0
    assert len(await notifications_of(session_factory, ATTENDEE_ID, "booking_cancelled")) == 1

    # Second cancel is a state violation, not a second release
    again = await client.post(f"/api/v1/bookings/{booking['id']}/cancel", headers=attendee_headers)
    assert again.status_code == 409
    assert again.json()["code"] == "invalid_state_transition"


@pytest.mark.asyncio
async def test_cancel_someone_elses_booking(client: AsyncClient, book, test_event, stranger_headers):
    booking = (await book(test_event.id)).json()

    response = await client.post(f"/api/v1/bookings/{booking['id']}/cancel", headers=stranger_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_confirmed_booking_cannot_be_cancelled(client: AsyncClient, book, test_event, attendee_headers):
    booking = (await book(test_event.id, payment_method="pay_at_event")).json()

    response = await client.post(f"/api/v1/bookings/{booking['id']}/cancel", headers=attendee_headers)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_get_booking_visibility(
    client: AsyncClient, book, test_event, attendee_headers, organizer_headers, stranger_headers, admin_headers
):
    booking = (await book(test_event.id)).json()
    url = f"/api/v1/bookings/{booking['id']}"

    assert (await client.get(url, headers=attendee_headers)).status_code == 200
    assert (await client.get(url, headers=organizer_headers)).status_code == 200
    assert (await client.get(url, headers=admin_headers)).status_code == 200
    forbidden = await client.get(url, headers=stranger_headers)
    assert forbidden.status_code == 403
    assert forbidden.json()["code"] == "forbidden"


@pytest.mark.asyncio
async def test_list_user_bookings(client: AsyncClient, book, test_event, attendee_headers, other_attendee_headers):
    await book(test_event.id)
    await book(test_event.id, tickets=[{"type": "vip", "quantity": 1}])
    await book(test_event.id, headers=other_attendee_headers)

    response = await client.get("/api/v1/bookings/", headers=attendee_headers)
    assert response.status_code == 200
    assert len(response.json()) == 2


@pytest.mark.asyncio
async def test_price_edit_does_not_change_existing_booking(
    client: AsyncClient, book, test_event, attendee_headers, organizer_headers
):
    """Totals use the price captured at reservation time."""
    before = (await book(test_event.id)).json()
    assert Decimal(before["total_amount"]) == Decimal("50.00")

    edit = await client.patch(
        f"/api/v1/events/{test_event.id}/categories/general",
        json={"unit_price": "40.00"},
        headers=organizer_headers,
    )
    assert edit.status_code == 200

    after = (await book(test_event.id)).json()
    assert Decimal(after["total_amount"]) == Decimal("80.00")

    reread = await client.get(f"/api/v1/bookings/{before['id']}", headers=attendee_headers)
    body = reread.json()
    assert Decimal(body["total_amount"]) == Decimal("50.00")
    assert Decimal(body["items"][0]["unit_price"]) == Decimal("25.00")
    assert sum(Decimal(i["unit_price"]) * i["quantity"] for i in body["items"]) == Decimal(body["total_amount"])


@pytest.mark.asyncio
async def test_booking_keeps_event_owner_for_receipts(book, test_event, session_factory):
    booking = (await book(test_event.id)).json()

    async with session_factory() as session:
        stored = await session.get(Booking, booking["id"])
    assert stored.event_owner_id == ORGANIZER_ID
    assert stored.event_title == "Test Concert"
