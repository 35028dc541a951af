"""
Tests for event endpoints: creation, category edits and status changes.
"""

import asyncio
from datetime import datetime, timezone, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from app.core.exceptions import InvalidStateTransitionError
from app.core.security import CurrentUser
from app.models.event import Event
from app.models.notification import Notification
from app.schemas.event import EventStatusUpdate
from app.services.event_service import change_status
from app.services.interfaces.owner_authorization import OwnerOrAdminAuthorizer
from conftest import ATTENDEE_ID, OTHER_ATTENDEE_ID, ORGANIZER_ID, future, instant


def event_body(**overrides) -> dict:
    body = {
        "title": "Python Conference 2026",
        "description": "Annual Python gathering",
        "date": future().isoformat(),
        "location": "Convention Center",
        "categories": [
            {"name": "general", "unit_price": "20.00", "capacity": 500},
            {"name": "student", "unit_price": "5.00", "capacity": 50},
        ],
        "payment_methods": [{"type": "bank_transfer", "details": {"iban": "DE00 1234"}}],
    }
    body.update(overrides)
    return body


async def inbox(session_factory, user_id: str) -> list[Notification]:
    async with session_factory() as session:
        result = await session.execute(select(Notification).where(Notification.user_id == user_id))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_create_event(client: AsyncClient, organizer_headers):
    """Authenticated user can create an event with empty categories."""
    response = await client.post("/api/v1/events/", json=event_body(), headers=organizer_headers)
    assert response.status_code == 201
    data = response.json()
    assert data["title"] == "Python Conference 2026"
    assert data["owner_id"] == ORGANIZER_ID
    assert data["status"] == "published"
    general = next(c for c in data["categories"] if c["name"] == "general")
    assert general["capacity"] == 500
    assert general["reserved_count"] == general["confirmed_count"] == 0
    assert general["available"] == 500
    assert data["payment_methods"][0]["type"] == "bank_transfer"


@pytest.mark.asyncio
async def test_create_event_unauthenticated(client: AsyncClient):
    """Unauthenticated request returns 401."""
    response = await client.post("/api/v1/events/", json=event_body())
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_event_past_date(client: AsyncClient, organizer_headers):
    """Event with past date returns 400."""
    past_date = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    response = await client.post("/api/v1/events/", json=event_body(date=past_date), headers=organizer_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


@pytest.mark.asyncio
async def test_create_event_invalid_categories(client: AsyncClient, organizer_headers):
    """Zero capacity or duplicate names are rejected by the schema."""
    zero = event_body(categories=[{"name": "general", "unit_price": "1.00", "capacity": 0}])
    assert (await client.post("/api/v1/events/", json=zero, headers=organizer_headers)).status_code == 422

    duplicate = event_body(
        categories=[
            {"name": "general", "unit_price": "1.00", "capacity": 5},
            {"name": "general", "unit_price": "2.00", "capacity": 5},
        ]
    )
    assert (await client.post("/api/v1/events/", json=duplicate, headers=organizer_headers)).status_code == 422


@pytest.mark.asyncio
async def test_get_event(client: AsyncClient, test_event):
    """Get single event by ID."""
    response = await client.get(f"/api/v1/events/{test_event.id}")
    assert response.status_code == 200
    data = response.json()
    assert data["id"] == test_event.id
    assert data["title"] == "Test Concert"
    assert {c["name"] for c in data["categories"]} == {"general", "vip"}


@pytest.mark.asyncio
async def test_get_event_not_found(client: AsyncClient):
    """Non-existent event returns 404."""
    response = await client.get("/api/v1/events/99999")
    assert response.status_code == 404
    assert response.json()["code"] == "event_not_found"


@pytest.mark.asyncio
async def test_capacity_cannot_drop_below_reserved(client: AsyncClient, book, test_event, organizer_headers):
    await book(test_event.id, tickets=[{"type": "vip", "quantity": 2}])
    url = f"/api/v1/events/{test_event.id}/categories/vip"

    response = await client.patch(url, json={"capacity": 1}, headers=organizer_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"

    grown = await client.patch(url, json={"capacity": 10}, headers=organizer_headers)
    assert grown.status_code == 200
    vip = next(c for c in grown.json()["categories"] if c["name"] == "vip")
    assert vip["capacity"] == 10
    assert vip["available"] == 8


@pytest.mark.asyncio
async def test_only_organizer_edits_categories(client: AsyncClient, test_event, stranger_headers, admin_headers):
    url = f"/api/v1/events/{test_event.id}/categories/general"

    response = await client.patch(url, json={"unit_price": "1.00"}, headers=stranger_headers)
    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"

    assert (await client.patch(url, json={"is_active": False}, headers=admin_headers)).status_code == 200


@pytest.mark.asyncio
async def test_edit_unknown_category(client: AsyncClient, test_event, organizer_headers):
    response = await client.patch(
        f"/api/v1/events/{test_event.id}/categories/balcony",
        json={"capacity": 10},
        headers=organizer_headers,
    )
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_category"


@pytest.mark.asyncio
async def test_postponement_notifies_ticket_holders(
    client: AsyncClient, book, test_event, organizer_headers, other_attendee_headers,
    session_factory, broker,
):
    await book(test_event.id)
    await book(test_event.id, tickets=[{"type": "vip", "quantity": 1}])
    cancelled = (await book(test_event.id, headers=other_attendee_headers)).json()
    await client.post(f"/api/v1/bookings/{cancelled['id']}/cancel", headers=other_attendee_headers)

    received = []

    async def collect(message):
        received.append(message)

    channel = broker.connect(ATTENDEE_ID, collect)
    new_date = future(days=60)
    response = await client.patch(
        f"/api/v1/events/{test_event.id}/status",
        json={"status": "postponed", "reason": "Storm warning", "new_date": new_date.isoformat()},
        headers=organizer_headers,
    )
    await channel.drain()

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "postponed"
    assert data["status_details"]["reason"] == "Storm warning"

    # One notice per holder, not per booking
    postponed = [n for n in await inbox(session_factory, ATTENDEE_ID) if n.type == "event_postponed"]
    assert len(postponed) == 1
    assert postponed[0].payload["event_id"] == test_event.id
    assert postponed[0].payload["reason"] == "Storm warning"

    # A holder whose only booking was cancelled is not notified
    other = [n.type for n in await inbox(session_factory, OTHER_ATTENDEE_ID)]
    assert "event_postponed" not in other

    assert [m["event"] for m in received] == ["newNotification", "eventUpdated"]
    assert received[-1]["data"]["status"] == "postponed"


@pytest.mark.asyncio
async def test_update_changes_location(client: AsyncClient, test_event, organizer_headers):
    response = await client.patch(
        f"/api/v1/events/{test_event.id}/status",
        json={"status": "updated", "new_location": "Main Hall", "new_time": "19:30"},
        headers=organizer_headers,
    )
    assert response.status_code == 200
    assert response.json()["location"] == "Main Hall"
    assert response.json()["time"] == "19:30"


@pytest.mark.asyncio
async def test_cancelled_event_status_is_final(client: AsyncClient, test_event, organizer_headers):
    url = f"/api/v1/events/{test_event.id}/status"
    assert (await client.patch(url, json={"status": "cancelled"}, headers=organizer_headers)).status_code == 200

    response = await client.patch(url, json={"status": "published"}, headers=organizer_headers)
    assert response.status_code == 409
    assert response.json()["code"] == "invalid_state_transition"


@pytest.mark.asyncio
async def test_postponement_needs_new_date(client: AsyncClient, test_event, organizer_headers):
    response = await client.patch(
        f"/api/v1/events/{test_event.id}/status",
        json={"status": "postponed"},
        headers=organizer_headers,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_only_organizer_changes_status(client: AsyncClient, test_event, attendee_headers):
    response = await client.patch(
        f"/api/v1/events/{test_event.id}/status",
        json={"status": "cancelled"},
        headers=attendee_headers,
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_postponement_moves_the_event_and_its_bookings(
    client: AsyncClient, book, test_event, organizer_headers, attendee_headers
):
    booking = (await book(test_event.id)).json()
    original_date = instant(booking["event_date"])
    new_date = future(days=60)
    url = f"/api/v1/events/{test_event.id}/status"

    postponed = await client.patch(
        url,
        json={"status": "postponed", "reason": "Storm warning", "new_date": new_date.isoformat(), "new_time": "21:00"},
        headers=organizer_headers,
    )
    assert postponed.status_code == 200
    data = postponed.json()
    assert instant(data["date"]) == new_date
    assert data["time"] == "21:00"
    assert instant(data["status_details"]["original_date"]) == original_date
    assert data["status_details"]["original_location"] == "Test Venue"

    stored = (await client.get(f"/api/v1/bookings/{booking['id']}", headers=attendee_headers)).json()
    assert instant(stored["event_date"]) == new_date

    # A later change of status keeps the new schedule and the originals
    updated = await client.patch(
        url, json={"status": "updated", "new_location": "Main Hall"}, headers=organizer_headers
    )
    assert updated.status_code == 200
    data = updated.json()
    assert data["status"] == "updated"
    assert instant(data["date"]) == new_date
    assert data["location"] == "Main Hall"
    assert instant(data["status_details"]["original_date"]) == original_date
    assert data["status_details"]["original_location"] == "Test Venue"


@pytest.mark.asyncio
async def test_postponement_into_the_past_is_refused(client: AsyncClient, test_event, organizer_headers):
    yesterday = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    response = await client.patch(
        f"/api/v1/events/{test_event.id}/status",
        json={"status": "postponed", "new_date": yesterday},
        headers=organizer_headers,
    )
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"

    unchanged = (await client.get(f"/api/v1/events/{test_event.id}")).json()
    assert unchanged["status"] == "published"


@pytest.mark.asyncio
async def test_concurrent_cancellations_notify_holders_once(book, test_event, session_factory, dispatcher):
    await book(test_event.id)
    organizer = CurrentUser(id=ORGANIZER_ID, name="Olive Organizer")

    async def cancel(reason: str):
        async with session_factory() as session:
            return await change_status(
                session,
                dispatcher,
                test_event.id,
                EventStatusUpdate(status="cancelled", reason=reason),
                organizer,
                OwnerOrAdminAuthorizer(),
            )

    results = await asyncio.gather(cancel("Venue flooded"), cancel("Headliner ill"), return_exceptions=True)

    winners = [r for r in results if isinstance(r, Event)]
    losers = [r for r in results if isinstance(r, InvalidStateTransitionError)]
    assert len(winners) == 1
    assert len(losers) == 1

    cancelled = [n for n in await inbox(session_factory, ATTENDEE_ID) if n.type == "event_cancelled"]
    assert len(cancelled) == 1
    assert cancelled[0].payload["reason"] == winners[0].status_details["reason"]
