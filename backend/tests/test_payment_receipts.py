"""
Tests for payment receipt submission and organizer verification.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select, update

from app.core.exceptions import InvalidStateTransitionError
from app.core.security import CurrentUser
from app.core.timeutils import utcnow
from app.models.booking import Booking
from app.models.notification import Notification
from app.models.payment_receipt import PaymentReceipt
from app.models.ticket import Ticket
from app.schemas.payment_receipt import PaymentReceiptCreate
from app.services.expiry_service import expire_stale_bookings
from app.services.interfaces.owner_authorization import OwnerOrAdminAuthorizer
from app.services.payment_receipt_service import PaymentReceiptVerifier
from conftest import ATTENDEE_ID, ORGANIZER_ID


async def notifications_for(session_factory, user_id: str) -> list[Notification]:
    async with session_factory() as session:
        result = await session.execute(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at, Notification.id)
        )
        return list(result.scalars().all())


async def category(client: AsyncClient, event_id: int, name: str = "general") -> dict:
    response = await client.get(f"/api/v1/events/{event_id}")
    return next(c for c in response.json()["categories"] if c["name"] == name)


@pytest.fixture
def pending_booking(book, test_event):
    async def _create():
        response = await book(test_event.id)
        assert response.status_code == 201
        return response.json()

    return _create


@pytest.mark.asyncio
async def test_submit_receipt_notifies_organizer(pending_booking, submit_receipt, session_factory):
    booking = await pending_booking()

    response = await submit_receipt(booking)
    assert response.status_code == 201
    receipt = response.json()
    assert receipt["status"] == "pending"
    assert receipt["booking_id"] == booking["id"]
    assert Decimal(receipt["amount"]) == Decimal("50.00")

    organizer_inbox = await notifications_for(session_factory, ORGANIZER_ID)
    assert [n.type for n in organizer_inbox] == ["payment_receipt"]
    payload = organizer_inbox[0].payload
    assert payload["receipt_id"] == receipt["id"]
    assert payload["amount_matches"] is True
    assert payload["payer"]["email"] == "ari@example.com"


@pytest.mark.asyncio
async def test_amount_mismatch_is_flagged_not_refused(pending_booking, submit_receipt, session_factory):
    booking = await pending_booking()

    response = await submit_receipt(booking, amount="45.00")
    assert response.status_code == 201

    organizer_inbox = await notifications_for(session_factory, ORGANIZER_ID)
    assert organizer_inbox[0].payload["amount_matches"] is False
    assert organizer_inbox[0].payload["expected_amount"] == "50.00"


@pytest.mark.asyncio
async def test_second_receipt_for_same_booking(pending_booking, submit_receipt):
    booking = await pending_booking()
    assert (await submit_receipt(booking)).status_code == 201

    response = await submit_receipt(booking)
    assert response.status_code == 409
    assert response.json()["code"] == "receipt_already_submitted"


@pytest.mark.asyncio
async def test_receipt_for_someone_elses_booking(pending_booking, submit_receipt, stranger_headers):
    booking = await pending_booking()

    response = await submit_receipt(booking, headers=stranger_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_receipt_for_pay_at_event_booking(book, test_event, submit_receipt):
    booking = (await book(test_event.id, payment_method="pay_at_event")).json()

    response = await submit_receipt(booking)
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


@pytest.mark.asyncio
async def test_receipt_after_hold_window(pending_booking, submit_receipt, session_factory):
    booking = await pending_booking()
    async with session_factory() as session:
        await session.execute(
            update(Booking)
            .where(Booking.id == booking["id"])
            .values(expires_at=utcnow() - timedelta(minutes=1))
        )
        await session.commit()

    response = await submit_receipt(booking)
    assert response.status_code == 409
    assert response.json()["code"] == "invalid_state_transition"


@pytest.mark.asyncio
async def test_attendee_cannot_cancel_after_submitting(client: AsyncClient, pending_booking, submit_receipt, attendee_headers):
    booking = await pending_booking()
    await submit_receipt(booking)

    response = await client.post(f"/api/v1/bookings/{booking['id']}/cancel", headers=attendee_headers)
    assert response.status_code == 409
    assert response.json()["code"] == "receipt_already_submitted"


@pytest.mark.asyncio
async def test_confirm_receipt(
    client: AsyncClient, pending_booking, submit_receipt, organizer_headers, test_event, session_factory
):
    booking = await pending_booking()
    receipt = (await submit_receipt(booking)).json()

    response = await client.post(
        f"/api/v1/payment-receipts/{receipt['id']}/confirm",
        json={"verification_notes": "Transfer arrived"},
        headers=organizer_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["receipt"]["status"] == "confirmed"
    assert data["receipt"]["verified_by"] == ORGANIZER_ID
    assert data["booking"]["status"] == "confirmed"
    assert data["booking"]["payment_status"] == "completed"
    assert data["ticket"]["code"].startswith("TKT-")
    assert data["ticket"]["quantity"] == 2

    counters = await category(client, test_event.id)
    assert counters["reserved_count"] == 2
    assert counters["confirmed_count"] == 2

    types = [n.type for n in await notifications_for(session_factory, ATTENDEE_ID)]
    assert types == ["payment_reminder", "payment_confirmed", "ticket_generated"]


@pytest.mark.asyncio
async def test_receipt_state_is_monotonic(client: AsyncClient, pending_booking, submit_receipt, organizer_headers):
    booking = await pending_booking()
    receipt = (await submit_receipt(booking)).json()
    base = f"/api/v1/payment-receipts/{receipt['id']}"

    assert (await client.post(f"{base}/confirm", headers=organizer_headers)).status_code == 200

    again = await client.post(f"{base}/confirm", headers=organizer_headers)
    assert again.status_code == 409
    assert again.json()["code"] == "invalid_state_transition"

    reject = await client.post(f"{base}/reject", headers=organizer_headers)
    assert reject.status_code == 409


@pytest.mark.asyncio
async def test_reject_receipt_releases_and_notifies_once(
    client: AsyncClient, pending_booking, submit_receipt, organizer_headers, test_event, session_factory
):
    booking = await pending_booking()
    receipt = (await submit_receipt(booking)).json()

    response = await client.post(
        f"/api/v1/payment-receipts/{receipt['id']}/reject",
        json={"verification_notes": "No transfer found"},
        headers=organizer_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["receipt"]["status"] == "rejected"
    assert data["booking"]["status"] == "cancelled"
    assert data["booking"]["payment_status"] == "failed"
    assert data["ticket"] is None

    assert (await category(client, test_event.id))["reserved_count"] == 0

    rejected = [n for n in await notifications_for(session_factory, ATTENDEE_ID) if n.type == "payment_rejected"]
    assert len(rejected) == 1
    assert rejected[0].payload["rejection_reason"] == "No transfer found"
    assert rejected[0].payload["organizer_contact"]["id"] == ORGANIZER_ID
    assert rejected[0].payload["organizer_contact"]["phone"] == "+15550100"

    # A second reject is refused and produces no second notification
    again = await client.post(f"/api/v1/payment-receipts/{receipt['id']}/reject", headers=organizer_headers)
    assert again.status_code == 409
    rejected = [n for n in await notifications_for(session_factory, ATTENDEE_ID) if n.type == "payment_rejected"]
    assert len(rejected) == 1


@pytest.mark.asyncio
async def test_reject_without_notes_uses_default_reason(
    client: AsyncClient, pending_booking, submit_receipt, organizer_headers
):
    booking = await pending_booking()
    receipt = (await submit_receipt(booking)).json()

    response = await client.post(f"/api/v1/payment-receipts/{receipt['id']}/reject", headers=organizer_headers)
    assert response.status_code == 200
    assert response.json()["receipt"]["verification_notes"] == "Receipt rejected by event organizer"


@pytest.mark.asyncio
async def test_only_organizer_or_admin_resolves(
    client: AsyncClient, pending_booking, submit_receipt, attendee_headers, stranger_headers, admin_headers
):
    booking = await pending_booking()
    receipt = (await submit_receipt(booking)).json()
    url = f"/api/v1/payment-receipts/{receipt['id']}/confirm"

    for headers in (attendee_headers, stranger_headers):
        response = await client.post(url, headers=headers)
        assert response.status_code == 403
        assert response.json()["code"] == "forbidden"

    assert (await client.post(url, headers=admin_headers)).status_code == 200


@pytest.mark.asyncio
async def test_resolve_unknown_receipt(client: AsyncClient, organizer_headers):
    response = await client.post("/api/v1/payment-receipts/4242/confirm", headers=organizer_headers)
    assert response.status_code == 404
    assert response.json()["code"] == "receipt_not_found"


@pytest.mark.asyncio
async def test_list_receipts_for_organizer(
    client: AsyncClient, pending_booking, submit_receipt, organizer_headers, stranger_headers, admin_headers
):
    booking = await pending_booking()
    await submit_receipt(booking)

    mine = await client.get("/api/v1/payment-receipts/", headers=organizer_headers)
    assert len(mine.json()) == 1
    assert len((await client.get("/api/v1/payment-receipts/", params={"status": "confirmed"}, headers=organizer_headers)).json()) == 0
    assert (await client.get("/api/v1/payment-receipts/", headers=stranger_headers)).json() == []
    assert len((await client.get("/api/v1/payment-receipts/", headers=admin_headers)).json()) == 1


@pytest.mark.asyncio
async def test_confirm_pushes_live_booking_update(
    client: AsyncClient, pending_booking, submit_receipt, organizer_headers, broker
):
    booking = await pending_booking()
    receipt = (await submit_receipt(booking)).json()

    received = []

    async def collect(message):
        received.append(message)

    channel = broker.connect(ATTENDEE_ID, collect)
    await client.post(f"/api/v1/payment-receipts/{receipt['id']}/confirm", headers=organizer_headers)
    await channel.drain()

    events = [m["event"] for m in received]
    assert events == ["newNotification", "newNotification", "bookingConfirmed"]
    assert received[-1]["data"]["id"] == booking["id"]
    assert received[-1]["data"]["status"] == "confirmed"


@pytest.mark.asyncio
async def test_ticket_is_issued_once_per_booking(
    client: AsyncClient, pending_booking, submit_receipt, organizer_headers, session_factory
):
    booking = await pending_booking()
    receipt = (await submit_receipt(booking)).json()
    await client.post(f"/api/v1/payment-receipts/{receipt['id']}/confirm", headers=organizer_headers)
    await client.post(f"/api/v1/payment-receipts/{receipt['id']}/confirm", headers=organizer_headers)

    async with session_factory() as session:
        tickets = (await session.execute(select(Ticket).where(Ticket.booking_id == booking["id"]))).scalars().all()
    assert len(tickets) == 1


PAYMENT_OUTCOMES = ("payment_confirmed", "ticket_generated", "payment_rejected")


@pytest.mark.asyncio
async def test_confirm_and_reject_race_on_one_receipt(
    client: AsyncClient, pending_booking, submit_receipt, test_event, session_factory, dispatcher
):
    booking = await pending_booking()
    receipt = (await submit_receipt(booking)).json()
    organizer = CurrentUser(id=ORGANIZER_ID, name="Olive Organizer", phone="+15550100")

    async def resolve(action: str):
        async with session_factory() as session:
            verifier = PaymentReceiptVerifier(session, dispatcher, OwnerOrAdminAuthorizer())
            if action == "confirm":
                return await verifier.confirm(receipt["id"], organizer, "Transfer received")
            return await verifier.reject(receipt["id"], organizer, "Screenshot is unreadable")

    results = await asyncio.gather(resolve("confirm"), resolve("reject"), return_exceptions=True)

    winners = [r for r in results if isinstance(r, tuple)]
    losers = [r for r in results if isinstance(r, InvalidStateTransitionError)]
    assert len(winners) == 1
    assert len(losers) == 1

    resolved_receipt, resolved_booking = winners[0][0], winners[0][1]
    counters = await category(client, test_event.id)
    async with session_factory() as session:
        tickets = (
            await session.execute(select(func.count()).select_from(Ticket).where(Ticket.booking_id == booking["id"]))
        ).scalar_one()
    outcomes = [
        n.type for n in await notifications_for(session_factory, ATTENDEE_ID) if n.type in PAYMENT_OUTCOMES
    ]

    if resolved_receipt.status == "confirmed":
        assert resolved_booking.status == "confirmed"
        assert counters["reserved_count"] == counters["confirmed_count"] == 2
        assert tickets == 1
        assert outcomes == ["payment_confirmed", "ticket_generated"]
    else:
        assert resolved_receipt.status == "rejected"
        assert resolved_booking.status == "cancelled"
        assert counters["reserved_count"] == counters["confirmed_count"] == 0
        assert tickets == 0
        assert outcomes == ["payment_rejected"]


@pytest.mark.asyncio
async def test_receipt_upload_races_hold_expiry(
    client: AsyncClient, pending_booking, test_event, session_factory, dispatcher
):
    booking = await pending_booking()
    payer = CurrentUser(id=ATTENDEE_ID, name="Ari Attendee", email="ari@example.com")

    async def upload():
        async with session_factory() as session:
            verifier = PaymentReceiptVerifier(session, dispatcher, OwnerOrAdminAuthorizer())
            return await verifier.submit(
                payer,
                PaymentReceiptCreate(
                    event_id=booking["event_id"],
                    booking_id=booking["id"],
                    amount=Decimal(booking["total_amount"]),
                    proof_ref="s3://receipts/transfer.jpg",
                    payment_method="bank_transfer",
                ),
            )

    uploaded, expired = await asyncio.gather(
        upload(),
        expire_stale_bookings(session_factory, dispatcher, now=utcnow() + timedelta(minutes=31)),
        return_exceptions=True,
    )
    assert not isinstance(expired, BaseException)

    async with session_factory() as session:
        stored = await session.get(Booking, booking["id"])
        receipts = (
            await session.execute(
                select(func.count()).select_from(PaymentReceipt).where(PaymentReceipt.booking_id == booking["id"])
            )
        ).scalar_one()
    expiry_notices = [n for n in await notifications_for(session_factory, ATTENDEE_ID) if n.type == "booking_expired"]
    receipt_notices = [n for n in await notifications_for(session_factory, ORGANIZER_ID) if n.type == "payment_receipt"]
    reserved = (await category(client, test_event.id))["reserved_count"]

    if isinstance(uploaded, PaymentReceipt):
        assert expired == []
        assert stored.status == "pending"
        assert stored.receipt_submitted_at is not None
        assert receipts == 1
        assert reserved == 2
        assert len(receipt_notices) == 1
        assert expiry_notices == []
    else:
        assert isinstance(uploaded, InvalidStateTransitionError)
        assert expired == [booking["id"]]
        assert stored.status == "cancelled"
        assert receipts == 0
        assert reserved == 0
        assert receipt_notices == []
        assert len(expiry_notices) == 1


@pytest.mark.asyncio
async def test_payer_lists_own_receipts(
    client: AsyncClient, pending_booking, submit_receipt, organizer_headers, attendee_headers, stranger_headers
):
    first = (await submit_receipt(await pending_booking())).json()
    second = (await submit_receipt(await pending_booking())).json()
    await client.post(f"/api/v1/payment-receipts/{first['id']}/confirm", headers=organizer_headers)

    response = await client.get("/api/v1/payment-receipts/mine", headers=attendee_headers)
    assert response.status_code == 200
    statuses = {r["id"]: r["status"] for r in response.json()}
    assert statuses == {first["id"]: "confirmed", second["id"]: "pending"}

    assert (await client.get("/api/v1/payment-receipts/mine", headers=stranger_headers)).json() == []
