"""
Ticket issuance and check-in.

A ticket is issued once per booking when its payment is verified. The
verification hash is an HMAC-SHA256 over the ticket's identifying fields,
so a scanned code can be checked without trusting the client.
"""

import hashlib
import hmac
import secrets
import string
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import ErrorCode, ForbiddenError, InvalidTicketError, NotFoundError
from app.core.logging import get_logger
from app.core.security import CurrentUser
from app.core.timeutils import as_utc, utcnow
from app.models.booking import Booking
from app.models.event import Event
from app.models.ticket import Ticket, TicketStatus
from app.services.interfaces.authorization import ReceiptAuthorizer

logger = get_logger(__name__)
settings = get_settings()

_CODE_ALPHABET = string.ascii_uppercase + string.digits

# Door staff may still admit a holder this long after the event starts.
CHECK_IN_GRACE = timedelta(hours=24)


def generate_ticket_code() -> str:
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(8))
    return f"TKT-{utcnow().year}-{suffix}"


def compute_verification_hash(code: str, booking_id: int, event_id: int, user_id: str, quantity: int) -> str:
    message = f"{code}|{booking_id}|{event_id}|{user_id}|{quantity}".encode()
    return hmac.new(settings.TICKET_SIGNING_KEY.encode(), message, hashlib.sha256).hexdigest()


def verify_ticket_hash(ticket: Ticket, presented_hash: str) -> bool:
    expected = compute_verification_hash(
        ticket.code, ticket.booking_id, ticket.event_id, ticket.user_id, ticket.quantity
    )
    return hmac.compare_digest(expected, presented_hash)


def valid_until_for(event_date):
    return as_utc(event_date) + CHECK_IN_GRACE if event_date else None


async def issue_ticket(db: AsyncSession, booking: Booking, receipt_id: Optional[int] = None) -> Ticket:
    """Create the booking's ticket inside the caller's transaction."""
    code = generate_ticket_code()
    quantity = sum(item.quantity for item in booking.items)
    event_date = (
        await db.execute(select(Event.date).where(Event.id == booking.event_id))
    ).scalar_one_or_none()
    ticket = Ticket(
        code=code,
        booking_id=booking.id,
        receipt_id=receipt_id,
        event_id=booking.event_id,
        user_id=booking.user_id,
        quantity=quantity,
        verification_hash=compute_verification_hash(
            code, booking.id, booking.event_id, booking.user_id, quantity
        ),
        status=TicketStatus.VALID,
        valid_until=valid_until_for(event_date),
    )
    db.add(ticket)
    await db.flush()
    logger.info("ticket_issued", ticket=code, booking_id=booking.id, quantity=quantity)
    return ticket


async def get_ticket_for_booking(db: AsyncSession, booking_id: int) -> Optional[Ticket]:
    result = await db.execute(select(Ticket).where(Ticket.booking_id == booking_id))
    return result.scalar_one_or_none()


async def list_user_tickets(db: AsyncSession, user_id: str) -> list[Ticket]:
    result = await db.execute(
        select(Ticket).where(Ticket.user_id == user_id).order_by(Ticket.created_at.desc(), Ticket.id.desc())
    )
    return list(result.scalars().all())


async def check_in(
    db: AsyncSession,
    code: str,
    presented_hash: str,
    verifier: CurrentUser,
    authorizer: ReceiptAuthorizer,
) -> Ticket:
    """Admit a ticket holder. A ticket can be used exactly once."""
    result = await db.execute(select(Ticket).where(Ticket.code == code))
    ticket = result.scalar_one_or_none()
    if ticket is None:
        raise NotFoundError(ErrorCode.TICKET_NOT_FOUND, "Ticket", code)

    booking = await db.get(Booking, ticket.booking_id)
    if not await authorizer.can_manage_event(verifier, booking.event_owner_id):
        raise ForbiddenError("Only the event organizer can check tickets in", {"ticket": code})

    if not verify_ticket_hash(ticket, presented_hash):
        logger.warning("ticket_hash_mismatch", ticket=code, verifier=verifier.id)
        raise InvalidTicketError(code, "verification hash does not match")
    if ticket.valid_until is not None and as_utc(ticket.valid_until) < utcnow():
        raise InvalidTicketError(code, "ticket has expired")

    now = utcnow()
    outcome = await db.execute(
        update(Ticket)
        .where(Ticket.id == ticket.id, Ticket.status == TicketStatus.VALID)
        .values(status=TicketStatus.USED, used_at=now, checked_in_by=verifier.id)
        .execution_options(synchronize_session=False)
    )
    if outcome.rowcount == 0:
        raise InvalidTicketError(code, "ticket has already been used")

    await db.commit()
    await db.refresh(ticket)
    logger.info("ticket_checked_in", ticket=code, verifier=verifier.id)
    return ticket
