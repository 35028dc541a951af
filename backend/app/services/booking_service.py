"""
Booking orchestrator: turns a booking request into a consistent Booking plus
ledger state.

FLOW
====

  1. Validate against the event (bookable, not the caller's own event,
     payment method accepted, every category present and on sale).
     Validation failures never touch the ledger.
  2. Reserve each category through the InventoryLedger, in category-name
     order so concurrent multi-category requests lock rows consistently.
     If any reserve fails, the reservations already acquired are released
     and the unit of work is rolled back (all-or-nothing).
  3. Persist the Booking with the unit prices the ledger captured.
  4. "pay_at_event": finalize every reservation and confirm immediately.
     Otherwise the booking stays pending until a receipt is verified or the
     hold window runs out (see expiry_service).
  5. Commit, then notify. Notification failures are logged and never undo
     the booking.

Every booking status change is a guarded UPDATE (`WHERE status = :from`),
so two actors racing on the same booking cannot both win.
"""

import time
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import (
    BookingCoreError,
    ErrorCode,
    EventNotBookableError,
    ForbiddenError,
    InvalidCategoryError,
    InvalidPaymentMethodError,
    InvalidStateTransitionError,
    NotFoundError,
    ReceiptAlreadySubmittedError,
    SelfBookingForbiddenError,
)
from app.core.logging import get_logger
from app.core.metrics import booking_latency, record_booking_attempt
from app.core.security import CurrentUser
from app.core.timeutils import utcnow
from app.models.booking import Booking, BookingItem, BookingStatus, PaymentStatus
from app.models.event import PAY_AT_EVENT, Event, EventStatus
from app.models.notification import NotificationType
from app.models.reservation import Reservation
from app.schemas.booking import BookingCreate, BookingResponse, TicketRequest
from app.services.inventory_ledger import InventoryLedger
from app.services.notification_service import NotificationDispatcher
from app.services.state_machine import BookingStateMachine

logger = get_logger(__name__)
settings = get_settings()


async def transition_booking(
    db: AsyncSession,
    booking_id: int,
    from_status: str,
    to_status: str,
    *conditions,
    **values,
) -> None:
    """Move a booking between states only if it is still in `from_status`."""
    BookingStateMachine.validate_transition(from_status, to_status)
    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status == from_status, *conditions)
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        current = (
            await db.execute(select(Booking.status).where(Booking.id == booking_id))
        ).scalar_one_or_none()
        logger.warning(
            "booking_transition_rejected",
            booking_id=booking_id,
            current=current,
            target=to_status,
        )
        raise InvalidStateTransitionError("booking", current or "missing", to_status)


async def load_booking(db: AsyncSession, booking_id: int) -> Booking:
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if booking is None:
        raise NotFoundError(ErrorCode.BOOKING_NOT_FOUND, "Booking", booking_id)
    return booking


def booking_summary(booking: Booking) -> dict:
    """JSON-safe booking snapshot used in notification payloads and live pushes."""
    return BookingResponse.model_validate(booking).model_dump(mode="json")


class BookingOrchestrator:
    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher,
        hold_minutes: Optional[int] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.ledger = InventoryLedger(db)
        if hold_minutes is None:
            hold_minutes = settings.BOOKING_HOLD_MINUTES
        self.hold_window = timedelta(minutes=hold_minutes)

    async def create_booking(self, user_id: str, data: BookingCreate) -> Booking:
        started = time.perf_counter()
        event = await self._load_event(data.event_id)

        try:
            self._ensure_bookable(event, user_id)
            self._ensure_payment_method(event, data.payment_method)
            self._ensure_categories(event, data.tickets)
        except BookingCoreError:
            record_booking_attempt("rejected")
            raise

        acquired = await self._reserve_all(event, data.tickets)

        prices = {r.category_name: r.unit_price for r in acquired}
        items = [
            BookingItem(
                position=position,
                category_name=ticket.type,
                quantity=ticket.quantity,
                unit_price=prices[ticket.type],
            )
            for position, ticket in enumerate(data.tickets)
        ]
        total = sum((item.unit_price * item.quantity for item in items), Decimal("0"))

        now = utcnow()
        pay_at_event = data.payment_method == PAY_AT_EVENT
        booking = Booking(
            user_id=user_id,
            event_id=event.id,
            event_title=event.title,
            event_date=event.starts_at,
            event_owner_id=event.owner_id,
            total_amount=total,
            currency=event.currency,
            payment_method=data.payment_method,
            payment_status=PaymentStatus.PENDING,
            status=BookingStatus.PENDING,
            notes=data.notes,
            expires_at=None if pay_at_event else now + self.hold_window,
            items=items,
        )
        self.db.add(booking)
        await self.db.flush()
        await self.ledger.attach([r.id for r in acquired], booking.id)

        if pay_at_event:
            await self.ledger.finalize_booking(booking.id)
            await transition_booking(
                self.db, booking.id, BookingStatus.PENDING, BookingStatus.CONFIRMED, confirmed_at=now
            )

        await self.db.commit()
        booking = await load_booking(self.db, booking.id)

        booking_latency.observe(time.perf_counter() - started)
        record_booking_attempt(booking.status)
        logger.info(
            "booking_created",
            booking_id=booking.id,
            user_id=user_id,
            event_id=event.id,
            tickets=booking.ticket_count,
            total=str(booking.total_amount),
            status=booking.status,
        )

        if pay_at_event:
            await self._notify_confirmed(booking)
        else:
            await self._notify_payment_due(booking, event)
        return booking

    async def cancel_booking(
        self,
        booking_id: int,
        user_id: str,
        reason: Optional[str] = None,
    ) -> Booking:
        """Owner-initiated cancellation of a booking that is still awaiting payment."""
        booking = await load_booking(self.db, booking_id)
        if booking.user_id != user_id:
            raise NotFoundError(ErrorCode.BOOKING_NOT_FOUND, "Booking", booking_id)
        if booking.status != BookingStatus.PENDING:
            raise InvalidStateTransitionError("booking", booking.status, BookingStatus.CANCELLED)
        if booking.receipt_submitted_at is not None:
            raise ReceiptAlreadySubmittedError(booking_id)

        await transition_booking(
            self.db,
            booking_id,
            BookingStatus.PENDING,
            BookingStatus.CANCELLED,
            Booking.receipt_submitted_at.is_(None),
            payment_status=PaymentStatus.FAILED,
            cancelled_at=utcnow(),
            cancellation_reason=reason or "cancelled by attendee",
        )
        released = await self.ledger.release_booking(booking_id)
        await self.db.commit()
        booking = await load_booking(self.db, booking_id)

        logger.info("booking_cancelled", booking_id=booking_id, user_id=user_id, released=released)
        await self.dispatcher.publish_safely(
            booking.user_id,
            NotificationType.BOOKING_CANCELLED,
            "Booking Cancelled",
            f"Your booking for {booking.event_title} has been cancelled.",
            {
                "booking_id": booking.id,
                "event_id": booking.event_id,
                "reason": booking.cancellation_reason,
            },
        )
        return booking

    async def get_booking(self, booking_id: int, user: CurrentUser) -> Booking:
        booking = await load_booking(self.db, booking_id)
        if booking.user_id == user.id:
            return booking
        if user.is_admin or booking.event_owner_id == user.id:
            return booking
        raise ForbiddenError("You cannot view this booking", {"booking_id": booking_id})

    async def list_user_bookings(self, user_id: str) -> list[Booking]:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc(), Booking.id.desc())
        )
        return list(result.scalars().all())

    async def _load_event(self, event_id: int) -> Event:
        result = await self.db.execute(select(Event).where(Event.id == event_id))
        event = result.scalar_one_or_none()
        if event is None:
            raise NotFoundError(ErrorCode.EVENT_NOT_FOUND, "Event", event_id)
        return event

    def _ensure_bookable(self, event: Event, user_id: str) -> None:
        if event.owner_id == user_id:
            raise SelfBookingForbiddenError(event.id)
        if event.status == EventStatus.CANCELLED:
            raise EventNotBookableError(event.id, "event has been cancelled")
        if event.status == EventStatus.DRAFT:
            raise EventNotBookableError(event.id, "event is not published")
        if event.starts_at <= utcnow():
            raise EventNotBookableError(event.id, "event has already taken place")

    def _ensure_payment_method(self, event: Event, method: str) -> None:
        if method == PAY_AT_EVENT:
            return
        accepted = event.active_payment_methods()
        if method not in accepted:
            raise InvalidPaymentMethodError(method, [*accepted, PAY_AT_EVENT])

    def _ensure_categories(self, event: Event, tickets: list[TicketRequest]) -> None:
        for ticket in tickets:
            category = event.category(ticket.type)
            if category is None:
                raise InvalidCategoryError(ticket.type)
            if not category.is_active:
                raise InvalidCategoryError(ticket.type, "is not on sale")

    async def _reserve_all(self, event: Event, tickets: list[TicketRequest]) -> list[Reservation]:
        event_id = event.id
        acquired: list[Reservation] = []
        try:
            for ticket in sorted(tickets, key=lambda t: t.type):
                acquired.append(await self.ledger.reserve(event_id, ticket.type, ticket.quantity))
        except BookingCoreError as e:
            for reservation in acquired:
                await self.ledger.release(reservation.id)
            await self.db.rollback()
            record_booking_attempt(e.code.value)
            logger.info(
                "booking_reservation_failed",
                event_id=event_id,
                code=e.code.value,
                released=len(acquired),
            )
            raise
        return acquired

    async def _notify_confirmed(self, booking: Booking) -> None:
        summary = booking_summary(booking)
        await self.dispatcher.publish_safely(
            booking.user_id,
            NotificationType.BOOKING_CONFIRMED,
            "Booking Confirmed",
            f"Your booking for {booking.event_title} is confirmed. Payment is due at the event.",
            {
                "booking_id": booking.id,
                "event_id": booking.event_id,
                "total_amount": str(booking.total_amount),
                "currency": booking.currency,
                "payment_method": booking.payment_method,
                "tickets": summary["items"],
            },
        )
        self.dispatcher.push(booking.user_id, "bookingConfirmed", summary)

    async def _notify_payment_due(self, booking: Booking, event: Event) -> None:
        minutes = int(self.hold_window.total_seconds() // 60)
        await self.dispatcher.publish_safely(
            booking.user_id,
            NotificationType.PAYMENT_REMINDER,
            "Complete Your Payment",
            f"Submit your payment receipt for {booking.event_title} within {minutes} minutes "
            f"or your tickets will be released.",
            {
                "booking_id": booking.id,
                "event_id": booking.event_id,
                "total_amount": str(booking.total_amount),
                "currency": booking.currency,
                "payment_method": booking.payment_method,
                "expires_at": booking_summary(booking)["expires_at"],
                "payment_details": [
                    {"type": m.method_type, "details": m.details}
                    for m in event.payment_methods
                    if m.is_active and m.method_type == booking.payment_method
                ],
            },
        )
