"""
Payment receipt verifier.

State machine per receipt:

    pending --confirm--> confirmed   (terminal)
    pending --reject---> rejected    (terminal)

confirm: receipt -> confirmed, ledger finalize, booking -> confirmed,
         ticket issued, payer notified (payment_confirmed, ticket_generated)
reject:  receipt -> rejected, ledger release, booking -> cancelled,
         payer notified (payment_rejected) with the verifier's notes and
         contact details

Each resolution is one transaction. The receipt's own transition is a guarded
UPDATE (`WHERE status = 'pending'`), so of two verifiers racing on the same
receipt exactly one wins and the other gets a state-transition error. A
failure anywhere before commit rolls the whole resolution back.
"""

from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ErrorCode,
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    PaymentWindowExpiredError,
    ReceiptAlreadySubmittedError,
    ValidationError,
)
from app.core.logging import get_logger
from app.core.metrics import record_receipt_resolution
from app.core.security import CurrentUser
from app.core.timeutils import as_utc, utcnow
from app.models.booking import Booking, BookingStatus, PaymentStatus
from app.models.event import PAY_AT_EVENT
from app.models.notification import NotificationType
from app.models.payment_receipt import PaymentReceipt, ReceiptStatus
from app.models.ticket import Ticket
from app.schemas.payment_receipt import PaymentReceiptCreate
from app.services.booking_service import booking_summary, load_booking, transition_booking
from app.services.interfaces.authorization import ReceiptAuthorizer
from app.services.inventory_ledger import InventoryLedger
from app.services.notification_service import NotificationDispatcher
from app.services.state_machine import ReceiptStateMachine
from app.services.ticket_service import issue_ticket

logger = get_logger(__name__)

DEFAULT_REJECTION_NOTE = "Receipt rejected by event organizer"


class PaymentReceiptVerifier:
    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher,
        authorizer: ReceiptAuthorizer,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.authorizer = authorizer
        self.ledger = InventoryLedger(db)

    async def submit(self, payer: CurrentUser, data: PaymentReceiptCreate) -> PaymentReceipt:
        booking = await load_booking(self.db, data.booking_id)
        if booking.user_id != payer.id:
            raise NotFoundError(ErrorCode.BOOKING_NOT_FOUND, "Booking", data.booking_id)
        if booking.event_id != data.event_id:
            raise ValidationError(
                "Booking does not belong to this event",
                {"booking_id": booking.id, "event_id": data.event_id},
            )
        if booking.payment_method == PAY_AT_EVENT:
            raise ValidationError(
                "Bookings paid at the event do not take payment receipts",
                {"booking_id": booking.id},
            )
        if booking.receipt_submitted_at is not None:
            raise ReceiptAlreadySubmittedError(booking.id)
        if booking.status != BookingStatus.PENDING:
            raise InvalidStateTransitionError("booking", booking.status, "receipt_submitted")

        now = utcnow()
        if booking.expires_at is not None and as_utc(booking.expires_at) <= now:
            raise PaymentWindowExpiredError(booking.id)

        # Claim the booking for this receipt; the sweep and a second upload
        # both test the same columns.
        claimed = await self.db.execute(
            update(Booking)
            .where(
                Booking.id == booking.id,
                Booking.status == BookingStatus.PENDING,
                Booking.receipt_submitted_at.is_(None),
                or_(Booking.expires_at.is_(None), Booking.expires_at > now),
            )
            .values(receipt_submitted_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            await self.db.rollback()
            current = await load_booking(self.db, booking.id)
            if current.receipt_submitted_at is not None:
                raise ReceiptAlreadySubmittedError(booking.id)
            if current.status != BookingStatus.PENDING:
                raise InvalidStateTransitionError("booking", current.status, "receipt_submitted")
            raise PaymentWindowExpiredError(booking.id)

        receipt = PaymentReceipt(
            booking_id=booking.id,
            event_id=booking.event_id,
            event_owner_id=booking.event_owner_id,
            user_id=payer.id,
            proof_ref=data.proof_ref,
            amount=data.amount,
            currency=booking.currency,
            payment_method=data.payment_method,
            transaction_reference=data.transaction_reference,
            notes=data.notes,
            status=ReceiptStatus.PENDING,
        )
        self.db.add(receipt)
        await self.db.commit()
        await self.db.refresh(receipt)

        record_receipt_resolution("submitted")
        logger.info(
            "receipt_submitted",
            receipt_id=receipt.id,
            booking_id=booking.id,
            user_id=payer.id,
            amount=str(receipt.amount),
        )

        await self.dispatcher.publish_safely(
            booking.event_owner_id,
            NotificationType.PAYMENT_RECEIPT,
            "New Payment Receipt",
            f"{payer.name or 'An attendee'} submitted a payment receipt of "
            f"{receipt.amount} {receipt.currency} for {booking.event_title}.",
            {
                "receipt_id": receipt.id,
                "booking_id": booking.id,
                "event_id": booking.event_id,
                "amount": str(receipt.amount),
                "expected_amount": str(booking.total_amount),
                "amount_matches": receipt.amount == booking.total_amount,
                "payment_method": receipt.payment_method,
                "transaction_reference": receipt.transaction_reference,
                "proof_ref": receipt.proof_ref,
                "payer": {"id": payer.id, **payer.contact()},
            },
        )
        return receipt

    async def confirm(
        self,
        receipt_id: int,
        verifier: CurrentUser,
        notes: Optional[str] = None,
    ) -> tuple[PaymentReceipt, Booking, Ticket]:
        receipt = await self._load_for_resolution(receipt_id, verifier, ReceiptStatus.CONFIRMED)
        booking_id = receipt.booking_id
        now = utcnow()

        try:
            await self._transition(
                receipt_id,
                ReceiptStatus.PENDING,
                ReceiptStatus.CONFIRMED,
                verified_by=verifier.id,
                verified_at=now,
                verification_notes=notes,
            )
            finalized = await self.ledger.finalize_booking(booking_id)
            await transition_booking(
                self.db,
                booking_id,
                BookingStatus.PENDING,
                BookingStatus.CONFIRMED,
                payment_status=PaymentStatus.COMPLETED,
                confirmed_at=now,
            )
            booking = await load_booking(self.db, booking_id)
            ticket = await issue_ticket(self.db, booking, receipt_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        receipt = await self._reload(receipt_id)
        booking = await load_booking(self.db, booking_id)
        record_receipt_resolution("confirmed")
        logger.info(
            "receipt_confirmed",
            receipt_id=receipt_id,
            booking_id=booking_id,
            verifier=verifier.id,
            finalized=finalized,
            ticket=ticket.code,
        )

        await self.dispatcher.publish_safely(
            booking.user_id,
            NotificationType.PAYMENT_CONFIRMED,
            "Payment Confirmed",
            f"Your payment for {booking.event_title} has been confirmed. Your booking is complete.",
            {
                "receipt_id": receipt.id,
                "booking_id": booking.id,
                "event_id": booking.event_id,
                "amount": str(receipt.amount),
                "verification_notes": receipt.verification_notes,
            },
        )
        await self.dispatcher.publish_safely(
            booking.user_id,
            NotificationType.TICKET_GENERATED,
            "Your Ticket Is Ready",
            f"Your ticket {ticket.code} for {booking.event_title} has been issued.",
            {
                "ticket_code": ticket.code,
                "booking_id": booking.id,
                "event_id": booking.event_id,
                "quantity": ticket.quantity,
            },
        )
        self.dispatcher.push(booking.user_id, "bookingConfirmed", booking_summary(booking))
        return receipt, booking, ticket

    async def reject(
        self,
        receipt_id: int,
        verifier: CurrentUser,
        notes: Optional[str] = None,
    ) -> tuple[PaymentReceipt, Booking]:
        receipt = await self._load_for_resolution(receipt_id, verifier, ReceiptStatus.REJECTED)
        booking_id = receipt.booking_id
        reason = notes or DEFAULT_REJECTION_NOTE
        now = utcnow()

        try:
            await self._transition(
                receipt_id,
                ReceiptStatus.PENDING,
                ReceiptStatus.REJECTED,
                verified_by=verifier.id,
                verified_at=now,
                verification_notes=reason,
            )
            released = await self.ledger.release_booking(booking_id)
            await transition_booking(
                self.db,
                booking_id,
                BookingStatus.PENDING,
                BookingStatus.CANCELLED,
                payment_status=PaymentStatus.FAILED,
                cancelled_at=now,
                cancellation_reason="payment rejected",
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        receipt = await self._reload(receipt_id)
        booking = await load_booking(self.db, booking_id)
        record_receipt_resolution("rejected")
        logger.info(
            "receipt_rejected",
            receipt_id=receipt_id,
            booking_id=booking_id,
            verifier=verifier.id,
            released=released,
        )

        await self.dispatcher.publish_safely(
            booking.user_id,
            NotificationType.PAYMENT_REJECTED,
            "Payment Rejected",
            f"Your payment receipt for {booking.event_title} was rejected: {reason}. "
            f"Contact the organizer if you believe this is a mistake.",
            {
                "receipt_id": receipt.id,
                "booking_id": booking.id,
                "event_id": booking.event_id,
                "amount": str(receipt.amount),
                "rejection_reason": reason,
                "organizer_contact": {"id": verifier.id, **verifier.contact()},
            },
        )
        return receipt, booking

    async def list_for_verifier(
        self,
        verifier: CurrentUser,
        status: Optional[str] = None,
    ) -> list[PaymentReceipt]:
        query = select(PaymentReceipt)
        if not verifier.is_admin:
            query = query.where(PaymentReceipt.event_owner_id == verifier.id)
        if status is not None:
            query = query.where(PaymentReceipt.status == status)
        result = await self.db.execute(
            query.order_by(PaymentReceipt.created_at.asc(), PaymentReceipt.id.asc())
        )
        return list(result.scalars().all())

    async def list_for_payer(self, payer: CurrentUser) -> list[PaymentReceipt]:
        """The payer's own receipts, newest first, with their resolution."""
        result = await self.db.execute(
            select(PaymentReceipt)
            .where(PaymentReceipt.user_id == payer.id)
            .order_by(PaymentReceipt.created_at.desc(), PaymentReceipt.id.desc())
        )
        return list(result.scalars().all())

    async def _load_for_resolution(
        self,
        receipt_id: int,
        verifier: CurrentUser,
        target: str,
    ) -> PaymentReceipt:
        receipt = await self._reload(receipt_id)
        if not await self.authorizer.can_resolve_receipt(verifier, receipt.event_owner_id):
            logger.warning("receipt_resolution_forbidden", receipt_id=receipt_id, verifier=verifier.id)
            raise ForbiddenError(
                "Only the event organizer can resolve this receipt",
                {"receipt_id": receipt_id},
            )
        ReceiptStateMachine.validate_transition(receipt.status, target)
        return receipt

    async def _transition(self, receipt_id: int, from_status: str, to_status: str, **values) -> None:
        ReceiptStateMachine.validate_transition(from_status, to_status)
        result = await self.db.execute(
            update(PaymentReceipt)
            .where(PaymentReceipt.id == receipt_id, PaymentReceipt.status == from_status)
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = (
                await self.db.execute(
                    select(PaymentReceipt.status).where(PaymentReceipt.id == receipt_id)
                )
            ).scalar_one_or_none()
            logger.warning(
                "receipt_transition_rejected",
                receipt_id=receipt_id,
                current=current,
                target=to_status,
            )
            raise InvalidStateTransitionError("receipt", current or "missing", to_status)

    async def _reload(self, receipt_id: int) -> PaymentReceipt:
        result = await self.db.execute(
            select(PaymentReceipt)
            .where(PaymentReceipt.id == receipt_id)
            .execution_options(populate_existing=True)
        )
        receipt = result.scalar_one_or_none()
        if receipt is None:
            raise NotFoundError(ErrorCode.RECEIPT_NOT_FOUND, "Receipt", receipt_id)
        return receipt
