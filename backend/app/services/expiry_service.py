"""
Hold-window expiry.

A pending booking without a submitted receipt holds its units until
`expires_at`. The sweep cancels such bookings and releases their units, one
booking per transaction. The cancellation is a guarded UPDATE that also
requires `receipt_submitted_at IS NULL`, so a receipt that lands between the
SELECT and the UPDATE wins and the booking is skipped. Running the sweep in
several workers at once is safe for the same reason.
"""

import asyncio
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import get_settings
from app.core.exceptions import InvalidStateTransitionError
from app.core.logging import get_logger
from app.core.metrics import booking_expirations
from app.core.timeutils import utcnow
from app.models.booking import Booking, BookingStatus, PaymentStatus
from app.models.event import PAY_AT_EVENT
from app.models.notification import NotificationType
from app.services.booking_service import load_booking, transition_booking
from app.services.inventory_ledger import InventoryLedger
from app.services.notification_service import NotificationDispatcher

logger = get_logger(__name__)
settings = get_settings()

EXPIRY_REASON = "payment window expired"


async def expire_stale_bookings(
    session_factory: async_sessionmaker[AsyncSession],
    dispatcher: NotificationDispatcher,
    now: Optional[datetime] = None,
) -> list[int]:
    """Cancel every lapsed hold. Returns the ids of bookings this call expired."""
    if now is None:
        now = utcnow()
    async with session_factory() as db:
        result = await db.execute(
            select(Booking.id)
            .where(
                Booking.status == BookingStatus.PENDING,
                Booking.payment_method != PAY_AT_EVENT,
                Booking.receipt_submitted_at.is_(None),
                Booking.expires_at.is_not(None),
                Booking.expires_at <= now,
            )
            .order_by(Booking.expires_at.asc(), Booking.id.asc())
        )
        candidates = list(result.scalars().all())

    expired: list[int] = []
    for booking_id in candidates:
        async with session_factory() as db:
            booking = await _expire_one(db, booking_id, now)
        if booking is None:
            continue

        expired.append(booking_id)
        booking_expirations.inc()
        await dispatcher.publish_safely(
            booking.user_id,
            NotificationType.BOOKING_EXPIRED,
            "Booking Expired",
            f"Your booking for {booking.event_title} was cancelled because no payment "
            f"receipt arrived in time. The tickets have been released.",
            {
                "booking_id": booking.id,
                "event_id": booking.event_id,
                "reason": EXPIRY_REASON,
            },
        )

    if candidates:
        logger.info("expiry_sweep_completed", candidates=len(candidates), expired=len(expired))
    return expired


async def _expire_one(db: AsyncSession, booking_id: int, now: datetime) -> Optional[Booking]:
    try:
        await transition_booking(
            db,
            booking_id,
            BookingStatus.PENDING,
            BookingStatus.CANCELLED,
            Booking.receipt_submitted_at.is_(None),
            Booking.expires_at <= now,
            payment_status=PaymentStatus.FAILED,
            cancelled_at=now,
            cancellation_reason=EXPIRY_REASON,
        )
    except InvalidStateTransitionError:
        await db.rollback()
        logger.info("expiry_skipped", booking_id=booking_id)
        return None

    try:
        released = await InventoryLedger(db).release_booking(booking_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("booking_expired", booking_id=booking_id, released=released)
    return await load_booking(db, booking_id)


class ExpirySweeper:
    """Runs expire_stale_bookings on a fixed interval until stopped."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: NotificationDispatcher,
        interval: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.interval = settings.EXPIRY_SWEEP_INTERVAL_SECONDS if interval is None else interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("expiry_sweeper_started", interval=self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("expiry_sweeper_stopped")

    async def _run(self) -> None:
        while True:
            try:
                await expire_stale_bookings(self.session_factory, self.dispatcher)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("expiry_sweep_failed", error=str(e))
            await asyncio.sleep(self.interval)
