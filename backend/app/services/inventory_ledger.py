"""
Inventory ledger: the only code path that touches reserved/confirmed counters.

CONCURRENCY STRATEGY: Conditional Update (compare-and-swap on the counter)
=========================================================================

Problem:
  Two attendees try to take the last ticket of a category simultaneously.
  Both read reserved_count=capacity-1, both increment, both succeed.
  Result: Oversell.

Solution:
  The capacity check and the increment are one statement:

    UPDATE ticket_categories
       SET reserved_count = reserved_count + :q
     WHERE event_id = :event AND name = :category
       AND is_active AND reserved_count + :q <= capacity

  A returned row (carrying the unit price at that instant) means the units
  are ours; no row means the category is full (or inactive/missing) and
  nothing was written. The row lock taken by the
  UPDATE serializes writers per (event_id, category); other categories and
  events never wait on each other. No version column or retry loop is needed
  because the predicate is re-evaluated against the committed row.

Tokens:
  Each successful reserve inserts a `reservations` row. Leaving `outstanding`
  is itself a guarded UPDATE, so release/finalize happen at most once per token
  even if several workers race (release twice == release once).

  The CHECK constraints on ticket_categories remain the final safety net.
"""

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    CapacityExceededError,
    InvalidCategoryError,
    ReservationNotOutstandingError,
    ValidationError,
)
from app.core.logging import get_logger
from app.core.metrics import record_ledger_operation
from app.core.timeutils import utcnow
from app.models.event import TicketCategory
from app.models.reservation import Reservation, ReservationStatus

logger = get_logger(__name__)


class InventoryLedger:
    """Atomic reserve/release/finalize inside the caller's unit of work."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def reserve(self, event_id: int, category_name: str, quantity: int) -> Reservation:
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero", {"quantity": quantity})

        result = await self.db.execute(
            update(TicketCategory)
            .where(
                TicketCategory.event_id == event_id,
                TicketCategory.name == category_name,
                TicketCategory.is_active.is_(True),
                TicketCategory.reserved_count + quantity <= TicketCategory.capacity,
            )
            .values(reserved_count=TicketCategory.reserved_count + quantity)
            .returning(TicketCategory.unit_price)
            .execution_options(synchronize_session=False)
        )
        granted = result.first()

        if granted is None:
            remaining = await self._remaining(event_id, category_name)
            if remaining is None:
                raise InvalidCategoryError(category_name)
            record_ledger_operation("reserve", "conflict")
            logger.warning(
                "reserve_rejected",
                event_id=event_id,
                category=category_name,
                requested=quantity,
                remaining=remaining,
            )
            raise CapacityExceededError(category_name, quantity, remaining)

        reservation = Reservation(
            event_id=event_id,
            category_name=category_name,
            quantity=quantity,
            unit_price=granted[0],
            status=ReservationStatus.OUTSTANDING,
        )
        self.db.add(reservation)
        await self.db.flush()

        record_ledger_operation("reserve", "ok")
        logger.info(
            "units_reserved",
            token=reservation.id,
            event_id=event_id,
            category=category_name,
            quantity=quantity,
        )
        return reservation

    async def release(self, token: str) -> bool:
        """
        Return the token's units to the category.
        Returns False when the token was already released (no-op).
        """
        reservation = await self._load(token)
        if reservation is None:
            raise ReservationNotOutstandingError(token, None)

        result = await self.db.execute(
            update(Reservation)
            .where(Reservation.id == token, Reservation.status == ReservationStatus.OUTSTANDING)
            .values(status=ReservationStatus.RELEASED, resolved_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = await self._status(token)
            if current == ReservationStatus.RELEASED:
                record_ledger_operation("release", "noop")
                logger.info("release_noop", token=token)
                return False
            raise ReservationNotOutstandingError(token, current)

        await self._adjust(
            reservation,
            values={"reserved_count": TicketCategory.reserved_count - reservation.quantity},
            guard=TicketCategory.reserved_count - reservation.quantity >= TicketCategory.confirmed_count,
        )
        record_ledger_operation("release", "ok")
        logger.info(
            "units_released",
            token=token,
            event_id=reservation.event_id,
            category=reservation.category_name,
            quantity=reservation.quantity,
        )
        return True

    async def finalize(self, token: str) -> None:
        """Convert an outstanding reservation into sold units."""
        reservation = await self._load(token)
        if reservation is None:
            raise ReservationNotOutstandingError(token, None)

        result = await self.db.execute(
            update(Reservation)
            .where(Reservation.id == token, Reservation.status == ReservationStatus.OUTSTANDING)
            .values(status=ReservationStatus.FINALIZED, resolved_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            record_ledger_operation("finalize", "conflict")
            raise ReservationNotOutstandingError(token, await self._status(token))

        await self._adjust(
            reservation,
            values={"confirmed_count": TicketCategory.confirmed_count + reservation.quantity},
            guard=TicketCategory.confirmed_count + reservation.quantity <= TicketCategory.reserved_count,
        )
        record_ledger_operation("finalize", "ok")
        logger.info(
            "units_finalized",
            token=token,
            event_id=reservation.event_id,
            category=reservation.category_name,
            quantity=reservation.quantity,
        )

    async def attach(self, tokens: list[str], booking_id: int) -> None:
        await self.db.execute(
            update(Reservation)
            .where(Reservation.id.in_(tokens))
            .values(booking_id=booking_id)
            .execution_options(synchronize_session=False)
        )

    async def outstanding_for_booking(self, booking_id: int) -> list[str]:
        result = await self.db.execute(
            select(Reservation.id)
            .where(
                Reservation.booking_id == booking_id,
                Reservation.status == ReservationStatus.OUTSTANDING,
            )
            .order_by(Reservation.category_name)
        )
        return list(result.scalars().all())

    async def release_booking(self, booking_id: int) -> int:
        released = 0
        for token in await self.outstanding_for_booking(booking_id):
            if await self.release(token):
                released += 1
        return released

    async def finalize_booking(self, booking_id: int) -> int:
        tokens = await self.outstanding_for_booking(booking_id)
        for token in tokens:
            await self.finalize(token)
        return len(tokens)

    async def counters(self, event_id: int, category_name: str) -> Optional[dict]:
        row = (
            await self.db.execute(
                select(
                    TicketCategory.capacity,
                    TicketCategory.reserved_count,
                    TicketCategory.confirmed_count,
                ).where(
                    TicketCategory.event_id == event_id,
                    TicketCategory.name == category_name,
                )
            )
        ).one_or_none()
        if row is None:
            return None
        return {"capacity": row[0], "reserved": row[1], "confirmed": row[2]}

    async def _adjust(self, reservation: Reservation, values: dict, guard) -> None:
        result = await self.db.execute(
            update(TicketCategory)
            .where(
                TicketCategory.event_id == reservation.event_id,
                TicketCategory.name == reservation.category_name,
                guard,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.error(
                "ledger_counters_inconsistent",
                token=reservation.id,
                event_id=reservation.event_id,
                category=reservation.category_name,
            )
            raise RuntimeError(
                f"Ledger counters for event {reservation.event_id} "
                f"category '{reservation.category_name}' rejected token {reservation.id}"
            )

    async def _load(self, token: str) -> Optional[Reservation]:
        result = await self.db.execute(select(Reservation).where(Reservation.id == token))
        return result.scalar_one_or_none()

    async def _status(self, token: str) -> Optional[str]:
        result = await self.db.execute(select(Reservation.status).where(Reservation.id == token))
        return result.scalar_one_or_none()

    async def _remaining(self, event_id: int, category_name: str) -> Optional[int]:
        row = (
            await self.db.execute(
                select(
                    TicketCategory.capacity - TicketCategory.reserved_count,
                    TicketCategory.is_active,
                ).where(
                    TicketCategory.event_id == event_id,
                    TicketCategory.name == category_name,
                )
            )
        ).one_or_none()
        if row is None or not row[1]:
            return None
        return max(row[0], 0)
