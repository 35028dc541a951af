"""
Reservation tokens issued by the inventory ledger.

A token is created `outstanding` when units are reserved, together with the
category price at that instant, and leaves that state exactly once:
`released` (units returned) or `finalized` (units sold).
"""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Numeric, String

from app.db.base import Base, TimestampMixin


class ReservationStatus:
    OUTSTANDING = "outstanding"
    RELEASED = "released"
    FINALIZED = "finalized"


def new_token() -> str:
    return uuid.uuid4().hex


class Reservation(Base, TimestampMixin):
    __tablename__ = "reservations"

    id = Column(String(32), primary_key=True, default=new_token)
    event_id = Column(Integer, nullable=False)
    category_name = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), nullable=False, default=ReservationStatus.OUTSTANDING)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True, index=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_reservation_quantity_positive"),
        CheckConstraint(
            "status IN ('outstanding', 'released', 'finalized')", name="check_reservation_status"
        ),
        Index("ix_reservations_event_category", "event_id", "category_name"),
    )

    def __repr__(self) -> str:
        return (
            f"<Reservation(token={self.id}, event={self.event_id}, "
            f"category={self.category_name}, qty={self.quantity}, status={self.status})>"
        )
