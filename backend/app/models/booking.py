"""
Booking aggregate: a user's claim on tickets for one event.

Key design decisions:
- No foreign key to events: a booking is a financial record and must outlive
  its event, so it keeps the event id plus denormalized title/date
- Line items store the unit price captured at reservation time
- `expires_at` is the hold deadline for unpaid bookings; `receipt_submitted_at`
  takes the booking out of the expiry sweep and blocks a second receipt
- Status field allows cancellation without deleting records
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin


class BookingStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class PaymentStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    event_id = Column(Integer, nullable=False, index=True)
    event_title = Column(String(255), nullable=False)
    event_date = Column(DateTime(timezone=True), nullable=True)
    event_owner_id = Column(String(64), nullable=False)

    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(8), nullable=False, default="USD")
    payment_method = Column(String(32), nullable=False)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING)
    notes = Column(String(1000), nullable=True)

    expires_at = Column(DateTime(timezone=True), nullable=True)
    receipt_submitted_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String(255), nullable=True)

    items = relationship(
        "BookingItem",
        back_populates="booking",
        lazy="selectin",
        order_by="BookingItem.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="check_booking_total_non_negative"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled')", name="check_booking_status"
        ),
        CheckConstraint(
            "payment_status IN ('pending', 'completed', 'failed', 'refunded')",
            name="check_booking_payment_status",
        ),
        # Expiry sweep: pending bookings ordered by deadline
        Index("ix_bookings_status_expires", "status", "expires_at"),
    )

    @property
    def ticket_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, user={self.user_id}, event={self.event_id}, status={self.status})>"


class BookingItem(Base):
    __tablename__ = "booking_items"

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    category_name = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)

    booking = relationship("Booking", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_item_quantity_positive"),
    )

    @property
    def subtotal(self):
        return self.unit_price * self.quantity
