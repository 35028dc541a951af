"""
Admission tickets issued once a booking's payment is verified.
"""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String

from app.db.base import Base, TimestampMixin


class TicketStatus:
    VALID = "valid"
    USED = "used"


class Ticket(Base, TimestampMixin):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True)
    code = Column(String(32), nullable=False, unique=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, unique=True)
    receipt_id = Column(Integer, ForeignKey("payment_receipts.id"), nullable=True)
    event_id = Column(Integer, nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    verification_hash = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False, default=TicketStatus.VALID)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
    checked_in_by = Column(String(64), nullable=True)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_ticket_quantity_positive"),
        CheckConstraint("status IN ('valid', 'used')", name="check_ticket_status"),
    )

    def __repr__(self) -> str:
        return f"<Ticket(code={self.code}, booking={self.booking_id}, status={self.status})>"
