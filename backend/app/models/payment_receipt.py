"""
Proof of an off-platform payment awaiting manual verification.
"""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Numeric, String

from app.db.base import Base, TimestampMixin


class ReceiptStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class PaymentReceipt(Base, TimestampMixin):
    __tablename__ = "payment_receipts"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, unique=True)
    event_id = Column(Integer, nullable=False)
    event_owner_id = Column(String(64), nullable=False)
    user_id = Column(String(64), nullable=False, index=True)

    proof_ref = Column(String(500), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(8), nullable=False, default="USD")
    payment_method = Column(String(32), nullable=False)
    transaction_reference = Column(String(255), nullable=True)
    notes = Column(String(1000), nullable=True)

    status = Column(String(20), nullable=False, default=ReceiptStatus.PENDING)
    verified_by = Column(String(64), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    verification_notes = Column(String(1000), nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="check_receipt_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'rejected')", name="check_receipt_status"
        ),
        # Organizer verification queue
        Index("ix_receipts_owner_status", "event_owner_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<PaymentReceipt(id={self.id}, booking={self.booking_id}, status={self.status})>"
