"""
Durable per-user notification log.

Rows are append-only apart from the read flag. `(user_id, created_at, id)` is
both the replay order and its index.
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String

from app.core.timeutils import utcnow
from app.db.base import Base


class NotificationType:
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_EXPIRED = "booking_expired"
    PAYMENT_REMINDER = "payment_reminder"
    PAYMENT_RECEIPT = "payment_receipt"
    PAYMENT_CONFIRMED = "payment_confirmed"
    PAYMENT_REJECTED = "payment_rejected"
    TICKET_GENERATED = "ticket_generated"
    EVENT_POSTPONED = "event_postponed"
    EVENT_CANCELLED = "event_cancelled"
    EVENT_UPDATE = "event_update"

    ALL = (
        BOOKING_CONFIRMED,
        BOOKING_CANCELLED,
        BOOKING_EXPIRED,
        PAYMENT_REMINDER,
        PAYMENT_RECEIPT,
        PAYMENT_CONFIRMED,
        PAYMENT_REJECTED,
        TICKET_GENERATED,
        EVENT_POSTPONED,
        EVENT_CANCELLED,
        EVENT_UPDATE,
    )


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False)
    type = Column(String(32), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(String(2000), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at", "id"),
    )

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, user={self.user_id}, type={self.type}, read={self.read})>"
