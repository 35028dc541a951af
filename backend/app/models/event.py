"""
Event aggregate: the event itself, its ticket categories and payment methods.

Key design decisions:
- Ledger counters live on `ticket_categories`, one row per (event_id, name),
  so each category is its own unit of contention
- CHECK constraints mirror the ledger invariant 0 <= confirmed <= reserved <= capacity
  and act as the final safety net under the conditional updates
- A postponement or update rewrites date/time/location in place; `status_details`
  keeps the organizer's reason and the original values
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.core.timeutils import as_utc
from app.db.base import Base, TimestampMixin


class EventStatus:
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"
    POSTPONED = "postponed"
    UPDATED = "updated"

    ALL = (DRAFT, PUBLISHED, CANCELLED, POSTPONED, UPDATED)


PAY_AT_EVENT = "pay_at_event"


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(String(2000), nullable=True)
    date = Column(DateTime(timezone=True), nullable=False)
    time = Column(String(20), nullable=True)
    location = Column(String(255), nullable=True)
    currency = Column(String(8), nullable=False, default="USD")
    owner_id = Column(String(64), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=EventStatus.PUBLISHED)
    status_details = Column(JSON, nullable=True)

    categories = relationship(
        "TicketCategory",
        back_populates="event",
        lazy="selectin",
        order_by="TicketCategory.id",
        cascade="all, delete-orphan",
    )
    payment_methods = relationship(
        "EventPaymentMethod",
        back_populates="event",
        lazy="selectin",
        order_by="EventPaymentMethod.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'published', 'cancelled', 'postponed', 'updated')",
            name="check_event_status",
        ),
        Index("ix_events_date", "date"),
    )

    @property
    def starts_at(self):
        """`date` as an aware UTC datetime. A postponement rewrites `date` itself."""
        return as_utc(self.date)

    def category(self, name: str):
        return next((c for c in self.categories if c.name == name), None)

    def active_payment_methods(self) -> list[str]:
        return [m.method_type for m in self.payment_methods if m.is_active]

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title}, status={self.status})>"


class TicketCategory(Base, TimestampMixin):
    __tablename__ = "ticket_categories"

    id = Column(Integer, primary_key=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    capacity = Column(Integer, nullable=False)
    reserved_count = Column(Integer, nullable=False, default=0)
    confirmed_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    event = relationship("Event", back_populates="categories")

    __table_args__ = (
        UniqueConstraint("event_id", "name", name="uq_category_event_name"),
        CheckConstraint("capacity >= 0", name="check_category_capacity_non_negative"),
        CheckConstraint("unit_price >= 0", name="check_category_price_non_negative"),
        CheckConstraint("confirmed_count >= 0", name="check_confirmed_non_negative"),
        CheckConstraint("confirmed_count <= reserved_count", name="check_confirmed_lte_reserved"),
        CheckConstraint("reserved_count <= capacity", name="check_reserved_lte_capacity"),
    )

    @property
    def available(self) -> int:
        return self.capacity - self.reserved_count

    def __repr__(self) -> str:
        return (
            f"<TicketCategory(event={self.event_id}, name={self.name}, "
            f"reserved={self.reserved_count}/{self.capacity}, confirmed={self.confirmed_count})>"
        )


class EventPaymentMethod(Base):
    __tablename__ = "event_payment_methods"

    id = Column(Integer, primary_key=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    method_type = Column(String(32), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    details = Column(JSON, nullable=True)

    event = relationship("Event", back_populates="payment_methods")
