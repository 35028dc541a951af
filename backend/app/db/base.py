"""
Declarative base and shared column mixins.
"""

from sqlalchemy import Column, DateTime
from sqlalchemy.orm import declarative_base

from app.core.timeutils import utcnow

Base = declarative_base()


class TimestampMixin:
    # Application-side defaults keep microsecond precision on every backend,
    # which replay ordering relies on.
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
