"""
Legal lifecycle transitions for bookings and payment receipts.

Services consult these tables before issuing a guarded UPDATE; the guard
(`WHERE status = :from`) enforces the same rule against concurrent writers.
"""

from typing import Dict, Set

from app.core.exceptions import InvalidStateTransitionError
from app.models.booking import BookingStatus
from app.models.payment_receipt import ReceiptStatus


class _StateMachine:
    entity: str = ""
    _ALLOWED_TRANSITIONS: Dict[str, Set[str]] = {}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)
        return to_status in cls._ALLOWED_TRANSITIONS[from_status]

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Raises InvalidStateTransitionError if the transition is illegal."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(cls.entity, from_status, to_status)

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        cls._ensure_valid_status(status)
        return not cls._ALLOWED_TRANSITIONS[status]

    @classmethod
    def _ensure_valid_status(cls, status: str) -> None:
        if status not in cls._ALLOWED_TRANSITIONS:
            raise ValueError(f"Unknown {cls.entity} status: {status!r}")


class BookingStateMachine(_StateMachine):
    entity = "booking"
    _ALLOWED_TRANSITIONS = {
        BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
        BookingStatus.CONFIRMED: set(),
        BookingStatus.CANCELLED: set(),
    }


class ReceiptStateMachine(_StateMachine):
    entity = "receipt"
    _ALLOWED_TRANSITIONS = {
        ReceiptStatus.PENDING: {ReceiptStatus.CONFIRMED, ReceiptStatus.REJECTED},
        ReceiptStatus.CONFIRMED: set(),
        ReceiptStatus.REJECTED: set(),
    }
