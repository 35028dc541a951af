"""
Domain error taxonomy.

Every error carries a machine-readable code and the HTTP status the API
layer renders it with. Services raise these; `register_exception_handlers`
turns them into `{"code", "message", "details"}` responses.
"""

from enum import Enum
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.core.logging import get_logger

logger = get_logger(__name__)


class ErrorCode(str, Enum):
    CAPACITY_EXCEEDED = "capacity_exceeded"
    INVALID_CATEGORY = "invalid_category"
    INVALID_PAYMENT_METHOD = "invalid_payment_method"
    EVENT_NOT_BOOKABLE = "event_not_bookable"
    SELF_BOOKING_FORBIDDEN = "self_booking_forbidden"
    VALIDATION_ERROR = "validation_error"
    FORBIDDEN = "forbidden"
    EVENT_NOT_FOUND = "event_not_found"
    BOOKING_NOT_FOUND = "booking_not_found"
    RECEIPT_NOT_FOUND = "receipt_not_found"
    NOTIFICATION_NOT_FOUND = "notification_not_found"
    TICKET_NOT_FOUND = "ticket_not_found"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    RECEIPT_ALREADY_SUBMITTED = "receipt_already_submitted"
    RESERVATION_NOT_OUTSTANDING = "reservation_not_outstanding"
    INVALID_TICKET = "invalid_ticket"


class BookingCoreError(Exception):
    """Base class for all domain errors."""

    code: ErrorCode = ErrorCode.VALIDATION_ERROR
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class ValidationError(BookingCoreError):
    code = ErrorCode.VALIDATION_ERROR


class CapacityExceededError(BookingCoreError):
    """Raised when a category cannot cover the requested quantity."""

    code = ErrorCode.CAPACITY_EXCEEDED
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, category_name: str, requested: int, remaining: Optional[int]):
        self.category_name = category_name
        self.requested = requested
        self.remaining = remaining
        if remaining is None:
            message = f"Not enough '{category_name}' tickets left"
        else:
            message = (
                f"Not enough '{category_name}' tickets left. "
                f"Requested: {requested}, Available: {remaining}"
            )
        super().__init__(
            message,
            {"category": category_name, "requested": requested, "remaining": remaining},
        )


class InvalidCategoryError(BookingCoreError):
    code = ErrorCode.INVALID_CATEGORY

    def __init__(self, category_name: str, reason: str = "does not exist on this event"):
        super().__init__(
            f"Ticket category '{category_name}' {reason}",
            {"category": category_name},
        )


class InvalidPaymentMethodError(BookingCoreError):
    code = ErrorCode.INVALID_PAYMENT_METHOD

    def __init__(self, method: str, accepted: list[str]):
        super().__init__(
            f"Payment method '{method}' is not accepted for this event",
            {"payment_method": method, "accepted": accepted},
        )


class EventNotBookableError(BookingCoreError):
    code = ErrorCode.EVENT_NOT_BOOKABLE
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, event_id: int, reason: str):
        super().__init__(
            f"Event {event_id} is not open for booking: {reason}",
            {"event_id": event_id, "reason": reason},
        )


class SelfBookingForbiddenError(BookingCoreError):
    code = ErrorCode.SELF_BOOKING_FORBIDDEN
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, event_id: int):
        super().__init__(
            "You cannot book tickets for your own event",
            {"event_id": event_id},
        )


class ForbiddenError(BookingCoreError):
    code = ErrorCode.FORBIDDEN
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(BookingCoreError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, code: ErrorCode, resource: str, identifier: Any):
        self.code = code
        super().__init__(f"{resource} {identifier} not found", {"id": identifier})


class InvalidStateTransitionError(BookingCoreError):
    """Raised when a transition is attempted from a non-matching state."""

    code = ErrorCode.INVALID_STATE_TRANSITION
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, entity: str, from_state: str, to_state: str):
        self.entity = entity
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Illegal {entity} state transition attempted: {from_state} -> {to_state}",
            {"entity": entity, "from": from_state, "to": to_state},
        )


class PaymentWindowExpiredError(InvalidStateTransitionError):
    def __init__(self, booking_id: int):
        super().__init__("booking", "expired", "receipt_submitted")
        self.message = f"The payment window for booking {booking_id} has expired"
        self.details["booking_id"] = booking_id


class ReceiptAlreadySubmittedError(BookingCoreError):
    code = ErrorCode.RECEIPT_ALREADY_SUBMITTED
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, booking_id: int):
        super().__init__(
            "A payment receipt has already been submitted for this booking",
            {"booking_id": booking_id},
        )


class ReservationNotOutstandingError(BookingCoreError):
    code = ErrorCode.RESERVATION_NOT_OUTSTANDING
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, token: str, current: Optional[str]):
        super().__init__(
            f"Reservation {token} is not outstanding (status: {current})",
            {"reservation": token, "status": current},
        )


class InvalidTicketError(BookingCoreError):
    code = ErrorCode.INVALID_TICKET

    def __init__(self, ticket_code: str, reason: str):
        super().__init__(
            f"Ticket {ticket_code} is not valid: {reason}",
            {"ticket": ticket_code, "reason": reason},
        )


async def booking_core_error_handler(request: Request, exc: BookingCoreError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "domain_error",
        code=exc.code.value,
        status_code=exc.status_code,
        error=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": exc.code.value, "message": exc.message, "details": exc.details},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingCoreError, booking_core_error_handler)
