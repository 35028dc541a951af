from app.schemas.event import (
    EventCreate,
    EventResponse,
    EventStatusUpdate,
    TicketCategoryUpdate,
)
from app.schemas.booking import BookingCancel, BookingCreate, BookingResponse
from app.schemas.payment_receipt import (
    PaymentReceiptCreate,
    PaymentReceiptResponse,
    ReceiptResolution,
    ReceiptResolutionResponse,
)
from app.schemas.notification import NotificationResponse, NotificationListResponse
from app.schemas.ticket import TicketResponse, TicketCheckIn

__all__ = [
    "EventCreate", "EventResponse", "EventStatusUpdate", "TicketCategoryUpdate",
    "BookingCancel", "BookingCreate", "BookingResponse",
    "PaymentReceiptCreate", "PaymentReceiptResponse", "ReceiptResolution", "ReceiptResolutionResponse",
    "NotificationResponse", "NotificationListResponse",
    "TicketResponse", "TicketCheckIn",
]
