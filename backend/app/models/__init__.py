from app.models.event import Event, EventPaymentMethod, TicketCategory
from app.models.booking import Booking, BookingItem
from app.models.reservation import Reservation
from app.models.payment_receipt import PaymentReceipt
from app.models.notification import Notification
from app.models.ticket import Ticket

__all__ = [
    "Event",
    "EventPaymentMethod",
    "TicketCategory",
    "Booking",
    "BookingItem",
    "Reservation",
    "PaymentReceipt",
    "Notification",
    "Ticket",
]
