"""
Request-scoped service wiring.

The dispatcher is built once by the app lifespan and stored on app.state;
routes reach it (and everything built on it) only through these dependencies,
which tests override.
"""

from fastapi import Depends
from starlette.requests import HTTPConnection
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.services.booking_service import BookingOrchestrator
from app.services.interfaces.authorization import ReceiptAuthorizer
from app.services.notification_service import NotificationDispatcher
from app.services.payment_receipt_service import PaymentReceiptVerifier
from app.services.strategy_factory import get_authorizer


def get_dispatcher(connection: HTTPConnection) -> NotificationDispatcher:
    return connection.app.state.dispatcher


def get_orchestrator(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> BookingOrchestrator:
    return BookingOrchestrator(db, dispatcher)


def get_receipt_verifier(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    authorizer: ReceiptAuthorizer = Depends(get_authorizer),
) -> PaymentReceiptVerifier:
    return PaymentReceiptVerifier(db, dispatcher, authorizer)
