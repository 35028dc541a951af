"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter

from app.api.routes import bookings, events, notifications, payment_receipts, tickets, ws

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(events.router)
api_router.include_router(bookings.router)
api_router.include_router(payment_receipts.router)
api_router.include_router(notifications.router)
api_router.include_router(tickets.router)
api_router.include_router(ws.router)
