"""
Booking endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, status

from app.api.dependencies import get_orchestrator
from app.core.security import CurrentUser, get_current_user, get_current_user_id
from app.schemas.booking import BookingCancel, BookingCreate, BookingResponse
from app.services.booking_service import BookingOrchestrator

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    user_id: str = Depends(get_current_user_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    """
    Reserve tickets for an event.

    Every requested category is reserved atomically; if any category cannot
    cover its quantity nothing is held and a 409 `capacity_exceeded` names it.
    Bookings paid at the event are confirmed immediately, all others stay
    pending until a payment receipt is verified or the hold window lapses.
    """
    return await orchestrator.create_booking(user_id, booking_data)


@router.get("/", response_model=list[BookingResponse])
async def list_user_bookings(
    user_id: str = Depends(get_current_user_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    """Get all bookings for the authenticated user."""
    return await orchestrator.list_user_bookings(user_id)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    user: CurrentUser = Depends(get_current_user),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.get_booking(booking_id, user)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: int,
    body: Optional[BookingCancel] = Body(None),
    user_id: str = Depends(get_current_user_id),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    """Cancel a pending booking and release its tickets."""
    reason = body.reason if body else None
    return await orchestrator.cancel_booking(booking_id, user_id, reason)
