"""
Payment receipt upload and organizer verification.
"""

from typing import Literal, Optional

from fastapi import APIRouter, Body, Depends, Query, status

from app.api.dependencies import get_receipt_verifier
from app.core.security import CurrentUser, get_current_user
from app.schemas.booking import BookingResponse
from app.schemas.payment_receipt import (
    PaymentReceiptCreate,
    PaymentReceiptResponse,
    ReceiptResolution,
    ReceiptResolutionResponse,
)
from app.schemas.ticket import TicketResponse
from app.services.payment_receipt_service import PaymentReceiptVerifier

router = APIRouter(prefix="/payment-receipts", tags=["Payment Receipts"])


@router.post("/", response_model=PaymentReceiptResponse, status_code=status.HTTP_201_CREATED)
async def submit_receipt(
    receipt_data: PaymentReceiptCreate,
    user: CurrentUser = Depends(get_current_user),
    verifier: PaymentReceiptVerifier = Depends(get_receipt_verifier),
):
    """
    Attach proof of payment to a pending booking.
    One receipt per booking, accepted only while the hold window is open.
    """
    return await verifier.submit(user, receipt_data)


@router.get("/", response_model=list[PaymentReceiptResponse])
async def list_receipts(
    receipt_status: Optional[Literal["pending", "confirmed", "rejected"]] = Query(None, alias="status"),
    user: CurrentUser = Depends(get_current_user),
    verifier: PaymentReceiptVerifier = Depends(get_receipt_verifier),
):
    """Receipts on the caller's events (all events for admins)."""
    return await verifier.list_for_verifier(user, receipt_status)


@router.get("/mine", response_model=list[PaymentReceiptResponse])
async def list_my_receipts(
    user: CurrentUser = Depends(get_current_user),
    verifier: PaymentReceiptVerifier = Depends(get_receipt_verifier),
):
    """Receipts the caller submitted, so a payer can follow verification."""
    return await verifier.list_for_payer(user)


@router.post("/{receipt_id}/confirm", response_model=ReceiptResolutionResponse)
async def confirm_receipt(
    receipt_id: int,
    resolution: Optional[ReceiptResolution] = Body(None),
    user: CurrentUser = Depends(get_current_user),
    verifier: PaymentReceiptVerifier = Depends(get_receipt_verifier),
):
    notes = resolution.verification_notes if resolution else None
    receipt, booking, ticket = await verifier.confirm(receipt_id, user, notes)
    return ReceiptResolutionResponse(
        receipt=PaymentReceiptResponse.model_validate(receipt),
        booking=BookingResponse.model_validate(booking),
        ticket=TicketResponse.model_validate(ticket),
    )


@router.post("/{receipt_id}/reject", response_model=ReceiptResolutionResponse)
async def reject_receipt(
    receipt_id: int,
    resolution: Optional[ReceiptResolution] = Body(None),
    user: CurrentUser = Depends(get_current_user),
    verifier: PaymentReceiptVerifier = Depends(get_receipt_verifier),
):
    notes = resolution.verification_notes if resolution else None
    receipt, booking = await verifier.reject(receipt_id, user, notes)
    return ReceiptResolutionResponse(
        receipt=PaymentReceiptResponse.model_validate(receipt),
        booking=BookingResponse.model_validate(booking),
    )
