"""
Pydantic schemas for payment receipt submission and resolution.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.booking import BookingResponse
from app.schemas.common import UTCDateTime
from app.schemas.ticket import TicketResponse


class PaymentReceiptCreate(BaseModel):
    event_id: int
    booking_id: int
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    proof_ref: str = Field(..., min_length=1, max_length=500)
    payment_method: str = Field(..., min_length=1, max_length=32)
    transaction_reference: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=1000)


class ReceiptResolution(BaseModel):
    verification_notes: Optional[str] = Field(None, max_length=1000)


class PaymentReceiptResponse(BaseModel):
    id: int
    booking_id: int
    event_id: int
    user_id: str
    proof_ref: str
    amount: Decimal
    currency: str
    payment_method: str
    transaction_reference: Optional[str]
    notes: Optional[str]
    status: str
    verified_by: Optional[str]
    verified_at: Optional[UTCDateTime]
    verification_notes: Optional[str]
    created_at: UTCDateTime

    model_config = {"from_attributes": True}


class ReceiptResolutionResponse(BaseModel):
    receipt: PaymentReceiptResponse
    booking: BookingResponse
    ticket: Optional[TicketResponse] = None
