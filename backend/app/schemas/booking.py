"""
Pydantic schemas for booking-related request/response validation.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.schemas.common import UTCDateTime


class TicketRequest(BaseModel):
    type: str = Field(..., min_length=1, max_length=100)
    quantity: int = Field(..., gt=0, le=100)


class BookingCreate(BaseModel):
    event_id: int
    tickets: list[TicketRequest] = Field(..., min_length=1, max_length=20)
    payment_method: str = Field(..., min_length=1, max_length=32)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("tickets")
    @classmethod
    def unique_ticket_types(cls, tickets: list[TicketRequest]):
        types = [t.type for t in tickets]
        if len(types) != len(set(types)):
            raise ValueError("Each ticket type may appear only once")
        return tickets


class BookingItemResponse(BaseModel):
    category_name: str
    quantity: int
    unit_price: Decimal

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: int
    user_id: str
    event_id: int
    event_title: str
    event_date: Optional[UTCDateTime]
    items: list[BookingItemResponse]
    total_amount: Decimal
    currency: str
    payment_method: str
    payment_status: str
    status: str
    notes: Optional[str]
    expires_at: Optional[UTCDateTime]
    receipt_submitted_at: Optional[UTCDateTime]
    confirmed_at: Optional[UTCDateTime]
    cancelled_at: Optional[UTCDateTime]
    cancellation_reason: Optional[str]
    created_at: UTCDateTime

    model_config = {"from_attributes": True}


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
