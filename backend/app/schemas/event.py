"""
Pydantic schemas for event-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from app.schemas.common import UTCDateTime


class TicketCategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    unit_price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    capacity: int = Field(..., gt=0, le=100000)


class PaymentMethodCreate(BaseModel):
    type: str = Field(..., min_length=1, max_length=32)
    details: Optional[dict] = None
    is_active: bool = True


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    date: datetime
    time: Optional[str] = Field(None, max_length=20)
    location: Optional[str] = Field(None, max_length=255)
    currency: str = Field("USD", min_length=3, max_length=8)
    status: Literal["draft", "published"] = "published"
    categories: list[TicketCategoryCreate] = Field(..., min_length=1, max_length=20)
    payment_methods: list[PaymentMethodCreate] = Field(default_factory=list, max_length=10)

    @field_validator("categories")
    @classmethod
    def unique_category_names(cls, categories: list[TicketCategoryCreate]):
        names = [c.name for c in categories]
        if len(names) != len(set(names)):
            raise ValueError("Ticket category names must be unique")
        return categories


class TicketCategoryUpdate(BaseModel):
    unit_price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    capacity: Optional[int] = Field(None, ge=0, le=100000)
    is_active: Optional[bool] = None


class EventStatusUpdate(BaseModel):
    status: Literal["published", "cancelled", "postponed", "updated"]
    reason: Optional[str] = Field(None, max_length=1000)
    new_date: Optional[datetime] = None
    new_time: Optional[str] = Field(None, max_length=20)
    new_location: Optional[str] = Field(None, max_length=255)

    @model_validator(mode="after")
    def postponement_needs_date(self):
        if self.status == "postponed" and self.new_date is None:
            raise ValueError("A postponed event needs a new_date")
        return self


class TicketCategoryResponse(BaseModel):
    name: str
    unit_price: Decimal
    capacity: int
    reserved_count: int
    confirmed_count: int
    available: int
    is_active: bool

    model_config = {"from_attributes": True}


class PaymentMethodResponse(BaseModel):
    type: str = Field(validation_alias=AliasChoices("method_type", "type"))
    details: Optional[dict] = None
    is_active: bool

    model_config = {"from_attributes": True}


class EventResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    date: UTCDateTime
    time: Optional[str]
    location: Optional[str]
    currency: str
    owner_id: str
    status: str
    status_details: Optional[dict]
    categories: list[TicketCategoryResponse]
    payment_methods: list[PaymentMethodResponse]
    created_at: UTCDateTime

    model_config = {"from_attributes": True}
