from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.common import UTCDateTime


class TicketResponse(BaseModel):
    code: str
    booking_id: int
    event_id: int
    user_id: str
    quantity: int
    verification_hash: str
    status: str
    valid_until: Optional[UTCDateTime]
    used_at: Optional[UTCDateTime]

    model_config = {"from_attributes": True}


class TicketCheckIn(BaseModel):
    verification_hash: str = Field(..., min_length=64, max_length=64)
