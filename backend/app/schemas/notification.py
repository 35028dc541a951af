"""
Pydantic schemas for the notification log.
"""

from typing import Optional

from pydantic import BaseModel

from app.schemas.common import UTCDateTime


class NotificationResponse(BaseModel):
    id: int
    user_id: str
    type: str
    title: str
    message: str
    payload: dict
    read: bool
    read_at: Optional[UTCDateTime]
    created_at: UTCDateTime

    model_config = {"from_attributes": True}


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    unread_count: int


class MarkAllReadResponse(BaseModel):
    updated: int


class ReplayPageResponse(BaseModel):
    notifications: list[NotificationResponse]
    has_more: bool
    next_since: Optional[UTCDateTime] = None
    next_since_id: Optional[int] = None
