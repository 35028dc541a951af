"""
Notification log over HTTP. Live delivery is on the WebSocket route.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import get_dispatcher
from app.core.config import get_settings
from app.core.security import get_current_user_id
from app.schemas.notification import (
    MarkAllReadResponse,
    NotificationListResponse,
    NotificationResponse,
    ReplayPageResponse,
)
from app.services.notification_service import NotificationDispatcher

settings = get_settings()
router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("/", response_model=NotificationListResponse)
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Newest first, with the total unread count."""
    notifications, unread = await dispatcher.list_for_user(user_id, unread_only, limit)
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in notifications],
        unread_count=unread,
    )


@router.get("/replay", response_model=ReplayPageResponse)
async def replay_notifications(
    since: Optional[datetime] = Query(None),
    since_id: Optional[int] = Query(None),
    limit: int = Query(settings.REPLAY_MAX_ITEMS, ge=1, le=settings.REPLAY_MAX_ITEMS),
    user_id: str = Depends(get_current_user_id),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    One page of notifications after the cursor, oldest first.
    Clients pass the created_at and id of the last notification they processed
    and follow next_since/next_since_id while has_more is true.
    """
    page = await dispatcher.replay(user_id, since, since_id, limit)
    return ReplayPageResponse(
        notifications=[NotificationResponse.model_validate(n) for n in page.notifications],
        has_more=page.has_more,
        next_since=page.next_since,
        next_since_id=page.next_since_id,
    )


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
    user_id: str = Depends(get_current_user_id),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    return MarkAllReadResponse(updated=await dispatcher.mark_all_read(user_id))


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: int,
    user_id: str = Depends(get_current_user_id),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    return await dispatcher.mark_read(notification_id, user_id)
