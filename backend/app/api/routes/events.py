"""
Event endpoints: creation, category edits and organizer status changes.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_dispatcher
from app.core.security import CurrentUser, get_current_user, get_current_user_id
from app.db.session import get_db
from app.schemas.event import EventCreate, EventResponse, EventStatusUpdate, TicketCategoryUpdate
from app.services import event_service
from app.services.interfaces.authorization import ReceiptAuthorizer
from app.services.notification_service import NotificationDispatcher
from app.services.strategy_factory import get_authorizer

router = APIRouter(prefix="/events", tags=["Events"])


@router.post("/", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event(
    event_data: EventCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Create an event owned by the caller."""
    return await event_service.create_event(db, event_data, user_id)


@router.get("/{event_id}", response_model=EventResponse)
async def get_event(
    event_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get a single event with live category counters."""
    return await event_service.get_event(db, event_id)


@router.patch("/{event_id}/categories/{category_name}", response_model=EventResponse)
async def update_category(
    event_id: int,
    category_name: str,
    changes: TicketCategoryUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    authorizer: ReceiptAuthorizer = Depends(get_authorizer),
):
    return await event_service.update_category(db, event_id, category_name, changes, user, authorizer)


@router.patch("/{event_id}/status", response_model=EventResponse)
async def change_event_status(
    event_id: int,
    data: EventStatusUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    authorizer: ReceiptAuthorizer = Depends(get_authorizer),
):
    """Publish, postpone, cancel or update an event and tell every ticket holder."""
    return await event_service.change_status(db, dispatcher, event_id, data, user, authorizer)
