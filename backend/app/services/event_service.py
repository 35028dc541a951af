"""
Event service: event creation, category edits and organizer status changes.
"""

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ErrorCode,
    ForbiddenError,
    InvalidCategoryError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from app.core.logging import get_logger
from app.core.security import CurrentUser
from app.core.timeutils import as_utc, utcnow
from app.models.booking import Booking, BookingStatus
from app.models.event import Event, EventPaymentMethod, EventStatus, TicketCategory
from app.models.notification import NotificationType
from app.models.ticket import Ticket, TicketStatus
from app.schemas.event import EventCreate, EventStatusUpdate, TicketCategoryUpdate
from app.services.interfaces.authorization import ReceiptAuthorizer
from app.services.notification_service import NotificationDispatcher
from app.services.ticket_service import valid_until_for

logger = get_logger(__name__)

_STATUS_NOTIFICATIONS = {
    EventStatus.POSTPONED: (NotificationType.EVENT_POSTPONED, "Event Postponed"),
    EventStatus.CANCELLED: (NotificationType.EVENT_CANCELLED, "Event Cancelled"),
    EventStatus.UPDATED: (NotificationType.EVENT_UPDATE, "Event Updated"),
    EventStatus.PUBLISHED: (NotificationType.EVENT_UPDATE, "Event Updated"),
}

_RESCHEDULING_STATUSES = (EventStatus.POSTPONED, EventStatus.UPDATED)


async def create_event(db: AsyncSession, event_data: EventCreate, owner_id: str) -> Event:
    """Create an event with all categories empty."""
    if as_utc(event_data.date) <= utcnow():
        raise ValidationError("Event date must be in the future", {"date": event_data.date.isoformat()})

    event = Event(
        title=event_data.title,
        description=event_data.description,
        date=as_utc(event_data.date),
        time=event_data.time,
        location=event_data.location,
        currency=event_data.currency,
        owner_id=owner_id,
        status=event_data.status,
        categories=[
            TicketCategory(
                name=c.name,
                unit_price=c.unit_price,
                capacity=c.capacity,
                reserved_count=0,
                confirmed_count=0,
                is_active=True,
            )
            for c in event_data.categories
        ],
        payment_methods=[
            EventPaymentMethod(method_type=m.type, details=m.details, is_active=m.is_active)
            for m in event_data.payment_methods
        ],
    )
    db.add(event)
    await db.commit()
    event = await get_event(db, event.id)

    logger.info(
        "event_created",
        event_id=event.id,
        title=event.title,
        owner_id=owner_id,
        categories=len(event.categories),
    )
    return event


async def get_event(db: AsyncSession, event_id: int) -> Event:
    result = await db.execute(
        select(Event).where(Event.id == event_id).execution_options(populate_existing=True)
    )
    event = result.scalar_one_or_none()
    if event is None:
        raise NotFoundError(ErrorCode.EVENT_NOT_FOUND, "Event", event_id)
    return event


async def update_category(
    db: AsyncSession,
    event_id: int,
    category_name: str,
    changes: TicketCategoryUpdate,
    user: CurrentUser,
    authorizer: ReceiptAuthorizer,
) -> Event:
    """
    Edit a category's price, capacity or sale flag.
    Price edits only affect future reservations; existing bookings keep the
    price captured when their units were reserved.
    """
    event = await get_event(db, event_id)
    if not await authorizer.can_manage_event(user, event.owner_id):
        raise ForbiddenError("Only the event organizer can edit categories", {"event_id": event_id})
    if event.category(category_name) is None:
        raise InvalidCategoryError(category_name)

    values = changes.model_dump(exclude_none=True)
    if not values:
        return event

    conditions = [TicketCategory.event_id == event_id, TicketCategory.name == category_name]
    if "capacity" in values:
        # Never shrink below what is already held.
        conditions.append(TicketCategory.reserved_count <= values["capacity"])

    result = await db.execute(
        update(TicketCategory)
        .where(*conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise ValidationError(
            "Capacity cannot be lower than the number of tickets already reserved",
            {"category": category_name, "capacity": values.get("capacity")},
        )
    await db.commit()

    logger.info(
        "category_updated",
        event_id=event_id,
        category=category_name,
        changes={k: str(v) for k, v in values.items()},
    )
    return await get_event(db, event_id)


async def change_status(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    event_id: int,
    data: EventStatusUpdate,
    user: CurrentUser,
    authorizer: ReceiptAuthorizer,
) -> Event:
    """
    Move the event to a new status and tell every holder of a live booking.

    A postponement or update writes the new date/time/location onto the
    event row and carries the new date to its bookings and unused tickets.
    The values they replaced stay in `status_details` as original_*.
    """
    event = await get_event(db, event_id)
    if not await authorizer.can_manage_event(user, event.owner_id):
        raise ForbiddenError("Only the event organizer can change the event status", {"event_id": event_id})
    if event.status == EventStatus.CANCELLED:
        raise InvalidStateTransitionError("event", event.status, data.status)

    new_date = as_utc(data.new_date) if data.new_date else None
    details = {
        "reason": data.reason,
        "new_date": new_date.isoformat() if new_date else None,
        "new_time": data.new_time,
        "new_location": data.new_location,
        "changed_at": utcnow().isoformat(),
    }
    schedule = _schedule_changes(event, new_date, data) if data.status in _RESCHEDULING_STATUSES else {}
    values = {"status": data.status, "status_details": details, **schedule}

    earlier = event.status_details or {}
    originals = {k: v for k, v in earlier.items() if k.startswith("original_")}
    if schedule and not originals:
        originals = {
            "original_date": as_utc(event.date).isoformat(),
            "original_time": event.time,
            "original_location": event.location,
        }
    details.update(originals)

    previous = event.status
    result = await db.execute(
        update(Event)
        .where(Event.id == event_id, Event.status == previous)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        current = await get_event(db, event_id)
        logger.warning(
            "event_status_change_lost",
            event_id=event_id,
            expected=previous,
            current=current.status,
            target=data.status,
        )
        raise InvalidStateTransitionError("event", current.status, data.status)

    if "date" in schedule:
        await _reschedule_holdings(db, event_id, schedule["date"])
    await db.commit()
    event = await get_event(db, event_id)

    holders = await _booking_holders(db, event_id)
    logger.info(
        "event_status_changed",
        event_id=event_id,
        previous=previous,
        status=event.status,
        rescheduled=sorted(schedule),
        notified=len(holders),
    )
    await _notify_holders(dispatcher, event, holders, details)
    return event


def _schedule_changes(event: Event, new_date, data: EventStatusUpdate) -> dict:
    changes = {}
    if new_date is not None and new_date != as_utc(event.date):
        if new_date <= utcnow():
            raise ValidationError("The new event date must be in the future", {"new_date": new_date.isoformat()})
        changes["date"] = new_date
    if data.new_time and data.new_time != event.time:
        changes["time"] = data.new_time
    if data.new_location and data.new_location != event.location:
        changes["location"] = data.new_location
    return changes


async def _reschedule_holdings(db: AsyncSession, event_id: int, new_date) -> None:
    await db.execute(
        update(Booking)
        .where(Booking.event_id == event_id)
        .values(event_date=new_date)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(Ticket)
        .where(Ticket.event_id == event_id, Ticket.status == TicketStatus.VALID)
        .values(valid_until=valid_until_for(new_date))
        .execution_options(synchronize_session=False)
    )


async def _booking_holders(db: AsyncSession, event_id: int) -> list[str]:
    result = await db.execute(
        select(Booking.user_id)
        .where(Booking.event_id == event_id, Booking.status != BookingStatus.CANCELLED)
        .distinct()
        .order_by(Booking.user_id)
    )
    return list(result.scalars().all())


async def _notify_holders(
    dispatcher: NotificationDispatcher,
    event: Event,
    holders: list[str],
    details: dict,
) -> None:
    notification_type, title = _STATUS_NOTIFICATIONS[event.status]
    message = _status_message(event, details.get("reason"))
    payload = {
        "event_id": event.id,
        "title": event.title,
        "status": event.status,
        **{k: v for k, v in details.items() if k != "changed_at"},
    }
    for user_id in holders:
        await dispatcher.publish_safely(user_id, notification_type, title, message, payload)
        dispatcher.push(user_id, "eventUpdated", payload)


def _status_message(event: Event, reason: Optional[str]) -> str:
    if event.status == EventStatus.CANCELLED:
        text = f"{event.title} has been cancelled."
    elif event.status == EventStatus.POSTPONED:
        text = f"{event.title} has been postponed to {event.starts_at:%Y-%m-%d}."
    else:
        text = f"{event.title} has been updated."
    if reason:
        text = f"{text} Reason: {reason}"
    return text
