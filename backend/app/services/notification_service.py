"""
Notification dispatcher: durable per-user log plus best-effort live push.

DELIVERY MODEL
==============

publish(user, type, title, message, payload)
  1. INSERT into notifications in the dispatcher's own session and commit.
     Transient storage errors (OperationalError) are retried with
     exponential backoff.
  2. Hand {"event": "newNotification", "data": ...} to the live path.
     Without a relay the local ChannelBroker queues it directly. With a
     Redis relay, messages go onto one FIFO drained by a single task, so a
     user's stream keeps publish order even when the relay fails and a
     message falls back to local delivery. This never awaits a client socket.

Callers publish only after their own transaction has committed, and use
`publish_safely` so a failed notification is logged and counted but never
undoes the booking/receipt transition that triggered it.

The log is the source of truth. A client that missed live messages asks for
replay(since, since_id) with the (created_at, id) of the last notification it
processed and pages forward in (created_at, id) order until has_more is
false. The cursor is a keyset, so rows sharing a timestamp are never skipped.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import redis.asyncio as redis
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import ErrorCode, NotFoundError
from app.core.logging import get_logger
from app.core.metrics import (
    notification_failures,
    record_live_delivery,
    record_notification,
    redis_connection_errors,
)
from app.core.timeutils import as_utc, utcnow
from app.models.notification import Notification, NotificationType
from app.schemas.notification import NotificationResponse
from app.services.channel_broker import ChannelBroker
from app.services.live_relay import RedisLiveRelay

logger = get_logger(__name__)


def serialize_notification(notification: Notification) -> dict:
    return NotificationResponse.model_validate(notification).model_dump(mode="json")


@dataclass
class ReplayPage:
    notifications: list[Notification]
    has_more: bool
    next_since: Optional[datetime]
    next_since_id: Optional[int]


class NotificationDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broker: ChannelBroker,
        relay: Optional[RedisLiveRelay] = None,
        *,
        write_retries: int = 3,
        retry_backoff: float = 0.2,
        relay_queue_size: int = 1000,
    ):
        self.session_factory = session_factory
        self.broker = broker
        self.relay = relay
        self.write_retries = max(write_retries, 1)
        self.retry_backoff = retry_backoff
        self._relay_queue: asyncio.Queue = asyncio.Queue(maxsize=relay_queue_size)
        self._relay_pump: Optional[asyncio.Task] = None

    async def publish(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> Notification:
        if notification_type not in NotificationType.ALL:
            raise ValueError(f"Unknown notification type: {notification_type}")

        notification = await self._persist(user_id, notification_type, title, message, payload or {})
        record_notification(notification_type)
        logger.info(
            "notification_published",
            notification_id=notification.id,
            user_id=user_id,
            type=notification_type,
        )
        self._deliver(user_id, {"event": "newNotification", "data": serialize_notification(notification)})
        return notification

    async def publish_safely(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> Optional[Notification]:
        """publish() for use after a committed domain transition; failures are logged, not raised."""
        try:
            return await self.publish(user_id, notification_type, title, message, payload)
        except SQLAlchemyError as e:
            notification_failures.inc()
            logger.error(
                "notification_publish_failed",
                user_id=user_id,
                type=notification_type,
                error=str(e),
            )
            return None

    def push(self, user_id: str, event: str, data: dict[str, Any]) -> None:
        """Live-only event (bookingConfirmed, eventUpdated); not persisted."""
        self._deliver(user_id, {"event": event, "data": data})

    async def replay(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        since_id: Optional[int] = None,
        limit: int = 500,
    ) -> ReplayPage:
        """
        One page of the user's log after the cursor, oldest first.

        With only `since`, everything created strictly after it is returned.
        With `since_id` as well, rows at exactly `since` with a larger id are
        included too. Pass the page's next_since/next_since_id to continue.
        """
        query = select(Notification).where(Notification.user_id == user_id)
        if since is not None:
            since = as_utc(since)
            after = Notification.created_at > since
            if since_id is not None:
                after = or_(after, and_(Notification.created_at == since, Notification.id > since_id))
            query = query.where(after)
        query = query.order_by(Notification.created_at.asc(), Notification.id.asc()).limit(limit + 1)

        async with self.session_factory() as session:
            result = await session.execute(query)
            rows = list(result.scalars().all())

        notifications = rows[:limit]
        has_more = len(rows) > limit
        if notifications:
            next_since, next_since_id = notifications[-1].created_at, notifications[-1].id
        else:
            next_since, next_since_id = since, since_id
        logger.info("notifications_replayed", user_id=user_id, count=len(notifications), has_more=has_more)
        return ReplayPage(notifications, has_more, next_since, next_since_id)

    async def list_for_user(
        self,
        user_id: str,
        unread_only: bool = False,
        limit: int = 50,
    ) -> tuple[list[Notification], int]:
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.read.is_(False))
        query = query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)

        async with self.session_factory() as session:
            notifications = list((await session.execute(query)).scalars().all())
            unread = (
                await session.execute(
                    select(func.count())
                    .select_from(Notification)
                    .where(Notification.user_id == user_id, Notification.read.is_(False))
                )
            ).scalar_one()
        return notifications, unread

    async def mark_read(self, notification_id: int, user_id: str) -> Notification:
        """Mark one of the user's notifications read. Repeating the call changes nothing."""
        async with self.session_factory() as session:
            notification = await session.get(Notification, notification_id)
            if notification is None or notification.user_id != user_id:
                raise NotFoundError(ErrorCode.NOTIFICATION_NOT_FOUND, "Notification", notification_id)

            if not notification.read:
                await session.execute(
                    update(Notification)
                    .where(Notification.id == notification_id, Notification.read.is_(False))
                    .values(read=True, read_at=utcnow())
                )
                await session.commit()
                await session.refresh(notification)
                logger.info("notification_read", notification_id=notification_id, user_id=user_id)
            return notification

    async def mark_all_read(self, user_id: str) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                update(Notification)
                .where(Notification.user_id == user_id, Notification.read.is_(False))
                .values(read=True, read_at=utcnow())
            )
            await session.commit()
        logger.info("notifications_all_read", user_id=user_id, updated=result.rowcount)
        return result.rowcount

    async def flush_relay(self) -> None:
        """Wait until every queued live message has left the relay queue."""
        await self._relay_queue.join()

    async def close(self) -> None:
        if self._relay_pump is None:
            return
        self._relay_pump.cancel()
        try:
            await self._relay_pump
        except asyncio.CancelledError:
            pass
        self._relay_pump = None

    async def _persist(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        payload: dict,
    ) -> Notification:
        for attempt in range(1, self.write_retries + 1):
            try:
                async with self.session_factory() as session:
                    notification = Notification(
                        user_id=user_id,
                        type=notification_type,
                        title=title,
                        message=message,
                        payload=payload,
                        read=False,
                        created_at=utcnow(),
                    )
                    session.add(notification)
                    await session.commit()
                    return notification
            except OperationalError as e:
                if attempt == self.write_retries:
                    raise
                delay = self.retry_backoff * (2 ** (attempt - 1))
                logger.warning(
                    "notification_write_retry",
                    user_id=user_id,
                    type=notification_type,
                    attempt=attempt,
                    delay=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)

        # Should not reach here, but just in case
        raise RuntimeError(f"Notification for {user_id} was not persisted")

    def _deliver(self, user_id: str, message: dict) -> None:
        if self.relay is None:
            self.broker.deliver(user_id, message)
            return
        try:
            self._relay_queue.put_nowait((user_id, message))
        except asyncio.QueueFull:
            record_live_delivery("dropped")
            logger.warning("live_relay_queue_full", user_id=user_id, event=message.get("event"))
            return
        if self._relay_pump is None or self._relay_pump.done():
            self._relay_pump = asyncio.create_task(self._pump_relay())

    async def _pump_relay(self) -> None:
        while True:
            user_id, message = await self._relay_queue.get()
            try:
                await self._relay_or_local(user_id, message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("live_delivery_failed", user_id=user_id, error=str(e))
            finally:
                self._relay_queue.task_done()

    async def _relay_or_local(self, user_id: str, message: dict) -> None:
        try:
            await self.relay.publish(user_id, message)
        except (redis.RedisError, OSError) as e:
            redis_connection_errors.inc()
            logger.warning("live_relay_publish_failed", user_id=user_id, error=str(e))
            self.broker.deliver(user_id, message)
