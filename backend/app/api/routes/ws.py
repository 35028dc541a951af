"""
Live notification channel.

    ws://.../api/v1/ws/notifications?token=<jwt>

Server frames:  {"event": <name>, "data": {...}}
  connected, newNotification, notificationRead, bookingConfirmed, eventUpdated,
  replayComplete, pong, error
Client frames:
  {"action": "replay", "since": <iso8601 | null>, "since_id": <int | null>}
  {"action": "markRead", "id": <notification id>}
  {"action": "ping"}

A replay walks every page of the log after the cursor before sending
replayComplete {count, last_created_at, last_id}.

Every outbound frame goes through the session's Channel queue, so replayed
and live messages reach the socket in the order they were queued.
"""

from datetime import datetime
from typing import Any

import jwt
import structlog
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from app.api.dependencies import get_dispatcher
from app.core.config import get_settings
from app.core.exceptions import BookingCoreError
from app.core.logging import get_logger
from app.core.security import decode_access_token
from app.core.timeutils import as_utc
from app.services.channel_broker import Channel
from app.services.notification_service import NotificationDispatcher, serialize_notification

logger = get_logger(__name__)
settings = get_settings()
router = APIRouter(tags=["Live"])


@router.websocket("/ws/notifications")
async def notifications_socket(
    websocket: WebSocket,
    token: str = Query(""),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    await websocket.accept()
    try:
        user = decode_access_token(token)
    except jwt.PyJWTError as e:
        logger.info("ws_auth_rejected", error=str(e))
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
        return

    channel = dispatcher.broker.connect(user.id, websocket.send_json)
    await channel.put({"event": "connected", "data": {"user_id": user.id, "session_id": channel.session_id}})

    with structlog.contextvars.bound_contextvars(user_id=user.id, session_id=channel.session_id):
        try:
            while True:
                try:
                    frame = await websocket.receive_json()
                except ValueError:
                    await _error(channel, "Frames must be JSON objects")
                    continue
                await handle_client_frame(channel, dispatcher, user.id, frame)
        except WebSocketDisconnect:
            pass
        finally:
            await dispatcher.broker.disconnect(channel)


async def handle_client_frame(
    channel: Channel,
    dispatcher: NotificationDispatcher,
    user_id: str,
    frame: Any,
) -> None:
    action = frame.get("action") if isinstance(frame, dict) else None

    if action == "ping":
        await channel.put({"event": "pong", "data": {}})
    elif action == "replay":
        await _replay(channel, dispatcher, user_id, frame.get("since"), frame.get("since_id"))
    elif action == "markRead":
        try:
            notification = await dispatcher.mark_read(int(frame.get("id")), user_id)
        except (TypeError, ValueError):
            await _error(channel, "markRead needs a numeric id")
            return
        except BookingCoreError as e:
            await _error(channel, e.message, e.code.value)
            return
        await channel.put({"event": "notificationRead", "data": serialize_notification(notification)})
    else:
        await _error(channel, f"Unknown action: {action}")


async def _replay(
    channel: Channel,
    dispatcher: NotificationDispatcher,
    user_id: str,
    since: Any,
    since_id: Any = None,
) -> None:
    try:
        since_at = as_utc(datetime.fromisoformat(since)) if since else None
        after_id = int(since_id) if since_id is not None else None
    except (TypeError, ValueError):
        await _error(channel, "since must be an ISO-8601 timestamp and since_id an integer")
        return

    count = 0
    while True:
        page = await dispatcher.replay(user_id, since_at, after_id, settings.REPLAY_MAX_ITEMS)
        for notification in page.notifications:
            await channel.put({"event": "newNotification", "data": serialize_notification(notification)})
        count += len(page.notifications)
        since_at, after_id = page.next_since, page.next_since_id
        if not page.has_more:
            break

    await channel.put(
        {
            "event": "replayComplete",
            "data": {
                "count": count,
                "last_created_at": as_utc(since_at).isoformat() if since_at else None,
                "last_id": after_id,
            },
        }
    )


async def _error(channel: Channel, message: str, code: str = "bad_request") -> None:
    await channel.put({"event": "error", "data": {"code": code, "message": message}})
