"""
In-process registry of live notification channels.

One Channel per connected session. Each channel owns a bounded queue drained
by its own sender task, so `deliver` never awaits a socket: a slow client
fills its own queue and further live messages for it are dropped. Dropped
messages are not lost; the client recovers them through replay.

Limitations:
- Channels live in this process only; cross-worker fan-out goes through
  the Redis relay (app.services.live_relay)
"""

import asyncio
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

from app.core.logging import get_logger
from app.core.metrics import active_channels, record_live_delivery

logger = get_logger(__name__)

Sender = Callable[[dict], Awaitable[None]]


class Channel:
    def __init__(self, user_id: str, send: Sender, maxsize: int):
        self.user_id = user_id
        self.session_id = uuid.uuid4().hex[:12]
        self._send = send
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task] = None
        self.closed = False

    def start(self) -> None:
        self._task = asyncio.create_task(self._pump(), name=f"channel-{self.session_id}")

    def offer(self, message: dict) -> bool:
        """Queue without waiting. False when the channel is closed or full."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    async def put(self, message: dict) -> None:
        """Queue and wait for room. Only the session's own handler calls this."""
        await self._queue.put(message)

    async def drain(self) -> None:
        await self._queue.join()

    async def _pump(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self._send(message)
            except Exception as e:
                self.closed = True
                logger.warning(
                    "channel_send_failed",
                    user_id=self.user_id,
                    session_id=self.session_id,
                    error=str(e),
                )
                return
            finally:
                self._queue.task_done()

    async def close(self) -> None:
        self.closed = True
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class ChannelBroker:
    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._channels: Dict[str, Dict[str, Channel]] = {}

    def connect(self, user_id: str, send: Sender) -> Channel:
        channel = Channel(user_id, send, self.queue_size)
        self._channels.setdefault(user_id, {})[channel.session_id] = channel
        channel.start()
        active_channels.inc()
        logger.info(
            "channel_opened",
            user_id=user_id,
            session_id=channel.session_id,
            user_sessions=len(self._channels[user_id]),
        )
        return channel

    async def disconnect(self, channel: Channel) -> None:
        sessions = self._channels.get(channel.user_id, {})
        if sessions.pop(channel.session_id, None) is not None:
            active_channels.dec()
        if not sessions:
            self._channels.pop(channel.user_id, None)
        await channel.close()
        logger.info("channel_closed", user_id=channel.user_id, session_id=channel.session_id)

    def deliver(self, user_id: str, message: dict[str, Any]) -> int:
        """Offer a message to every session of `user_id`. Returns how many accepted it."""
        sessions = list(self._channels.get(user_id, {}).values())
        if not sessions:
            record_live_delivery("no_channel")
            return 0

        accepted = 0
        for channel in sessions:
            if channel.offer(message):
                accepted += 1
                record_live_delivery("queued")
            else:
                record_live_delivery("dropped")
                logger.warning(
                    "live_delivery_dropped",
                    user_id=user_id,
                    session_id=channel.session_id,
                    live_event=message.get("event"),
                )
        return accepted

    def is_connected(self, user_id: str) -> bool:
        return bool(self._channels.get(user_id))

    def connection_count(self) -> int:
        return sum(len(sessions) for sessions in self._channels.values())

    async def close_all(self) -> None:
        for sessions in list(self._channels.values()):
            for channel in list(sessions.values()):
                await self.disconnect(channel)
