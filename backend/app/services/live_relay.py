"""
Redis pub/sub relay for live notification delivery across worker processes.

Every worker publishes live messages to one channel and every worker's
listener hands them to its local ChannelBroker, so a user connected to
worker B still sees a booking confirmed on worker A.
Message format: {"user_id": "...", "message": {"event": "...", "data": {...}}}
"""

import asyncio
import json
from typing import Optional

import redis.asyncio as redis

from app.core.logging import get_logger
from app.core.metrics import redis_connection_errors
from app.services.channel_broker import ChannelBroker

logger = get_logger(__name__)


class RedisLiveRelay:
    def __init__(self, client: redis.Redis, broker: ChannelBroker, channel: str):
        self.client = client
        self.broker = broker
        self.channel = channel
        self._listener: Optional[asyncio.Task] = None

    async def publish(self, user_id: str, message: dict) -> None:
        await self.client.publish(
            self.channel,
            json.dumps({"user_id": user_id, "message": message}, default=str),
        )

    def start(self) -> None:
        self._listener = asyncio.create_task(self._listen(), name="live-relay")

    async def stop(self) -> None:
        if self._listener is None:
            return
        self._listener.cancel()
        try:
            await self._listener
        except asyncio.CancelledError:
            pass
        self._listener = None

    async def _listen(self) -> None:
        pubsub = self.client.pubsub()
        await pubsub.subscribe(self.channel)
        logger.info("live_relay_subscribed", channel=self.channel)
        try:
            async for item in pubsub.listen():
                if item.get("type") != "message":
                    continue
                try:
                    envelope = json.loads(item["data"])
                    self.broker.deliver(envelope["user_id"], envelope["message"])
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning("live_relay_bad_message", error=str(e))
        except (redis.RedisError, OSError) as e:
            redis_connection_errors.inc()
            logger.error("live_relay_disconnected", channel=self.channel, error=str(e))
        finally:
            await pubsub.aclose()
