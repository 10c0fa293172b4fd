import asyncio
import json
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as redis

from socialchat.core.logger import get_logger


logger = get_logger(__name__)

ROOM_CHANNEL_PREFIX = "room:"

RoomHandler = Callable[[str, str, Any], Awaitable[None]]


class NoopBus:
    """Single-process deployments: nothing leaves the process."""

    enabled = False

    async def publish(self, room: str, event: str, data: Any) -> None:
        return

    async def listen(self, on_event: RoomHandler) -> None:
        await asyncio.Future()

    async def close(self) -> None:
        return


class RedisBus:
    """Room events over Redis pub/sub, one channel per room."""

    enabled = True

    def __init__(self, url: Optional[str] = None, client: Optional[redis.Redis] = None) -> None:
        self._redis = client if client is not None else redis.from_url(url)

    async def publish(self, room: str, event: str, data: Any) -> None:
        message = json.dumps({"room": room, "event": event, "data": data})
        await self._redis.publish(f"{ROOM_CHANNEL_PREFIX}{room}", message)

    async def listen(self, on_event: RoomHandler) -> None:
        pubsub = self._redis.pubsub()
        await pubsub.psubscribe(f"{ROOM_CHANNEL_PREFIX}*")
        try:
            while True:
                try:
                    msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                except redis.RedisError as exc:
                    logger.warning(f"Redis subscription error: {exc}")
                    await asyncio.sleep(0.5)
                    continue
                if not msg or msg.get("type") != "pmessage":
                    continue
                data = msg.get("data")
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                try:
                    envelope = json.loads(data)
                    await on_event(envelope["room"], envelope["event"], envelope.get("data"))
                except (ValueError, KeyError) as exc:
                    logger.warning(f"Ignoring malformed room event: {exc}")
        finally:
            await pubsub.punsubscribe()
            await pubsub.aclose()

    async def close(self) -> None:
        await self._redis.aclose()


def build_bus(url: Optional[str]):
    if not url:
        return NoopBus()
    return RedisBus(url)
