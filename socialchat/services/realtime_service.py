import asyncio
from typing import Any, Optional

from socialchat.core.errors import DeliveryError
from socialchat.core.logger import get_logger
from socialchat.utils.realtime_bus import NoopBus
from socialchat.utils.websocket_manager import ConnectionManager


logger = get_logger(__name__)


class RealtimeChannel:
    """
    Publishes events to conversation rooms.

    With a Redis bus every process relays room events to its own sockets via
    a background listener; without one, publish fans out in-process.
    """

    def __init__(self, manager: ConnectionManager, bus=None) -> None:
        self.manager = manager
        self.bus = bus or NoopBus()
        self._listener: Optional[asyncio.Task] = None

    async def publish(self, room: str, event: str, data: Any) -> None:
        try:
            if self.bus.enabled:
                await self.bus.publish(room, event, data)
            else:
                await self.manager.broadcast(room, event, data)
        except Exception as exc:
            raise DeliveryError(f"publish to room {room} failed: {exc}") from exc

    async def _relay(self, room: str, event: str, data: Any) -> None:
        await self.manager.broadcast(room, event, data)

    async def start(self) -> None:
        if self.bus.enabled and self._listener is None:
            self._listener = asyncio.create_task(self.bus.listen(self._relay))
            logger.info("Realtime relay listener started")

    async def stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        await self.bus.close()
