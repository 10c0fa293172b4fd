import asyncio
import itertools
from typing import Any, Dict, List, Set

from fastapi import WebSocket

from socialchat.core.logger import get_logger


logger = get_logger(__name__)

_connection_ids = itertools.count(1)


class Connection:
    """One authenticated socket; hashed by identity so rooms hold handles, not users."""

    def __init__(self, websocket: WebSocket, user_id: str) -> None:
        self.websocket = websocket
        self.user_id = user_id
        self.id = next(_connection_ids)

    async def send(self, event: str, data: Any) -> None:
        await self.websocket.send_json({"event": event, "data": data})

    def __repr__(self) -> str:
        return f"Connection(id={self.id}, user_id={self.user_id})"


class ConnectionManager:
    """
    Room id -> set of live connections, plus the reverse index used on
    disconnect. Every mutation happens under one lock; broadcast works on a
    snapshot so slow sockets never hold it.
    """

    def __init__(self) -> None:
        self.rooms: Dict[str, Set[Connection]] = {}
        self._memberships: Dict[Connection, Set[str]] = {}
        self._lock = asyncio.Lock()

    async def register(self, connection: Connection) -> None:
        async with self._lock:
            self._memberships.setdefault(connection, set())

    async def join(self, room: str, connection: Connection) -> bool:
        """Returns False when the connection was already in the room."""
        async with self._lock:
            members = self.rooms.setdefault(room, set())
            if connection in members:
                return False
            members.add(connection)
            self._memberships.setdefault(connection, set()).add(room)
            return True

    async def leave(self, room: str, connection: Connection) -> bool:
        """Returns False when the connection was not in the room."""
        async with self._lock:
            return self._discard(room, connection)

    async def disconnect(self, connection: Connection) -> None:
        async with self._lock:
            for room in list(self._memberships.get(connection, ())):
                self._discard(room, connection)
            self._memberships.pop(connection, None)

    def rooms_of(self, connection: Connection) -> Set[str]:
        return set(self._memberships.get(connection, ()))

    def members(self, room: str) -> Set[Connection]:
        return set(self.rooms.get(room, ()))

    async def broadcast(self, room: str, event: str, data: Any) -> int:
        """Send to every connection in the room; returns how many received it."""
        delivered = 0
        dead: List[Connection] = []
        for conn in self.members(room):
            try:
                await conn.send(event, data)
                delivered += 1
            except Exception as exc:
                logger.warning(f"Dropping {conn} from room {room}: {exc}")
                dead.append(conn)
        for conn in dead:
            await self.disconnect(conn)
        return delivered

    def _discard(self, room: str, connection: Connection) -> bool:
        members = self.rooms.get(room)
        if not members or connection not in members:
            return False
        members.discard(connection)
        if not members:
            del self.rooms[room]
        joined = self._memberships.get(connection)
        if joined is not None:
            joined.discard(room)
        return True
