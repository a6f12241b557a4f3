"""
Connection Registry

Per-process bookkeeping of live real-time connections and their room
memberships. Membership is never persisted and vanishes on disconnect.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Protocol

from meeting_protocols.realtime.events import encode_frame

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """The part of a WebSocket a connection needs."""

    async def send_text(self, data: str) -> None: ...


class Connection:
    """One client connection."""

    def __init__(self, transport: Transport, connection_id: str | None = None):
        self.id = connection_id or uuid.uuid4().hex
        self.transport = transport
        self.rooms: set[str] = set()
        self.alive = True
        self._writer_lock = asyncio.Lock()

    async def send(self, event: str, data: Any) -> None:
        """Send one frame; frames of one connection keep their emission order."""
        if not self.alive:
            raise ConnectionError("connection closed")
        frame = encode_frame(event, data)
        async with self._writer_lock:
            try:
                await self.transport.send_text(frame)
            except Exception as exc:
                self.alive = False
                raise ConnectionError("send failed") from exc

    def __repr__(self) -> str:
        return f"Connection({self.id!r}, rooms={sorted(self.rooms)!r})"


class ConnectionRegistry:
    """Maps connection ids to connections and rooms to member ids."""

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._rooms: dict[str, set[str]] = {}

    # ---------- connections ----------
    def register(self, connection: Connection) -> Connection:
        self._connections[connection.id] = connection
        logger.info("connection registered: %s", connection.id)
        return connection

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def disconnect(self, connection_id: str) -> list[str]:
        """Forget a connection and return the rooms it was in."""
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return []
        connection.alive = False
        left = sorted(connection.rooms)
        for room in left:
            self._discard_member(room, connection_id)
        connection.rooms.clear()
        logger.info("connection closed: %s (rooms: %s)", connection_id, ", ".join(left) or "-")
        return left

    def __len__(self) -> int:
        return len(self._connections)

    # ---------- rooms ----------
    def join(self, connection_id: str, room: str) -> bool:
        """Add a connection to a room; ``False`` if unknown or already a member."""
        connection = self._connections.get(connection_id)
        if connection is None or room in connection.rooms:
            return False
        connection.rooms.add(room)
        self._rooms.setdefault(room, set()).add(connection_id)
        return True

    def leave(self, connection_id: str, room: str) -> bool:
        """Remove a connection from a room; ``False`` if it was not a member."""
        connection = self._connections.get(connection_id)
        if connection is None or room not in connection.rooms:
            return False
        connection.rooms.discard(room)
        self._discard_member(room, connection_id)
        return True

    def members(self, room: str) -> list[Connection]:
        """Live connections in a room."""
        return [
            self._connections[cid]
            for cid in sorted(self._rooms.get(room, ()))
            if cid in self._connections
        ]

    def rooms(self) -> list[str]:
        return sorted(self._rooms)

    def _discard_member(self, room: str, connection_id: str) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[room]
