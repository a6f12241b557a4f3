"""
Collaboration Session Handling

Routes inbound client frames: room join/leave and the presence passthrough
(cursors, typing indicators, draft edits). Presence payloads are relayed
without consulting the store; the server only appends the sender's
``socketId``.
"""

from __future__ import annotations

import logging
from typing import Any

from meeting_protocols.realtime.broadcast import Broadcaster
from meeting_protocols.realtime.events import (
    ClientEvent,
    ControlEvent,
    PresenceEvent,
    group_room,
    protocol_room,
)
from meeting_protocols.realtime.registry import Connection

logger = logging.getLogger(__name__)

# client event -> (relayed event, payload keys copied from the client)
PASSTHROUGH_EVENTS: dict[ClientEvent, tuple[PresenceEvent, tuple[str, ...] | None]] = {
    ClientEvent.CURSOR_POSITION: (PresenceEvent.CURSOR_MOVED, ("userId", "position", "section")),
    ClientEvent.TYPING_START: (PresenceEvent.USER_TYPING, ("userId", "section")),
    ClientEvent.TYPING_STOP: (PresenceEvent.USER_STOPPED_TYPING, ("userId", "section")),
    ClientEvent.PROTOCOL_UPDATE: (PresenceEvent.PEER_PROTOCOL_UPDATE, None),
}


class InvalidRoom(ValueError):
    """A frame did not name the room it targets."""


class CollaborationSession:
    """Dispatches client frames for all connections of this process."""

    def __init__(self, broadcaster: Broadcaster):
        self.broadcaster = broadcaster
        self.registry = broadcaster.registry

    async def connect(self, connection: Connection) -> None:
        self.registry.register(connection)
        await self.broadcaster.send_to(
            connection, ControlEvent.CONNECTED, {"socketId": connection.id}
        )

    def disconnect(self, connection: Connection) -> list[str]:
        """Drop the connection's memberships silently."""
        return self.registry.disconnect(connection.id)

    async def route_message(self, connection: Connection, message: Any) -> None:
        """Handle one decoded frame."""
        if not isinstance(message, dict) or not isinstance(message.get("event"), str):
            await self.send_error(connection, "BAD_MESSAGE", hint="expected {event, data}")
            return

        try:
            event = ClientEvent(message["event"])
        except ValueError:
            await self.send_error(connection, "UNKNOWN_EVENT", hint=message["event"])
            return

        data = message.get("data")
        try:
            if event == ClientEvent.JOIN_PROTOCOL:
                await self._join_protocol(connection, data)
            elif event == ClientEvent.LEAVE_PROTOCOL:
                await self._leave_protocol(connection, data)
            elif event == ClientEvent.JOIN_GROUP:
                self._join_group(connection, data)
            else:
                await self._relay(connection, event, data)
        except InvalidRoom as exc:
            await self.send_error(connection, "INVALID_ROOM", hint=str(exc))

    async def send_error(self, connection: Connection, code: str, **extra: Any) -> None:
        payload = {"code": code}
        payload.update(extra)
        await self.broadcaster.send_to(connection, ControlEvent.ERROR, payload)

    # ---------- rooms ----------
    async def _join_protocol(self, connection: Connection, data: Any) -> None:
        protocol_id = self._room_id(data, "protocolId")
        room = protocol_room(protocol_id)
        if self.registry.join(connection.id, room):
            logger.info("connection %s joined protocol %s", connection.id, protocol_id)
        await self.broadcaster.emit(
            room,
            PresenceEvent.USER_JOINED,
            {"socketId": connection.id, "protocolId": protocol_id},
            exclude=connection.id,
        )

    async def _leave_protocol(self, connection: Connection, data: Any) -> None:
        protocol_id = self._room_id(data, "protocolId")
        room = protocol_room(protocol_id)
        if self.registry.leave(connection.id, room):
            logger.info("connection %s left protocol %s", connection.id, protocol_id)
        await self.broadcaster.emit(
            room,
            PresenceEvent.USER_LEFT,
            {"socketId": connection.id, "protocolId": protocol_id},
            exclude=connection.id,
        )

    def _join_group(self, connection: Connection, data: Any) -> None:
        group_id = self._room_id(data, "groupId")
        if self.registry.join(connection.id, group_room(group_id)):
            logger.info("connection %s joined group %s", connection.id, group_id)

    # ---------- passthrough ----------
    async def _relay(self, connection: Connection, event: ClientEvent, data: Any) -> None:
        if not isinstance(data, dict):
            raise InvalidRoom("payload must be an object with protocolId")
        protocol_id = self._room_id(data, "protocolId")
        relayed_event, keys = PASSTHROUGH_EVENTS[event]

        if keys is None:
            payload = dict(data)
        else:
            payload = {key: data.get(key) for key in keys}
        payload["socketId"] = connection.id

        await self.broadcaster.emit(
            protocol_room(protocol_id), relayed_event, payload, exclude=connection.id
        )

    @staticmethod
    def _room_id(data: Any, key: str) -> str:
        """Accept a bare id or an object carrying it under ``key``."""
        value = data.get(key) if isinstance(data, dict) else data
        if isinstance(value, (dict, list)):
            raise InvalidRoom(f"{key} required")
        room_id = str(value if value is not None else "").strip()
        if not room_id:
            raise InvalidRoom(f"{key} required")
        return room_id
