"""
Real-time Event Definitions

Two families travel over the real-time channel:

- authoritative events, emitted only by the server after a successful
  state change (``ServerEvent``)
- passthrough presence events, relayed from one client to its room without
  validation or persistence (``PresenceEvent``)

Frames on the wire are JSON objects ``{"event": <name>, "data": <payload>}``.
"""

import json
from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any


class ClientEvent(StrEnum):
    """Events a client may send."""

    JOIN_PROTOCOL = "join-protocol"
    LEAVE_PROTOCOL = "leave-protocol"
    JOIN_GROUP = "join-group"
    PROTOCOL_UPDATE = "protocol-update"
    CURSOR_POSITION = "cursor-position"
    TYPING_START = "typing-start"
    TYPING_STOP = "typing-stop"


class ServerEvent(StrEnum):
    """Authoritative events mirroring committed mutations."""

    PROTOCOL_UPDATED = "protocol-updated"
    SECTION_UPDATED = "section-updated"
    COMMENT_ADDED = "comment-added"
    COMMENT_RESOLVED = "comment-resolved"
    TASK_CREATED = "task-created"
    TASK_STATUS_UPDATED = "task-status-updated"
    TASK_DELETED = "task-deleted"


class PresenceEvent(StrEnum):
    """Advisory events relayed between clients, never persisted or replayed."""

    USER_JOINED = "user-joined"
    USER_LEFT = "user-left"
    CURSOR_MOVED = "cursor-moved"
    USER_TYPING = "user-typing"
    USER_STOPPED_TYPING = "user-stopped-typing"
    PEER_PROTOCOL_UPDATE = "peer-protocol-update"


class ControlEvent(StrEnum):
    """Frames addressed to a single connection."""

    CONNECTED = "connected"
    ERROR = "error"


def protocol_room(protocol_id: Any) -> str:
    return f"protocol-{protocol_id}"


def group_room(group_id: Any) -> str:
    return f"group-{group_id}"


def encode_frame(event: str, data: Any) -> str:
    """Serialize one outbound frame."""
    return json.dumps({"event": str(event), "data": data}, default=str, ensure_ascii=False)


@dataclass
class RoomEvent:
    """Envelope published between processes for one room emission."""

    room: str
    event: str
    data: Any
    origin: str
    exclude: str | None = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), default=str, ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "RoomEvent":
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise ValueError(f"envelope must be an object, got {type(payload).__name__}")
        return cls(
            room=payload["room"],
            event=payload["event"],
            data=payload.get("data"),
            origin=payload["origin"],
            exclude=payload.get("exclude"),
        )
