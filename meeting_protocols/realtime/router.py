"""
Real-time Router

WebSocket endpoint carrying JSON frames ``{"event", "data"}``. Text and
binary frames are both accepted; binary frames must hold UTF-8 JSON.
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, Request, WebSocket

from meeting_protocols.realtime.broadcast import Broadcaster
from meeting_protocols.realtime.registry import Connection
from meeting_protocols.realtime.session import CollaborationSession

logger = logging.getLogger(__name__)
router = APIRouter(tags=["realtime"])


def get_broadcaster(request: Request) -> Broadcaster:
    """Dependency returning the process-wide broadcaster."""
    return request.app.state.broadcaster


def decode_frame(frame: dict[str, Any]) -> Any:
    """Parse the JSON body of one ASGI ``websocket.receive`` message."""
    text = frame.get("text")
    if text is None:
        data = frame.get("bytes")
        if data is None:
            raise ValueError("empty frame")
        text = data.decode("utf-8")
    return json.loads(text)


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket) -> None:
    """Bidirectional real-time channel for one client."""
    session: CollaborationSession = websocket.app.state.collaboration
    await websocket.accept()
    connection = Connection(websocket)
    await session.connect(connection)

    try:
        while connection.alive:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            try:
                message = decode_frame(frame)
            except ValueError as exc:
                await session.send_error(connection, "BAD_MESSAGE", hint=f"bad frame: {exc}")
                continue
            await session.route_message(connection, message)
    finally:
        session.disconnect(connection)
