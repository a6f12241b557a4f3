"""
Room Broadcaster

Fans events out to every connection in a room. Local members are served
directly; with Redis enabled every emission is also published on a Pub/Sub
channel so that members connected to other processes receive it too.

Usage:
    async with Broadcaster(registry) as broadcaster:
        await broadcaster.emit(protocol_room(protocol_id), ServerEvent.PROTOCOL_UPDATED, payload)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from meeting_protocols.core.config import settings
from meeting_protocols.realtime.events import RoomEvent
from meeting_protocols.realtime.registry import Connection, ConnectionRegistry

logger = logging.getLogger(__name__)

_BASE_RECONNECT_DELAY_SECONDS = 1.0
_MAX_RECONNECT_DELAY_SECONDS = 30.0


class Broadcaster:
    """Room-based publish/subscribe over the connection registry."""

    def __init__(
        self,
        registry: ConnectionRegistry | None = None,
        *,
        redis_url: str | None = None,
        channel: str | None = None,
        redis_enabled: bool | None = None,
    ) -> None:
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.origin = uuid.uuid4().hex
        self.redis_url = redis_url or settings.redis_url
        self.channel = channel or settings.realtime_channel
        self.redis_enabled = (
            settings.realtime_redis_enabled if redis_enabled is None else redis_enabled
        )
        self._client: redis.Redis | None = None
        self._pubsub: Any = None
        self._listener: asyncio.Task | None = None

    async def __aenter__(self) -> "Broadcaster":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()

    @property
    def redis_active(self) -> bool:
        return self._client is not None

    # ---------- lifecycle ----------
    async def start(self) -> None:
        """Connect to Redis and start the subscriber when fan-out is enabled."""
        if not self.redis_enabled:
            return
        try:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            await self._client.ping()
            self._pubsub = self._client.pubsub()
            await self._pubsub.subscribe(self.channel)
        except (RedisError, OSError) as exc:
            logger.warning("Redis fan-out disabled, delivering locally only: %s", exc)
            await self._close_client()
            return

        self._listener = asyncio.create_task(self._listen())
        logger.info("Broadcaster subscribed to %s (origin %s)", self.channel, self.origin)

    async def stop(self) -> None:
        if self._listener and not self._listener.done():
            self._listener.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener
        self._listener = None
        await self._close_client()

    async def _close_client(self) -> None:
        if self._pubsub is not None:
            with contextlib.suppress(RedisError, OSError):
                await self._pubsub.aclose()
            self._pubsub = None
        if self._client is not None:
            with contextlib.suppress(RedisError, OSError):
                await self._client.aclose()
            self._client = None

    # ---------- emission ----------
    async def emit(
        self,
        room: str,
        event: str,
        data: Any,
        *,
        exclude: str | None = None,
    ) -> int:
        """
        Emit an event to a room.

        Args:
            room: Room name (``protocol-<id>`` or ``group-<id>``)
            event: Event name
            data: JSON-serialisable payload
            exclude: Connection id that must not receive the event (the sender)

        Returns:
            Number of local connections the event was delivered to
        """
        delivered = await self.deliver_local(room, str(event), data, exclude=exclude)
        if self._client is not None:
            await self._publish(
                RoomEvent(room=room, event=str(event), data=data, origin=self.origin, exclude=exclude)
            )
        return delivered

    async def send_to(self, connection: Connection, event: str, data: Any) -> bool:
        """Send a frame to one connection only."""
        return await self._safe_send(connection, str(event), data)

    async def deliver_local(
        self,
        room: str,
        event: str,
        data: Any,
        *,
        exclude: str | None = None,
    ) -> int:
        targets = [c for c in self.registry.members(room) if c.id != exclude]
        if not targets:
            return 0
        results = await asyncio.gather(*(self._safe_send(c, event, data) for c in targets))
        return sum(1 for ok in results if ok)

    async def _safe_send(self, connection: Connection, event: str, data: Any) -> bool:
        try:
            await connection.send(event, data)
        except ConnectionError as exc:
            logger.warning("dropping connection %s after failed send of %s: %s", connection.id, event, exc)
            self.registry.disconnect(connection.id)
            return False
        return True

    async def _publish(self, envelope: RoomEvent) -> None:
        try:
            await self._client.publish(self.channel, envelope.to_json())
        except (RedisError, OSError) as exc:
            # Local members already got the event
            logger.warning("Failed to publish %s to %s: %s", envelope.event, envelope.room, exc)

    # ---------- subscription ----------
    async def _listen(self) -> None:
        """Deliver envelopes published by other processes, reconnecting with backoff."""
        attempt = 0
        while True:
            try:
                await self._listen_once()
                attempt = 0
            except asyncio.CancelledError:
                raise
            except (RedisError, OSError) as exc:
                delay = min(_MAX_RECONNECT_DELAY_SECONDS, _BASE_RECONNECT_DELAY_SECONDS * (2 ** min(attempt, 5)))
                attempt += 1
                logger.warning("Redis subscription lost (%s), retrying in %.1fs", exc, delay)
                await asyncio.sleep(delay)
                with contextlib.suppress(RedisError, OSError):
                    await self._pubsub.subscribe(self.channel)

    async def _listen_once(self) -> None:
        while True:
            message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if message is None:
                continue
            await self.handle_message(message.get("data"))

    async def handle_message(self, raw: Any) -> int:
        """Deliver one published envelope to local members."""
        if not isinstance(raw, (str, bytes)):
            return 0
        try:
            envelope = RoomEvent.from_json(raw)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("skip malformed room envelope: %s", exc)
            return 0
        if envelope.origin == self.origin:
            return 0
        return await self.deliver_local(
            envelope.room, envelope.event, envelope.data, exclude=envelope.exclude
        )
