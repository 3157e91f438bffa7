"""In-process realtime managers: room fan-out and typing indicators."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Protocol, Set

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from app.config import get_settings
from app.monitoring.metrics import (
    realtime_connections,
    realtime_events_total,
    realtime_publish_errors_total,
)
from app.services.errors import BroadcastError

logger = logging.getLogger(__name__)

BACKEND_NAME = "local"


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Safely send JSON data through websocket, handling disconnections gracefully.

    Returns True if message was sent successfully, False otherwise.
    """
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


@dataclass(eq=False)
class ClientConnection:
    """A single websocket session of an authenticated user."""

    websocket: WebSocket
    user_id: int
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def connected(self) -> bool:
        return self.websocket.application_state == WebSocketState.CONNECTED


class RoomFanout(Protocol):
    """Delivery interface the messaging services publish through.

    ``publish`` raises :class:`BroadcastError` when an event cannot be delivered
    at all. ``remove_user`` detaches a user who lost access to the room.
    """

    async def publish(
        self,
        room_key: str,
        event: str,
        payload: dict[str, Any],
        *,
        exclude_user: int | None = None,
        echo_to_user: int | None = None,
    ) -> int: ...

    async def remove_user(self, room_key: str, user_id: int) -> int: ...


# ---------------------------------------------------------------------------
# Internal state helpers
# ---------------------------------------------------------------------------


class TypingStatusStore:
    """Stores transient typing indicators."""

    def __init__(self, ttl_seconds: float) -> None:
        self._ttl = ttl_seconds
        self._entries: Dict[str, Dict[int, tuple[str, float]]] = defaultdict(dict)
        self._lock = asyncio.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def _cleanup_expired(
        self, room_key: str, bucket: Dict[int, tuple[str, float]], now: float
    ) -> bool:
        removed = [user_id for user_id, (_, ts) in bucket.items() if now - ts > self._ttl]
        for user_id in removed:
            bucket.pop(user_id, None)
        if not bucket:
            self._entries.pop(room_key, None)
        return bool(removed)

    def _build_snapshot(
        self, bucket: Dict[int, tuple[str, float]], now: float
    ) -> list[dict[str, str | int]]:
        entries: list[dict[str, str | int]] = [
            {"id": user_id, "display_name": display_name}
            for user_id, (display_name, ts) in bucket.items()
            if now - ts <= self._ttl
        ]
        entries.sort(key=lambda item: str(item["display_name"]).lower())
        return entries

    async def set_status(
        self,
        room_key: str,
        *,
        user_id: int,
        display_name: str,
        is_typing: bool,
    ) -> tuple[list[dict[str, str | int]], bool]:
        """Record a typing change and return the fresh snapshot plus whether it changed."""

        now = time.monotonic()
        async with self._lock:
            bucket = self._entries.setdefault(room_key, {})
            changed = False
            if is_typing:
                changed = user_id not in bucket
                bucket[user_id] = (display_name, now)
            elif user_id in bucket:
                bucket.pop(user_id, None)
                changed = True

            if self._cleanup_expired(room_key, bucket, now):
                changed = True
            return self._build_snapshot(bucket, now), changed

    async def clear_user(self, room_key: str, user_id: int) -> bool:
        async with self._lock:
            bucket = self._entries.get(room_key)
            if not bucket or user_id not in bucket:
                return False
            bucket.pop(user_id, None)
            if not bucket:
                self._entries.pop(room_key, None)
            return True

    async def snapshot(self, room_key: str) -> list[dict[str, str | int]]:
        now = time.monotonic()
        async with self._lock:
            bucket = self._entries.get(room_key)
            if not bucket:
                return []
            self._cleanup_expired(room_key, bucket, now)
            return self._build_snapshot(bucket, now)


# ---------------------------------------------------------------------------
# Connection manager
# ---------------------------------------------------------------------------


class RoomConnectionManager:
    """Track websocket sessions per room and per user and fan events out to them."""

    def __init__(self, *, send_timeout: float = 2.0) -> None:
        self._rooms: Dict[str, Set[ClientConnection]] = defaultdict(set)
        self._sessions: Dict[int, Set[ClientConnection]] = defaultdict(set)
        self._lock = asyncio.Lock()
        self._send_timeout = send_timeout

    async def register(self, connection: ClientConnection) -> None:
        async with self._lock:
            bucket = self._sessions.setdefault(connection.user_id, set())
            if connection not in bucket:
                bucket.add(connection)
                realtime_connections.labels("sessions").inc()

    async def unregister(self, connection: ClientConnection) -> list[str]:
        """Forget a session everywhere and return the room keys it was part of."""

        async with self._lock:
            return self._drop_locked(connection)

    def _drop_locked(self, connection: ClientConnection) -> list[str]:
        left: list[str] = []
        for room_key in list(self._rooms):
            members = self._rooms[room_key]
            if connection in members:
                members.discard(connection)
                left.append(room_key)
                realtime_connections.labels("rooms").dec()
                if not members:
                    self._rooms.pop(room_key, None)
        sessions = self._sessions.get(connection.user_id)
        if sessions and connection in sessions:
            sessions.discard(connection)
            realtime_connections.labels("sessions").dec()
            if not sessions:
                self._sessions.pop(connection.user_id, None)
        return left

    async def join(self, room_key: str, connection: ClientConnection) -> None:
        await self.register(connection)
        async with self._lock:
            members = self._rooms.setdefault(room_key, set())
            if connection not in members:
                members.add(connection)
                realtime_connections.labels("rooms").inc()

    async def leave(self, room_key: str, connection: ClientConnection) -> None:
        async with self._lock:
            members = self._rooms.get(room_key)
            if members and connection in members:
                members.discard(connection)
                realtime_connections.labels("rooms").dec()
                if not members:
                    self._rooms.pop(room_key, None)

    async def remove_user(self, room_key: str, user_id: int) -> int:
        """Detach and close every session of ``user_id`` subscribed to the room."""

        async with self._lock:
            members = self._rooms.get(room_key, set())
            removed = [connection for connection in members if connection.user_id == user_id]
            for connection in removed:
                self._drop_locked(connection)

        for connection in removed:
            logger.info(
                "Closing realtime session %s of user %s removed from %s",
                connection.connection_id,
                user_id,
                room_key,
            )
            if connection.connected:
                try:
                    await connection.websocket.close(code=1008)
                except RuntimeError:
                    continue
        return len(removed)

    async def connections(self, room_key: str) -> list[ClientConnection]:
        async with self._lock:
            return list(self._rooms.get(room_key, ()))

    async def sessions_of(self, user_id: int) -> list[ClientConnection]:
        async with self._lock:
            return list(self._sessions.get(user_id, ()))

    async def publish(
        self,
        room_key: str,
        event: str,
        payload: dict[str, Any],
        *,
        exclude_user: int | None = None,
        echo_to_user: int | None = None,
    ) -> int:
        """Deliver ``event`` to every session in the room, at most once per session.

        Sessions of ``exclude_user`` and ``echo_to_user`` are skipped in the room
        pass. Every session of ``echo_to_user`` then receives the payload marked
        with ``self: true``. Returns the number of successful deliveries.
        """

        envelope = {"type": event, **payload}
        skipped = {user_id for user_id in (exclude_user, echo_to_user) if user_id is not None}

        async with self._lock:
            targets: dict[ClientConnection, dict[str, Any]] = {
                connection: envelope
                for connection in self._rooms.get(room_key, ())
                if connection.user_id not in skipped
            }
            if echo_to_user is not None:
                echo = {**envelope, "self": True}
                for connection in self._sessions.get(echo_to_user, ()):
                    targets[connection] = echo

        if not targets:
            return 0

        results = await asyncio.gather(
            *(self._deliver(connection, message, event) for connection, message in targets.items())
        )
        delivered = sum(1 for ok in results if ok)
        realtime_events_total.labels("rooms", "out", event).inc()
        return delivered

    async def _deliver(self, connection: ClientConnection, message: dict[str, Any], event: str) -> bool:
        reason: str | None = None
        try:
            sent = await asyncio.wait_for(
                safe_send_json(connection.websocket, message), timeout=self._send_timeout
            )
            if not sent:
                reason = "disconnected"
        except asyncio.TimeoutError:
            reason = "timeout"
        except (TypeError, ValueError) as exc:
            raise BroadcastError(f"Event {event} cannot be serialized: {exc}") from exc

        if reason is None:
            return True

        realtime_publish_errors_total.labels("rooms", BACKEND_NAME, reason).inc()
        logger.warning(
            "Dropping realtime session %s of user %s after %s delivery of %s",
            connection.connection_id,
            connection.user_id,
            reason,
            event,
        )
        async with self._lock:
            self._drop_locked(connection)
        return False

    async def close_all(self) -> None:
        async with self._lock:
            connections = {conn for sessions in self._sessions.values() for conn in sessions}
            for connection in connections:
                self._drop_locked(connection)
        for connection in connections:
            if connection.connected:
                try:
                    await connection.websocket.close(code=1001)
                except RuntimeError:
                    continue


# ---------------------------------------------------------------------------
# Module level singletons
# ---------------------------------------------------------------------------


settings = get_settings()

room_manager = RoomConnectionManager(send_timeout=float(settings.realtime_send_timeout_seconds))
typing_store = TypingStatusStore(float(settings.realtime_typing_ttl_seconds))


async def startup_realtime() -> None:
    logger.info(
        "Realtime fan-out running in-process (send timeout %.1fs)",
        settings.realtime_send_timeout_seconds,
    )


async def shutdown_realtime() -> None:
    await room_manager.close_all()


def get_room_manager() -> RoomConnectionManager:
    return room_manager


def get_typing_store() -> TypingStatusStore:
    return typing_store


__all__ = [
    "ClientConnection",
    "RoomConnectionManager",
    "RoomFanout",
    "TypingStatusStore",
    "get_room_manager",
    "get_typing_store",
    "safe_send_json",
    "shutdown_realtime",
    "startup_realtime",
]
