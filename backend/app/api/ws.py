"""WebSocket endpoint for real-time room events."""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Dict, TypeVar

from fastapi import APIRouter, WebSocket, status
from fastapi.exceptions import HTTPException
from fastapi.websockets import WebSocketDisconnect, WebSocketState

from app.api.deps import get_user_from_token
from app.config import get_settings
from app.database import get_db_session
from app.models import RoomKind, RoomReference, User
from app.monitoring.metrics import realtime_events_total
from app.services.errors import ChatError
from app.services.messaging import MessageLifecycle
from app.services.permissions import require_active_member, require_room
from parley.realtime.managers import (
    ClientConnection,
    get_room_manager,
    get_typing_store,
    safe_send_json,
)

router = APIRouter(prefix="/ws", tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

manager = get_room_manager()
typing_store = get_typing_store()

T = TypeVar("T")


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver* while sending keepalive pings when idle."""

    ping_payload = ping_payload or {"type": "ping"}
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break

            now = time.monotonic()
            should_ping = interval <= 0 or (
                now - last_activity >= interval
                and (last_ping_sent is None or now - last_ping_sent >= interval)
            )
            if should_ping:
                if not await safe_send_json(websocket, ping_payload):
                    break
                last_ping_sent = now
            continue
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            raise
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


async def _resolve_user(websocket: WebSocket) -> User | None:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Missing token")
        return None

    try:
        with get_db_session() as db:
            return get_user_from_token(token, db)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
        return None


async def _send_error(websocket: WebSocket, detail: str) -> None:
    await safe_send_json(websocket, {"type": "error", "detail": detail})


async def _handle_frame(
    websocket: WebSocket, user_id: int, room: RoomReference, payload: dict[str, Any]
) -> None:
    """Route a client frame; only ephemeral signals travel over the socket."""

    frame_type = payload.get("type")
    if frame_type == "ping":
        await safe_send_json(websocket, {"type": "pong"})
        return
    if frame_type == "pong":
        return

    realtime_events_total.labels("rooms", "in", str(frame_type)).inc()
    with get_db_session() as db:
        lifecycle = MessageLifecycle(db, manager, typing_store=typing_store)
        if frame_type == "typing":
            outcome = await lifecycle.typing(user_id, room, bool(payload.get("is_typing", True)))
        elif frame_type == "seen":
            outcome = await lifecycle.seen(user_id, room)
        else:
            await _send_error(websocket, "Unsupported frame type")
            return

    if not outcome.ok:
        await _send_error(websocket, outcome.reason or "Request rejected")


@router.websocket("/rooms/{kind}/{room_id}")
async def websocket_room(
    websocket: WebSocket,
    kind: RoomKind,
    room_id: int,
) -> None:
    """Stream events of one room to an authenticated member."""

    user = await _resolve_user(websocket)
    if user is None:
        return

    room = RoomReference(kind=kind, id=room_id)
    with get_db_session() as db:
        try:
            record = require_room(room, db)
            require_active_member(record.id, user.id, db)
        except ChatError as exc:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.reason)
            return
        snapshot = await typing_store.snapshot(room.key)

    await websocket.accept()
    connection = ClientConnection(websocket, user.id, uuid.uuid4().hex)
    await manager.join(room.key, connection)
    logger.info("User %s subscribed to %s", user.id, room.key)

    await safe_send_json(
        websocket,
        {"type": "typing_snapshot", "room": room.to_payload(), "users": snapshot},
    )

    try:
        async for raw_message in iter_keepalive_messages(
            websocket,
            websocket.receive_text,
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            try:
                payload = json.loads(raw_message)
            except json.JSONDecodeError:
                await _send_error(websocket, "Invalid message format")
                continue

            if not isinstance(payload, dict):
                await _send_error(websocket, "Message payload must be a JSON object")
                continue

            await _handle_frame(websocket, user.id, room, payload)
    finally:
        await manager.unregister(connection)
        if await typing_store.clear_user(room.key, user.id):
            await manager.publish(
                room.key,
                "typing_stopped",
                {
                    "room": room.to_payload(),
                    "user_id": user.id,
                    "users": await typing_store.snapshot(room.key),
                },
            )
        logger.info("User %s unsubscribed from %s", user.id, room.key)
