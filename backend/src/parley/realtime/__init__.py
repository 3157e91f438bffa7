"""Realtime helpers for room-based websocket fan-out."""

from .managers import (  # noqa: F401
    ClientConnection,
    RoomConnectionManager,
    RoomFanout,
    TypingStatusStore,
    get_room_manager,
    get_typing_store,
    shutdown_realtime,
    startup_realtime,
)

__all__ = [
    "startup_realtime",
    "shutdown_realtime",
    "get_room_manager",
    "get_typing_store",
    "ClientConnection",
    "RoomConnectionManager",
    "RoomFanout",
    "TypingStatusStore",
]
