"""Database models package."""

from .base import Base
from .chat import (
    Message,
    Room,
    RoomBan,
    RoomJoinRequest,
    RoomMember,
    RoomMute,
    RoomReference,
    RoomState,
    User,
)
from .enums import MessageContentType, RoomKind, RoomRole

__all__ = [
    "Base",
    "User",
    "Room",
    "RoomMember",
    "RoomState",
    "RoomBan",
    "RoomMute",
    "RoomJoinRequest",
    "Message",
    "RoomReference",
    "RoomKind",
    "RoomRole",
    "MessageContentType",
]
