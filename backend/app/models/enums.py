from __future__ import annotations

from enum import Enum


class RoomKind(str, Enum):
    """Kinds of conversation scopes sharing the message table."""

    DIRECT = "direct"
    GROUP = "group"
    CHANNEL_POST = "channel_post"


class RoomRole(str, Enum):
    """Roles that a user can have inside a room."""

    OWNER = "owner"
    ADMIN = "admin"
    MODERATOR = "moderator"
    MEMBER = "member"


class MessageContentType(str, Enum):
    """Rendering hint derived from the populated message fields."""

    TEXT = "text"
    FILE = "file"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    STICKER = "sticker"
    GIF = "gif"
    MAP = "map"
    CONTACT = "contact"
