"""Pydantic schemas for API payloads."""

from .messages import (
    ClearHistoryRequest,
    ClearHistoryResult,
    ContactCard,
    EditRequest,
    HistoryPage,
    HistoryRequest,
    MessageAuthor,
    MessageDeleted,
    MessageEditedEvent,
    MessageRead,
    PinRequest,
    ReplyPreview,
    RoomRef,
    SearchPage,
    SearchRequest,
    SeenReceipt,
    SendRequest,
    TypingRequest,
    TypingState,
    UnreadCount,
    UserActionRequest,
)
from .rooms import (
    JoinRequestRead,
    MemberTarget,
    RoomCreate,
    RoomMemberRead,
    RoomMemberRoleUpdate,
    RoomRead,
    RoomSettingsRead,
    RoomSettingsUpdate,
)

__all__ = [
    "ClearHistoryRequest",
    "ClearHistoryResult",
    "ContactCard",
    "EditRequest",
    "HistoryPage",
    "HistoryRequest",
    "JoinRequestRead",
    "MemberTarget",
    "MessageAuthor",
    "MessageDeleted",
    "MessageEditedEvent",
    "MessageRead",
    "PinRequest",
    "ReplyPreview",
    "RoomCreate",
    "RoomMemberRead",
    "RoomMemberRoleUpdate",
    "RoomRead",
    "RoomRef",
    "RoomSettingsRead",
    "RoomSettingsUpdate",
    "SearchPage",
    "SearchRequest",
    "SeenReceipt",
    "SendRequest",
    "TypingRequest",
    "TypingState",
    "UnreadCount",
    "UserActionRequest",
]
