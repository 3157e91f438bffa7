"""Schemas related to chat messages."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models.enums import MessageContentType, RoomKind


class RoomRef(BaseModel):
    """Room identity as exposed to clients."""

    kind: RoomKind
    id: int


class MessageAuthor(BaseModel):
    """Lightweight author information for displaying messages."""

    id: int
    login: str
    display_name: str | None = None
    avatar_url: str | None = None


class ContactCard(BaseModel):
    """Structured contact shared inside a message."""

    name: str = Field(..., min_length=1, max_length=128)
    phone: str | None = Field(default=None, max_length=64)
    email: str | None = Field(default=None, max_length=255)
    user_id: int | None = None


class ReplyPreview(BaseModel):
    """Decrypted excerpt of the message being replied to."""

    id: int
    sender_id: int
    text: str = ""
    media_url: str | None = None
    time: int


class MessageRead(BaseModel):
    """Serialized representation of a chat message.

    ``text`` carries the ciphertext; clients decrypt it with ``iv``, ``tag``
    and the creation ``time``. ``text_ecb`` is the legacy copy for web clients.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    room: RoomRef
    sender_id: int
    sender: MessageAuthor | None = None
    time: int
    text: str = ""
    text_ecb: str = ""
    iv: str | None = None
    tag: str | None = None
    cipher_version: int = 1
    content_type: MessageContentType = MessageContentType.TEXT
    media_url: str | None = None
    media_file_name: str | None = None
    sticker: str | None = None
    lat: str | None = None
    lng: str | None = None
    contact: ContactCard | None = None
    reply_to_id: int | None = None
    reply: ReplyPreview | None = None
    forwarded: bool = False
    edited: bool = False


class HistoryPage(BaseModel):
    """Page of messages ordered oldest first with the room's pinned message."""

    items: list[MessageRead]
    has_more: bool = False
    pinned_message: MessageRead | None = None


class SearchPage(BaseModel):
    items: list[MessageRead]
    limit: int
    offset: int


class UnreadCount(BaseModel):
    room: RoomRef
    unread: int = Field(0, ge=0)


class ClearHistoryResult(BaseModel):
    scope: Literal["self", "all"]
    deleted_count: int = 0
    cleared_at: int | None = None


class SendRequest(BaseModel):
    """Payload of a new message. At least one content field must be set."""

    text: str = ""
    reply_to_id: int | None = Field(default=None, ge=1)
    sticker: str | None = Field(default=None, max_length=512)
    lat: str | None = Field(default=None, max_length=32)
    lng: str | None = Field(default=None, max_length=32)
    contact: ContactCard | None = None
    media: str | None = Field(default=None, max_length=512)
    media_file_name: str | None = Field(default=None, max_length=255)
    forwarded: bool = False

    @field_validator("lat", "lng", mode="before")
    @classmethod
    def coerce_coordinate(cls, value: Any) -> str | None:
        if value in (None, ""):
            return None
        return str(value)

    @field_validator("sticker", "media", "media_file_name", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def has_location(self) -> bool:
        return bool(self.lat and self.lng and self.lat != "0" and self.lng != "0")

    @property
    def has_content(self) -> bool:
        return bool(
            self.text.strip()
            or self.sticker
            or self.has_location
            or self.contact is not None
            or self.media
        )


class EditRequest(BaseModel):
    text: str


class HistoryRequest(BaseModel):
    """Anchors for history paging; at most one may be set."""

    before_id: int | None = Field(default=None, ge=1)
    after_id: int | None = Field(default=None, ge=0)
    message_id: int | None = Field(default=None, ge=1)
    limit: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def single_anchor(self) -> "HistoryRequest":
        anchors = [self.before_id, self.after_id, self.message_id]
        if sum(anchor is not None for anchor in anchors) > 1:
            raise ValueError("Only one of before_id, after_id or message_id may be given")
        return self


class SearchRequest(BaseModel):
    query: str
    limit: int | None = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)


class TypingRequest(BaseModel):
    is_typing: bool = True


class PinRequest(BaseModel):
    message_id: int = Field(..., ge=1)


class ClearHistoryRequest(BaseModel):
    scope: Literal["self", "all"] = "self"


class UserActionRequest(BaseModel):
    """Transient activity relayed to the room, e.g. ``recording`` or ``choosing_sticker``."""

    action: str = Field(..., min_length=1, max_length=32, pattern=r"^[a-z_]+$")


class MessageEditedEvent(BaseModel):
    """Ciphertext-only payload of an edit broadcast."""

    id: int
    text: str
    text_ecb: str
    iv: str | None
    tag: str | None
    cipher_version: int
    time: int
    edited: bool = True


class MessageDeleted(BaseModel):
    id: int
    unpinned: bool = False


class SeenReceipt(BaseModel):
    user_id: int
    at_time: int


class TypingState(BaseModel):
    user_id: int
    is_typing: bool
    users: list[dict[str, Any]] = Field(default_factory=list)
