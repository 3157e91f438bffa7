"""Build client payloads from stored messages."""

from __future__ import annotations

import json
import logging
from pathlib import PurePosixPath
from typing import Iterable, Mapping

from pydantic import ValidationError

from app.core.crypto import safe_decrypt_message
from app.core.storage import resolve_media_url
from app.models import Message, MessageContentType, RoomReference, User
from app.schemas import ContactCard, MessageAuthor, MessageRead, ReplyPreview, RoomRef
from app.services.message_store import MessageStore

logger = logging.getLogger(__name__)

_IMAGE_SUFFIXES = frozenset({".jpg", ".jpeg", ".png", ".webp", ".bmp", ".heic"})
_VIDEO_SUFFIXES = frozenset({".mp4", ".mov", ".webm", ".mkv", ".3gp"})
_AUDIO_SUFFIXES = frozenset({".mp3", ".ogg", ".oga", ".opus", ".m4a", ".wav", ".aac"})


def _has_location(message: Message) -> bool:
    return bool(message.lat and message.lng and message.lat != "0" and message.lng != "0")


def _media_type(reference: str) -> MessageContentType:
    suffix = PurePosixPath(reference.split("?", 1)[0]).suffix.lower()
    if suffix in _IMAGE_SUFFIXES:
        return MessageContentType.IMAGE
    if suffix in _VIDEO_SUFFIXES:
        return MessageContentType.VIDEO
    if suffix in _AUDIO_SUFFIXES:
        return MessageContentType.AUDIO
    if suffix == ".gif":
        return MessageContentType.GIF
    return MessageContentType.FILE


def content_type_of(message: Message) -> MessageContentType:
    """Derive the rendering hint; later checks win when several fields are set."""

    content_type = MessageContentType.TEXT
    if message.media:
        content_type = _media_type(message.media)
    if message.stickers:
        content_type = (
            MessageContentType.GIF if ".gif" in message.stickers.lower() else MessageContentType.STICKER
        )
    if message.contact:
        content_type = MessageContentType.CONTACT
    if _has_location(message):
        content_type = MessageContentType.MAP
    return content_type


def author_of(user: User | None) -> MessageAuthor | None:
    if user is None:
        return None
    return MessageAuthor(
        id=user.id,
        login=user.login,
        display_name=user.display_name or user.login,
        avatar_url=user.avatar_url,
    )


def _contact_of(message: Message) -> ContactCard | None:
    if not message.contact:
        return None
    try:
        return ContactCard.model_validate(json.loads(message.contact))
    except (ValueError, ValidationError):
        logger.warning("Message %s carries an unreadable contact card", message.id)
        return None


def reply_preview(
    message: Message,
    replies: Mapping[int, Message],
    visibility_floor: int | None = None,
) -> ReplyPreview | None:
    """Preview of the replied-to message.

    ``None`` when the target has been deleted or is hidden by the reader's
    clear-history watermark.
    """

    if not message.reply_to_id:
        return None
    target = replies.get(message.reply_to_id)
    if target is None or target.room_id != message.room_id:
        return None
    if visibility_floor is not None and target.time <= visibility_floor:
        return None
    return ReplyPreview(
        id=target.id,
        sender_id=target.sender_id,
        text=safe_decrypt_message(target),
        media_url=resolve_media_url(target.media),
        time=target.time,
    )


def serialize_message(
    room: RoomReference,
    message: Message,
    replies: Mapping[int, Message] | None = None,
    visibility_floor: int | None = None,
) -> MessageRead:
    return MessageRead(
        id=message.id,
        room=RoomRef(kind=room.kind, id=room.id),
        sender_id=message.sender_id,
        sender=author_of(message.sender),
        time=message.time,
        text=message.text or "",
        text_ecb=message.text_ecb or "",
        iv=message.iv,
        tag=message.tag,
        cipher_version=message.cipher_version,
        content_type=content_type_of(message),
        media_url=resolve_media_url(message.media),
        media_file_name=message.media_file_name,
        sticker=message.stickers,
        lat=message.lat,
        lng=message.lng,
        contact=_contact_of(message),
        reply_to_id=message.reply_to_id,
        reply=reply_preview(message, replies or {}, visibility_floor),
        forwarded=message.forwarded,
        edited=message.edited,
    )


def serialize_messages(
    room: RoomReference,
    messages: Iterable[Message],
    store: MessageStore,
    *,
    visibility_floor: int | None = None,
) -> list[MessageRead]:
    """Serialize a batch, loading every reply target with a single query."""

    rows = list(messages)
    replies = store.get_many(message.reply_to_id for message in rows if message.reply_to_id)
    return [serialize_message(room, message, replies, visibility_floor) for message in rows]


__all__ = [
    "author_of",
    "content_type_of",
    "reply_preview",
    "serialize_message",
    "serialize_messages",
]
