"""Persistence and queries for room messages.

Message ids are the only ordering authority: pages are anchored to id
boundaries so that concurrent inserts never shift an in-flight page.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, selectinload

from app.core.crypto import EncodedBody
from app.models import Message, Room
from app.services.errors import ChatValidationError, NotFoundError

_MUTABLE_FIELDS = frozenset(
    {"text", "text_ecb", "text_preview", "iv", "tag", "cipher_version", "edited"}
)
_EXTRA_FIELDS = frozenset(
    {"media", "media_file_name", "stickers", "lat", "lng", "contact", "forwarded"}
)


@dataclass(frozen=True)
class PageSlice:
    """Messages of one page, oldest first, and whether more exist past the anchor."""

    messages: list[Message] = field(default_factory=list)
    has_more: bool = False


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class MessageStore:
    """CRUD and room-scoped queries over :class:`Message` rows."""

    def __init__(self, session: Session):
        self._session = session

    # Writes ---------------------------------------------------------------

    def append(
        self,
        room: Room,
        sender_id: int,
        body: EncodedBody,
        *,
        time: int,
        reply_to_id: int | None = None,
        extras: dict[str, Any] | None = None,
    ) -> Message:
        """Persist a new message and flush so that its id is assigned."""

        extras = dict(extras or {})
        unknown = set(extras) - _EXTRA_FIELDS
        if unknown:
            raise ValueError(f"Unsupported message fields: {sorted(unknown)}")

        message = Message(
            room_id=room.id,
            sender_id=sender_id,
            time=time,
            reply_to_id=reply_to_id,
            **body.as_columns(),
            **extras,
        )
        self._session.add(message)
        self._session.flush()
        return message

    def mutate(self, message_id: int, **patch: Any) -> Message:
        """Apply an in-place edit. Identity, sender, room and time never change."""

        unknown = set(patch) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Immutable message fields: {sorted(unknown)}")
        message = self.get(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        for name, value in patch.items():
            setattr(message, name, value)
        self._session.flush()
        return message

    def remove(self, message_id: int) -> Message:
        """Delete a message and return the removed row.

        Pin cleanup is the caller's responsibility and must happen in the same transaction.
        """

        message = self.get(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        self._session.delete(message)
        self._session.flush()
        return message

    def remove_all(self, room: Room) -> int:
        result = self._session.execute(
            delete(Message).where(Message.room_id == room.id)
        )
        self._session.expire_all()
        return int(result.rowcount or 0)

    # Reads ----------------------------------------------------------------

    def get(self, message_id: int) -> Message | None:
        return self._session.get(Message, message_id)

    def get_in_room(self, room: Room, message_id: int) -> Message:
        """Return a message of ``room`` or raise :class:`NotFoundError`."""

        message = self.get(message_id)
        if message is None or message.room_id != room.id:
            raise NotFoundError("Message not found")
        return message

    def get_many(self, message_ids: Iterable[int]) -> dict[int, Message]:
        ids = {message_id for message_id in message_ids if message_id}
        if not ids:
            return {}
        stmt = select(Message).where(Message.id.in_(ids)).options(selectinload(Message.sender))
        return {message.id: message for message in self._session.execute(stmt).scalars()}

    def fetch_page(
        self,
        room: Room,
        *,
        before_id: int | None = None,
        after_id: int | None = None,
        exact_id: int | None = None,
        limit: int,
        visibility_floor: int | None = None,
    ) -> PageSlice:
        """Return one page of room history ordered by id ascending.

        ``before_id`` pages backward into older messages, ``after_id`` forward
        into newer ones and ``exact_id`` selects a single message. Without an
        anchor the newest ``limit`` messages are returned. Messages with
        ``time <= visibility_floor`` are hidden.
        """

        anchors = [value for value in (before_id, after_id, exact_id) if value is not None]
        if len(anchors) > 1:
            raise ChatValidationError("Only one of before_id, after_id or exact_id may be given")
        limit = max(int(limit), 0)

        stmt = select(Message).where(Message.room_id == room.id)
        if visibility_floor is not None:
            stmt = stmt.where(Message.time > visibility_floor)
        stmt = stmt.options(selectinload(Message.sender))

        if exact_id is not None:
            rows = list(self._session.execute(stmt.where(Message.id == exact_id)).scalars())
            return PageSlice(messages=rows, has_more=False)

        if after_id is not None:
            stmt = stmt.where(Message.id > after_id).order_by(Message.id.asc())
            rows = list(self._session.execute(stmt.limit(limit + 1)).scalars())
            has_more = len(rows) > limit
            return PageSlice(messages=rows[:limit], has_more=has_more)

        if before_id is not None:
            stmt = stmt.where(Message.id < before_id)
        stmt = stmt.order_by(Message.id.desc()).limit(limit + 1)
        rows = list(self._session.execute(stmt).scalars())
        has_more = len(rows) > limit
        if has_more:
            rows = rows[:-1]
        rows.reverse()
        return PageSlice(messages=rows, has_more=has_more)

    def count_in_room(
        self,
        room: Room,
        *,
        after_time: int | None = None,
        sender_id: int | None = None,
        exclude_sender_id: int | None = None,
    ) -> int:
        stmt = select(func.count(Message.id)).where(Message.room_id == room.id)
        if after_time is not None:
            stmt = stmt.where(Message.time > after_time)
        if sender_id is not None:
            stmt = stmt.where(Message.sender_id == sender_id)
        if exclude_sender_id is not None:
            stmt = stmt.where(Message.sender_id != exclude_sender_id)
        return int(self._session.execute(stmt).scalar_one())

    def search_preview(
        self,
        room: Room,
        query: str,
        *,
        limit: int,
        offset: int = 0,
        visibility_floor: int | None = None,
    ) -> list[Message]:
        """Substring search over plaintext previews, newest first. Ciphertext is never scanned."""

        pattern = f"%{_escape_like(query)}%"
        stmt = select(Message).where(
            Message.room_id == room.id,
            Message.text_preview.ilike(pattern, escape="\\"),
        )
        if visibility_floor is not None:
            stmt = stmt.where(Message.time > visibility_floor)
        stmt = (
            stmt.order_by(Message.id.desc())
            .offset(max(offset, 0))
            .limit(max(limit, 0))
            .options(selectinload(Message.sender))
        )
        return list(self._session.execute(stmt).scalars())

    def last_sent_by(self, room: Room, sender_id: int) -> Message | None:
        stmt = (
            select(Message)
            .where(Message.room_id == room.id, Message.sender_id == sender_id)
            .order_by(Message.id.desc())
            .limit(1)
        )
        return self._session.execute(stmt).scalar_one_or_none()


__all__ = ["MessageStore", "PageSlice"]
