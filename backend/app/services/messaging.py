"""Message lifecycle engine.

Every verb runs the same pipeline: authorize the caller, validate and
transform the payload, persist in one transaction, then broadcast to the
room. Broadcasting happens after commit and never affects the outcome.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from app.config import Settings
from app.core.crypto import encrypt_for_storage
from app.models import Message, Room, RoomMember, RoomReference, User
from app.schemas import (
    ClearHistoryResult,
    EditRequest,
    HistoryPage,
    HistoryRequest,
    MessageDeleted,
    MessageEditedEvent,
    MessageRead,
    RoomRef,
    SearchPage,
    SearchRequest,
    SeenReceipt,
    SendRequest,
    TypingState,
    UnreadCount,
    UserActionRequest,
)
from app.services.base import Clock, RoomService, operation
from app.services.errors import (
    ChatValidationError,
    ForbiddenError,
    NotFoundError,
    SlowModeError,
)
from app.services.message_store import MessageStore
from app.services.permissions import (
    can_act_on_message,
    get_membership,
    require_active_member,
    require_privileged,
    role_capabilities,
)
from app.services.rendering import serialize_messages
from app.services.room_state import RoomStateService

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from sqlalchemy.orm import Session

    from parley.realtime.managers import RoomFanout, TypingStatusStore

logger = logging.getLogger(__name__)

MESSAGE_CREATED = "message_created"
MESSAGE_EDITED = "message_edited"
MESSAGE_DELETED = "message_deleted"
MESSAGE_PINNED = "message_pinned"
MESSAGE_UNPINNED = "message_unpinned"
SEEN = "seen"
TYPING = "typing"
TYPING_STOPPED = "typing_stopped"
HISTORY_CLEARED = "history_cleared"
USER_ACTION = "user_action"


class MessageLifecycle(RoomService):
    """Send, edit, delete, pin, seen, typing, clear-history and search for one room at a time."""

    def __init__(
        self,
        db: "Session",
        fanout: "RoomFanout | None" = None,
        *,
        clock: Clock | None = None,
        settings: Settings | None = None,
        typing_store: "TypingStatusStore | None" = None,
    ) -> None:
        super().__init__(db, fanout, clock=clock, settings=settings)
        self._store = MessageStore(db)
        self._state = RoomStateService(db, typing_store)

    # Helpers --------------------------------------------------------------

    def _render(
        self, room: RoomReference, message: Message, *, visibility_floor: int | None = None
    ) -> MessageRead:
        return serialize_messages(room, [message], self._store, visibility_floor=visibility_floor)[0]

    def _bounded_limit(self, requested: int | None, default: int, maximum: int) -> int:
        if requested is None or requested <= 0:
            return default
        return min(requested, maximum)

    def _require_encodable(self, text: str) -> None:
        # Lone surrogates survive JSON decoding but cannot be stored or encrypted.
        try:
            text.encode("utf-8")
        except UnicodeEncodeError:
            raise ChatValidationError("Text contains invalid characters") from None

    def _validate_text(self, text: str) -> None:
        self._require_encodable(text)
        limit = self._settings.chat_message_max_length
        if len(text) > limit:
            raise ChatValidationError(f"Message exceeds {limit} characters")

    def _check_slow_mode(self, room: Room, membership: RoomMember, now: int) -> None:
        if role_capabilities(membership.role).is_privileged:
            return
        interval = self._state.slowmode_seconds(room)
        if interval <= 0:
            return
        last = self._store.last_sent_by(room, membership.user_id)
        if last is not None and now - last.time < interval:
            raise SlowModeError(interval - (now - last.time))

    def _message_with_room(self, message_id: int) -> tuple[Message, Room]:
        message = self._store.get(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        room = self._db.get(Room, message.room_id)
        if room is None:
            raise NotFoundError("Room not found")
        return message, room

    # History --------------------------------------------------------------

    @operation("history")
    async def history(
        self, caller_id: int, room_ref: RoomReference, request: HistoryRequest
    ) -> HistoryPage:
        """Page through the caller's visible history together with the current pin.

        A pin or reply target at or below the caller's clear watermark is left out.
        """

        room = self._room(room_ref)
        require_active_member(room.id, caller_id, self._db)
        floor = self._state.visibility_floor(room, caller_id)
        limit = self._bounded_limit(
            request.limit,
            self._settings.chat_history_default_limit,
            self._settings.chat_history_max_limit,
        )
        page = self._store.fetch_page(
            room,
            before_id=request.before_id,
            after_id=request.after_id,
            exact_id=request.message_id,
            limit=limit,
            visibility_floor=floor,
        )
        pinned = self._state.get_pinned(room)
        if pinned is not None and floor is not None and pinned.time <= floor:
            pinned = None
        return HistoryPage(
            items=serialize_messages(room_ref, page.messages, self._store, visibility_floor=floor),
            has_more=page.has_more,
            pinned_message=(
                self._render(room_ref, pinned, visibility_floor=floor) if pinned is not None else None
            ),
        )

    # Send / edit / delete ---------------------------------------------------

    @operation("send")
    async def send(self, caller_id: int, room_ref: RoomReference, request: SendRequest) -> MessageRead:
        room = self._room(room_ref)
        membership = require_active_member(room.id, caller_id, self._db)
        if self._state.is_muted(room, caller_id):
            raise ForbiddenError("You are muted in this room")
        if not request.has_content:
            raise ChatValidationError("Message has no content")

        text = request.text if request.text.strip() else ""
        self._validate_text(text)

        now = self._now()
        self._check_slow_mode(room, membership, now)

        if request.reply_to_id is not None:
            target = self._store.get(request.reply_to_id)
            if target is None:
                raise NotFoundError("Reply target not found")
            if target.room_id != room.id:
                raise ChatValidationError("Reply target belongs to another room")

        extras: dict[str, object] = {
            "media": request.media,
            "media_file_name": request.media_file_name,
            "stickers": request.sticker,
            "forwarded": request.forwarded,
        }
        if request.has_location:
            extras.update(lat=request.lat, lng=request.lng)
        if request.contact is not None:
            extras["contact"] = json.dumps(request.contact.model_dump(exclude_none=True))

        message = self._store.append(
            room,
            caller_id,
            encrypt_for_storage(text, now),
            time=now,
            reply_to_id=request.reply_to_id,
            extras=extras,
        )
        room.last_activity_at = now
        self._db.commit()

        rendered = self._render(room_ref, message)
        logger.info("User %s sent message %s to %s", caller_id, rendered.id, room_ref.key)
        await self._publish(
            room_ref,
            MESSAGE_CREATED,
            {"message": rendered.model_dump(mode="json")},
            echo_to_user=caller_id,
        )
        return rendered

    @operation("edit")
    async def edit(self, caller_id: int, message_id: int, request: EditRequest) -> MessageEditedEvent:
        """Replace the text of the caller's own message.

        The body is re-encrypted with the original creation time so that the
        key derivation of a message never changes.
        """

        if not request.text.strip():
            raise ChatValidationError("Text is required")
        self._validate_text(request.text)

        message, room = self._message_with_room(message_id)
        if message.sender_id != caller_id:
            raise ForbiddenError("Cannot edit someone else's message")
        require_active_member(room.id, caller_id, self._db)

        body = encrypt_for_storage(request.text, message.time)
        self._store.mutate(message.id, **body.as_columns(), edited=True)
        event = MessageEditedEvent(
            id=message.id,
            text=body.text,
            text_ecb=body.text_ecb,
            iv=body.iv,
            tag=body.tag,
            cipher_version=body.cipher_version,
            time=message.time,
        )
        room_ref = room.reference
        self._db.commit()

        logger.info("User %s edited message %s in %s", caller_id, event.id, room_ref.key)
        await self._publish(
            room_ref, MESSAGE_EDITED, event.model_dump(mode="json"), echo_to_user=caller_id
        )
        return event

    @operation("delete")
    async def delete(self, caller_id: int, message_id: int) -> MessageDeleted:
        """Remove a message; a pin pointing at it is cleared in the same transaction."""

        message, room = self._message_with_room(message_id)
        membership = get_membership(room.id, caller_id, self._db)
        if membership is None:
            raise ForbiddenError("Not a room member")
        if not can_act_on_message(membership, message):
            raise ForbiddenError("Cannot delete someone else's message")

        room_ref = room.reference
        removed_id = message.id
        unpinned = self._state.clear_pinned_if(room, removed_id)
        self._store.remove(removed_id)
        self._db.commit()

        logger.info("User %s deleted message %s in %s", caller_id, removed_id, room_ref.key)
        if unpinned:
            await self._publish(room_ref, MESSAGE_UNPINNED, {})
        await self._publish(room_ref, MESSAGE_DELETED, {"id": removed_id})
        return MessageDeleted(id=removed_id, unpinned=unpinned)

    # Pinning --------------------------------------------------------------

    @operation("pin")
    async def pin(self, caller_id: int, room_ref: RoomReference, message_id: int) -> MessageRead:
        room = self._room(room_ref)
        require_privileged(room.id, caller_id, self._db)
        message = self._state.set_pinned(
            room, message_id, pinned_by_id=caller_id, at_time=self._now()
        )
        self._db.commit()

        rendered = self._render(room_ref, message)
        await self._publish(
            room_ref,
            MESSAGE_PINNED,
            {"id": rendered.id, "message": rendered.model_dump(mode="json")},
        )
        return rendered

    @operation("unpin")
    async def unpin(self, caller_id: int, room_ref: RoomReference) -> bool:
        room = self._room(room_ref)
        require_privileged(room.id, caller_id, self._db)
        cleared = self._state.clear_pinned(room)
        self._db.commit()
        if cleared:
            await self._publish(room_ref, MESSAGE_UNPINNED, {})
        return cleared

    # Receipts and ephemeral signals ------------------------------------------

    @operation("seen")
    async def seen(self, caller_id: int, room_ref: RoomReference) -> SeenReceipt:
        room = self._room(room_ref)
        now = self._now()
        self._state.record_seen(room, caller_id, now)
        self._db.commit()

        receipt = SeenReceipt(user_id=caller_id, at_time=now)
        await self._publish(room_ref, SEEN, receipt.model_dump())
        return receipt

    @operation("typing")
    async def typing(self, caller_id: int, room_ref: RoomReference, is_typing: bool) -> TypingState:
        room = self._room(room_ref)
        if self._settings.typing_requires_membership:
            require_active_member(room.id, caller_id, self._db)
        user = self._db.get(User, caller_id)
        display_name = (user.display_name or user.login) if user is not None else str(caller_id)

        users, changed = await self._state.record_typing(room, caller_id, display_name, is_typing)
        state = TypingState(user_id=caller_id, is_typing=is_typing, users=users)
        if is_typing or changed:
            await self._publish(
                room_ref,
                TYPING if is_typing else TYPING_STOPPED,
                {"user_id": caller_id, "users": users},
                exclude_user=caller_id,
            )
        return state

    @operation("user_action")
    async def user_action(
        self, caller_id: int, room_ref: RoomReference, request: UserActionRequest
    ) -> dict[str, int | str]:
        room = self._room(room_ref)
        require_active_member(room.id, caller_id, self._db)
        payload: dict[str, int | str] = {"user_id": caller_id, "action": request.action}
        await self._publish(room_ref, USER_ACTION, payload, exclude_user=caller_id)
        return payload

    # History clearing -------------------------------------------------------

    @operation("clear_history_self")
    async def clear_history_self(self, caller_id: int, room_ref: RoomReference) -> ClearHistoryResult:
        """Hide everything up to now from the caller only."""

        room = self._room(room_ref)
        now = self._now()
        self._state.set_clear_watermark(room, caller_id, now)
        self._db.commit()
        return ClearHistoryResult(scope="self", cleared_at=now)

    @operation("clear_history_all")
    async def clear_history_all(self, caller_id: int, room_ref: RoomReference) -> ClearHistoryResult:
        room = self._room(room_ref)
        require_privileged(room.id, caller_id, self._db)
        self._state.clear_pinned(room)
        deleted = self._store.remove_all(room)
        self._db.commit()

        logger.info("User %s cleared %s messages in %s", caller_id, deleted, room_ref.key)
        await self._publish(room_ref, HISTORY_CLEARED, {})
        return ClearHistoryResult(scope="all", deleted_count=deleted)

    # Queries --------------------------------------------------------------

    @operation("search")
    async def search(self, caller_id: int, room_ref: RoomReference, request: SearchRequest) -> SearchPage:
        room = self._room(room_ref)
        require_active_member(room.id, caller_id, self._db)
        query = request.query.strip()
        minimum = self._settings.chat_search_min_query_length
        if len(query) < minimum:
            raise ChatValidationError(f"Search query must be at least {minimum} characters")
        self._require_encodable(query)

        limit = self._bounded_limit(
            request.limit,
            self._settings.chat_search_default_limit,
            self._settings.chat_search_max_limit,
        )
        floor = self._state.visibility_floor(room, caller_id)
        rows = self._store.search_preview(
            room,
            query,
            limit=limit,
            offset=request.offset,
            visibility_floor=floor,
        )
        return SearchPage(
            items=serialize_messages(room_ref, rows, self._store, visibility_floor=floor),
            limit=limit,
            offset=request.offset,
        )

    @operation("unread_count")
    async def unread_count(self, caller_id: int, room_ref: RoomReference) -> UnreadCount:
        """Messages from others newer than both the caller's last read and clear watermark."""

        room = self._room(room_ref)
        membership = require_active_member(room.id, caller_id, self._db)
        marks = [mark for mark in (membership.last_seen, membership.cleared_at) if mark is not None]
        unread = self._store.count_in_room(
            room,
            after_time=max(marks) if marks else None,
            exclude_sender_id=caller_id,
        )
        return UnreadCount(room=RoomRef(kind=room_ref.kind, id=room_ref.id), unread=unread)


__all__ = [
    "HISTORY_CLEARED",
    "MESSAGE_CREATED",
    "MESSAGE_DELETED",
    "MESSAGE_EDITED",
    "MESSAGE_PINNED",
    "MESSAGE_UNPINNED",
    "MessageLifecycle",
    "SEEN",
    "TYPING",
    "TYPING_STOPPED",
    "USER_ACTION",
]
