"""Per-room administrative and ephemeral state.

The ``room_states`` row carries a version counter; every ORM update is issued
as ``UPDATE ... WHERE version = :seen`` so two admins acting at once cannot
silently overwrite each other (the loser gets ``StaleDataError``).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, selectinload

from app.models import (
    Message,
    Room,
    RoomBan,
    RoomJoinRequest,
    RoomMember,
    RoomMute,
    RoomState,
)
from app.services.errors import ForbiddenError, NotFoundError, TransientStorageError
from app.services.message_store import MessageStore

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from parley.realtime.managers import TypingStatusStore


class RoomStateService:
    """Pinned slot, read watermarks, typing, slow mode and moderation lists of a room."""

    def __init__(self, session: Session, typing_store: "TypingStatusStore | None" = None):
        self._session = session
        self._typing = typing_store
        self._messages = MessageStore(session)

    def ensure(self, room: Room) -> RoomState:
        state = self._session.get(RoomState, room.id)
        if state is None:
            state = RoomState(room_id=room.id, slowmode_seconds=0)
            self._session.add(state)
            self._session.flush()
        return state

    # Pinned slot ----------------------------------------------------------

    def get_pinned(self, room: Room) -> Message | None:
        state = self._session.get(RoomState, room.id)
        if state is None or state.pinned_message_id is None:
            return None
        message = self._messages.get(state.pinned_message_id)
        if message is None or message.room_id != room.id:
            return None
        return message

    def set_pinned(
        self, room: Room, message_id: int, *, pinned_by_id: int | None, at_time: int
    ) -> Message:
        """Pin ``message_id``, replacing any previous pin; the message must belong to ``room``."""

        message = self._messages.get_in_room(room, message_id)
        state = self.ensure(room)
        state.pinned_message_id = message.id
        state.pinned_by_id = pinned_by_id
        state.pinned_at = at_time
        self._session.flush()
        return message

    def clear_pinned(self, room: Room) -> bool:
        state = self._session.get(RoomState, room.id)
        if state is None or state.pinned_message_id is None:
            return False
        state.pinned_message_id = None
        state.pinned_by_id = None
        state.pinned_at = None
        self._session.flush()
        return True

    def clear_pinned_if(self, room: Room, message_id: int) -> bool:
        """Clear the pin only when it points at ``message_id``."""

        state = self._session.get(RoomState, room.id)
        if state is None or state.pinned_message_id != message_id:
            return False
        return self.clear_pinned(room)

    # Read state -----------------------------------------------------------

    def _membership(self, room: Room, user_id: int) -> RoomMember:
        stmt = select(RoomMember).where(
            RoomMember.room_id == room.id,
            RoomMember.user_id == user_id,
            RoomMember.active.is_(True),
        )
        membership = self._session.execute(stmt).scalar_one_or_none()
        if membership is None:
            raise ForbiddenError("Not a room member")
        return membership

    def record_seen(self, room: Room, user_id: int, at_time: int) -> RoomMember:
        membership = self._membership(room, user_id)
        membership.last_seen = at_time
        self._session.flush()
        return membership

    def set_clear_watermark(self, room: Room, user_id: int, at_time: int) -> RoomMember:
        membership = self._membership(room, user_id)
        membership.cleared_at = at_time
        self._session.flush()
        return membership

    def visibility_floor(self, room: Room, user_id: int) -> int | None:
        stmt = select(RoomMember.cleared_at).where(
            RoomMember.room_id == room.id, RoomMember.user_id == user_id
        )
        return self._session.execute(stmt).scalar_one_or_none()

    async def record_typing(
        self, room: Room, user_id: int, display_name: str, is_typing: bool
    ) -> tuple[list[dict[str, str | int]], bool]:
        """Update the in-memory typing snapshot; nothing is persisted."""

        if self._typing is None:
            return [], True
        return await self._typing.set_status(
            room.reference.key,
            user_id=user_id,
            display_name=display_name,
            is_typing=is_typing,
        )

    # Settings -------------------------------------------------------------

    def slowmode_seconds(self, room: Room) -> int:
        state = self._session.get(RoomState, room.id)
        return state.slowmode_seconds if state is not None else 0

    def update_settings(
        self, room: Room, *, expected_version: int | None, slowmode_seconds: int | None = None
    ) -> RoomState:
        """Compare-and-swap update of room settings.

        Raises:
            TransientStorageError: if ``expected_version`` no longer matches the stored row.
        """

        state = self.ensure(room)
        if expected_version is not None and state.version != expected_version:
            raise TransientStorageError("Room settings were changed concurrently, reload and retry")
        if slowmode_seconds is not None:
            state.slowmode_seconds = max(int(slowmode_seconds), 0)
        self._session.flush()
        return state

    # Moderation sub-collections --------------------------------------------

    def is_banned(self, room: Room, user_id: int) -> bool:
        stmt = select(RoomBan.id).where(RoomBan.room_id == room.id, RoomBan.user_id == user_id)
        return self._session.execute(stmt).first() is not None

    def add_ban(self, room: Room, user_id: int, *, banned_by_id: int | None) -> bool:
        if self.is_banned(room, user_id):
            return False
        self._session.add(RoomBan(room_id=room.id, user_id=user_id, banned_by_id=banned_by_id))
        self._session.flush()
        return True

    def remove_ban(self, room: Room, user_id: int) -> bool:
        result = self._session.execute(
            delete(RoomBan).where(RoomBan.room_id == room.id, RoomBan.user_id == user_id)
        )
        return bool(result.rowcount)

    def is_muted(self, room: Room, user_id: int) -> bool:
        stmt = select(RoomMute.id).where(RoomMute.room_id == room.id, RoomMute.user_id == user_id)
        return self._session.execute(stmt).first() is not None

    def add_mute(self, room: Room, user_id: int, *, muted_by_id: int | None) -> bool:
        if self.is_muted(room, user_id):
            return False
        self._session.add(RoomMute(room_id=room.id, user_id=user_id, muted_by_id=muted_by_id))
        self._session.flush()
        return True

    def remove_mute(self, room: Room, user_id: int) -> bool:
        result = self._session.execute(
            delete(RoomMute).where(RoomMute.room_id == room.id, RoomMute.user_id == user_id)
        )
        return bool(result.rowcount)

    def add_join_request(self, room: Room, user_id: int, *, at_time: int) -> bool:
        stmt = select(RoomJoinRequest.id).where(
            RoomJoinRequest.room_id == room.id, RoomJoinRequest.user_id == user_id
        )
        if self._session.execute(stmt).first() is not None:
            return False
        self._session.add(RoomJoinRequest(room_id=room.id, user_id=user_id, requested_at=at_time))
        self._session.flush()
        return True

    def pop_join_request(self, room: Room, user_id: int) -> RoomJoinRequest:
        stmt = select(RoomJoinRequest).where(
            RoomJoinRequest.room_id == room.id, RoomJoinRequest.user_id == user_id
        )
        request = self._session.execute(stmt).scalar_one_or_none()
        if request is None:
            raise NotFoundError("Join request not found")
        self._session.delete(request)
        self._session.flush()
        return request

    def drop_join_request(self, room: Room, user_id: int) -> bool:
        result = self._session.execute(
            delete(RoomJoinRequest).where(
                RoomJoinRequest.room_id == room.id, RoomJoinRequest.user_id == user_id
            )
        )
        return bool(result.rowcount)

    def list_join_requests(self, room: Room) -> list[RoomJoinRequest]:
        stmt = (
            select(RoomJoinRequest)
            .where(RoomJoinRequest.room_id == room.id)
            .order_by(RoomJoinRequest.requested_at.asc(), RoomJoinRequest.id.asc())
            .options(selectinload(RoomJoinRequest.user))
        )
        return list(self._session.execute(stmt).scalars())


__all__ = ["RoomStateService"]
