"""Room membership management: joining, leaving, roles and moderation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.models import Room, RoomKind, RoomMember, RoomReference, RoomRole, User
from app.schemas import (
    JoinRequestRead,
    RoomCreate,
    RoomMemberRead,
    RoomRead,
    RoomRef,
    RoomSettingsRead,
    RoomSettingsUpdate,
)
from app.services.base import RoomService, operation
from app.services.errors import ChatValidationError, ForbiddenError, NotFoundError
from app.services.permissions import (
    ASSIGNABLE_ROLES,
    can_manage_member,
    get_membership,
    require_active_member,
    require_owner,
    require_privileged,
)
from app.services.rendering import author_of
from app.services.room_state import RoomStateService

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from parley.realtime.managers import RoomFanout

logger = logging.getLogger(__name__)


class MemberManagement(RoomService):
    """Operations that change who belongs to a room and what they may do there."""

    def __init__(self, db: Session, fanout: "RoomFanout | None" = None, **kwargs: Any) -> None:
        super().__init__(db, fanout, **kwargs)
        self._state = RoomStateService(db)

    def _require_user(self, user_id: int) -> User:
        user = self._db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def _activate(self, room: Room, user_id: int, role: RoomRole = RoomRole.MEMBER) -> RoomMember:
        """Create or reactivate the membership of ``user_id``; active rows are left untouched."""

        membership = get_membership(room.id, user_id, self._db, active_only=False)
        if membership is None:
            membership = RoomMember(room_id=room.id, user_id=user_id, role=role, active=True)
            self._db.add(membership)
        elif not membership.active:
            membership.active = True
            membership.role = role
        self._db.flush()
        return membership

    def _target(self, room: Room, actor: RoomMember, user_id: int) -> RoomMember:
        target = get_membership(room.id, user_id, self._db, active_only=False)
        if target is None:
            raise NotFoundError("Member not found")
        if not can_manage_member(actor, target):
            raise ForbiddenError("Insufficient permissions")
        return target

    def _member_read(self, membership: RoomMember, room: Room) -> RoomMemberRead:
        return RoomMemberRead(
            user=author_of(membership.user),
            role=membership.role,
            active=membership.active,
            last_seen=membership.last_seen,
            muted=self._state.is_muted(room, membership.user_id),
        )

    # Rooms ----------------------------------------------------------------

    @operation("create_room")
    async def create_room(self, caller_id: int, payload: RoomCreate) -> RoomRead:
        """Create a room owned by the caller together with its state row.

        Direct rooms need exactly one other participant.
        """

        self._require_user(caller_id)
        member_ids = sorted({user_id for user_id in payload.member_ids if user_id != caller_id})
        for user_id in member_ids:
            self._require_user(user_id)
        if payload.kind == RoomKind.DIRECT and len(member_ids) != 1:
            raise ChatValidationError("Direct rooms need exactly one other participant")

        room = Room(
            kind=payload.kind,
            title=payload.title,
            owner_id=caller_id,
            external_ref=payload.external_ref,
            last_activity_at=self._now(),
        )
        self._db.add(room)
        self._db.flush()
        self._db.add(RoomMember(room_id=room.id, user_id=caller_id, role=RoomRole.OWNER))
        for user_id in member_ids:
            self._db.add(RoomMember(room_id=room.id, user_id=user_id, role=RoomRole.MEMBER))
        self._state.ensure(room)
        self._db.commit()
        self._db.refresh(room)

        logger.info("User %s created %s room %s", caller_id, room.kind.value, room.id)
        return RoomRead.model_validate(room)

    @operation("list_members")
    async def list_members(self, caller_id: int, room_ref: RoomReference) -> list[RoomMemberRead]:
        room = self._room(room_ref)
        require_active_member(room.id, caller_id, self._db)
        stmt = (
            select(RoomMember)
            .where(RoomMember.room_id == room.id, RoomMember.active.is_(True))
            .order_by(RoomMember.id.asc())
            .options(selectinload(RoomMember.user))
        )
        return [self._member_read(row, room) for row in self._db.execute(stmt).scalars()]

    # Self service ---------------------------------------------------------

    @operation("join")
    async def join(self, caller_id: int, room_ref: RoomReference) -> RoomMemberRead:
        room = self._room(room_ref)
        if room.kind == RoomKind.DIRECT:
            raise ForbiddenError("Direct rooms cannot be joined")
        if self._state.is_banned(room, caller_id):
            raise ForbiddenError("You are banned from this room")

        existing = get_membership(room.id, caller_id, self._db)
        membership = existing or self._activate(room, caller_id)
        result = self._member_read(membership, room)
        self._db.commit()
        if existing is None:
            await self._publish(room_ref, "member_joined", {"user_id": caller_id})
        return result

    @operation("leave")
    async def leave(self, caller_id: int, room_ref: RoomReference) -> bool:
        room = self._room(room_ref)
        membership = require_active_member(room.id, caller_id, self._db)
        if membership.role == RoomRole.OWNER:
            raise ForbiddenError("The owner cannot leave the room")
        membership.active = False
        self._db.commit()
        await self._publish(room_ref, "member_left", {"user_id": caller_id})
        await self._detach(room_ref, caller_id)
        return True

    @operation("request_join")
    async def request_join(self, caller_id: int, room_ref: RoomReference) -> bool:
        """File a join request; returns ``False`` when one is already pending."""

        room = self._room(room_ref)
        if self._state.is_banned(room, caller_id):
            raise ForbiddenError("You are banned from this room")
        if get_membership(room.id, caller_id, self._db) is not None:
            raise ChatValidationError("Already a member")
        created = self._state.add_join_request(room, caller_id, at_time=self._now())
        self._db.commit()
        if created:
            await self._publish(room_ref, "join_requested", {"user_id": caller_id})
        return created

    # Moderator actions ------------------------------------------------------

    @operation("add_member")
    async def add_member(self, caller_id: int, room_ref: RoomReference, user_id: int) -> RoomMemberRead:
        room = self._room(room_ref)
        require_privileged(room.id, caller_id, self._db)
        self._require_user(user_id)
        if self._state.is_banned(room, user_id):
            raise ForbiddenError("User is banned from this room")
        already = get_membership(room.id, user_id, self._db) is not None
        membership = self._activate(room, user_id)
        result = self._member_read(membership, room)
        self._db.commit()
        if not already:
            await self._publish(room_ref, "member_joined", {"user_id": user_id, "added_by": caller_id})
        return result

    @operation("remove_member")
    async def remove_member(self, caller_id: int, room_ref: RoomReference, user_id: int) -> bool:
        room = self._room(room_ref)
        actor = require_privileged(room.id, caller_id, self._db)
        target = self._target(room, actor, user_id)
        if not target.active:
            raise NotFoundError("Member not found")
        target.active = False
        self._db.commit()
        logger.info("User %s removed %s from %s", caller_id, user_id, room_ref.key)
        await self._publish(room_ref, "member_removed", {"user_id": user_id, "removed_by": caller_id})
        await self._detach(room_ref, user_id)
        return True

    @operation("set_role")
    async def set_role(
        self, caller_id: int, room_ref: RoomReference, user_id: int, role: RoomRole
    ) -> RoomMemberRead:
        room = self._room(room_ref)
        require_owner(room.id, caller_id, self._db)
        if role not in ASSIGNABLE_ROLES:
            raise ChatValidationError("Role cannot be assigned")
        target = get_membership(room.id, user_id, self._db)
        if target is None:
            raise NotFoundError("Member not found")
        if target.role == RoomRole.OWNER:
            raise ForbiddenError("The owner role cannot be changed")
        target.role = role
        result = self._member_read(target, room)
        self._db.commit()
        await self._publish(room_ref, "role_changed", {"user_id": user_id, "role": role.value})
        return result

    @operation("ban")
    async def ban(self, caller_id: int, room_ref: RoomReference, user_id: int) -> bool:
        """Ban a user: the membership is deactivated and pending join requests are dropped."""

        room = self._room(room_ref)
        actor = require_privileged(room.id, caller_id, self._db)
        target = get_membership(room.id, user_id, self._db, active_only=False)
        if target is not None:
            if not can_manage_member(actor, target):
                raise ForbiddenError("Insufficient permissions")
            target.active = False
        else:
            self._require_user(user_id)
        created = self._state.add_ban(room, user_id, banned_by_id=caller_id)
        self._state.drop_join_request(room, user_id)
        self._db.commit()
        if created:
            await self._publish(room_ref, "member_banned", {"user_id": user_id})
        await self._detach(room_ref, user_id)
        return created

    @operation("unban")
    async def unban(self, caller_id: int, room_ref: RoomReference, user_id: int) -> bool:
        room = self._room(room_ref)
        require_privileged(room.id, caller_id, self._db)
        if not self._state.remove_ban(room, user_id):
            raise NotFoundError("User is not banned")
        self._db.commit()
        await self._publish(room_ref, "member_unbanned", {"user_id": user_id})
        return True

    @operation("mute")
    async def mute(self, caller_id: int, room_ref: RoomReference, user_id: int) -> bool:
        room = self._room(room_ref)
        actor = require_privileged(room.id, caller_id, self._db)
        target = self._target(room, actor, user_id)
        created = self._state.add_mute(room, target.user_id, muted_by_id=caller_id)
        self._db.commit()
        if created:
            await self._publish(room_ref, "member_muted", {"user_id": user_id})
        return created

    @operation("unmute")
    async def unmute(self, caller_id: int, room_ref: RoomReference, user_id: int) -> bool:
        room = self._room(room_ref)
        require_privileged(room.id, caller_id, self._db)
        if not self._state.remove_mute(room, user_id):
            raise NotFoundError("User is not muted")
        self._db.commit()
        await self._publish(room_ref, "member_unmuted", {"user_id": user_id})
        return True

    @operation("list_join_requests")
    async def list_join_requests(self, caller_id: int, room_ref: RoomReference) -> list[JoinRequestRead]:
        room = self._room(room_ref)
        require_privileged(room.id, caller_id, self._db)
        return [
            JoinRequestRead(user=author_of(request.user), requested_at=request.requested_at)
            for request in self._state.list_join_requests(room)
        ]

    @operation("approve_join_request")
    async def approve_join_request(
        self, caller_id: int, room_ref: RoomReference, user_id: int
    ) -> RoomMemberRead:
        room = self._room(room_ref)
        require_privileged(room.id, caller_id, self._db)
        self._state.pop_join_request(room, user_id)
        if self._state.is_banned(room, user_id):
            raise ForbiddenError("User is banned from this room")
        membership = self._activate(room, user_id)
        result = self._member_read(membership, room)
        self._db.commit()
        await self._publish(room_ref, "member_joined", {"user_id": user_id, "added_by": caller_id})
        return result

    @operation("reject_join_request")
    async def reject_join_request(self, caller_id: int, room_ref: RoomReference, user_id: int) -> bool:
        room = self._room(room_ref)
        require_privileged(room.id, caller_id, self._db)
        self._state.pop_join_request(room, user_id)
        self._db.commit()
        return True

    # Settings -------------------------------------------------------------

    def _settings_read(self, room_ref: RoomReference, room: Room) -> RoomSettingsRead:
        state = self._state.ensure(room)
        return RoomSettingsRead(
            room=RoomRef(kind=room_ref.kind, id=room_ref.id),
            slowmode_seconds=state.slowmode_seconds,
            version=state.version,
        )

    @operation("get_settings")
    async def get_settings(self, caller_id: int, room_ref: RoomReference) -> RoomSettingsRead:
        room = self._room(room_ref)
        require_active_member(room.id, caller_id, self._db)
        result = self._settings_read(room_ref, room)
        self._db.commit()
        return result

    @operation("update_settings")
    async def update_settings(
        self, caller_id: int, room_ref: RoomReference, payload: RoomSettingsUpdate
    ) -> RoomSettingsRead:
        room = self._room(room_ref)
        require_privileged(room.id, caller_id, self._db)
        self._state.update_settings(
            room,
            expected_version=payload.expected_version,
            slowmode_seconds=payload.slowmode_seconds,
        )
        result = self._settings_read(room_ref, room)
        self._db.commit()
        await self._publish(
            room_ref,
            "settings_updated",
            {"slowmode_seconds": result.slowmode_seconds, "version": result.version},
        )
        return result


__all__ = ["MemberManagement"]
