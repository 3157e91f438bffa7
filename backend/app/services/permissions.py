"""Membership authority: who belongs to a room and what their role allows."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import Message, Room, RoomMember, RoomReference, RoomRole
from app.services.errors import ForbiddenError, NotFoundError


@dataclass(frozen=True, slots=True)
class RoleCapabilities:
    """Capability flags granted by a room role.

    Roles are cumulative: an owner is also an admin and a moderator, an admin
    is also a moderator.
    """

    is_owner: bool = False
    is_admin: bool = False
    is_moderator: bool = False

    @property
    def is_privileged(self) -> bool:
        return self.is_owner or self.is_admin or self.is_moderator


ROLE_CAPABILITIES: dict[RoomRole, RoleCapabilities] = {
    RoomRole.OWNER: RoleCapabilities(is_owner=True, is_admin=True, is_moderator=True),
    RoomRole.ADMIN: RoleCapabilities(is_admin=True, is_moderator=True),
    RoomRole.MODERATOR: RoleCapabilities(is_moderator=True),
    RoomRole.MEMBER: RoleCapabilities(),
}

PRIVILEGED_ROLES: frozenset[RoomRole] = frozenset(
    role for role, capabilities in ROLE_CAPABILITIES.items() if capabilities.is_privileged
)

# Roles assignable through member management; ownership is never transferred here.
ASSIGNABLE_ROLES: frozenset[RoomRole] = frozenset(
    {RoomRole.ADMIN, RoomRole.MODERATOR, RoomRole.MEMBER}
)


def role_capabilities(role: RoomRole | str) -> RoleCapabilities:
    """Return the capability set of ``role``.

    Args:
        role: Room role or its string value.

    Returns:
        Capability flags; unknown roles get no capabilities.
    """

    try:
        return ROLE_CAPABILITIES[RoomRole(role)]
    except ValueError:
        return RoleCapabilities()


def get_room(reference: RoomReference, db: Session) -> Room | None:
    stmt = select(Room).where(Room.id == reference.id, Room.kind == reference.kind)
    return db.execute(stmt).scalar_one_or_none()


def require_room(reference: RoomReference, db: Session) -> Room:
    """Resolve a room reference or raise :class:`NotFoundError`."""

    room = get_room(reference, db)
    if room is None:
        raise NotFoundError("Room not found")
    return room


def get_membership(
    room_id: int, user_id: int, db: Session, *, active_only: bool = True
) -> RoomMember | None:
    """Return the membership row of ``user_id`` in ``room_id``.

    Inactive rows (left, kicked or banned users) are treated as absent unless
    ``active_only`` is disabled.
    """

    stmt = select(RoomMember).where(
        RoomMember.room_id == room_id,
        RoomMember.user_id == user_id,
    )
    if active_only:
        stmt = stmt.where(RoomMember.active.is_(True))
    return db.execute(stmt).scalar_one_or_none()


def is_privileged(room_id: int, user_id: int, db: Session) -> bool:
    """Check whether the user is an active owner, admin or moderator of the room."""

    membership = get_membership(room_id, user_id, db)
    return membership is not None and role_capabilities(membership.role).is_privileged


def require_active_member(room_id: int, user_id: int, db: Session) -> RoomMember:
    membership = get_membership(room_id, user_id, db)
    if membership is None:
        raise ForbiddenError("Not a room member")
    return membership


def require_privileged(room_id: int, user_id: int, db: Session) -> RoomMember:
    membership = require_active_member(room_id, user_id, db)
    if not role_capabilities(membership.role).is_privileged:
        raise ForbiddenError("Insufficient permissions")
    return membership


def require_owner(room_id: int, user_id: int, db: Session) -> RoomMember:
    membership = require_active_member(room_id, user_id, db)
    if not role_capabilities(membership.role).is_owner:
        raise ForbiddenError("Only the room owner can do this")
    return membership


def can_act_on_message(membership: RoomMember, message: Message) -> bool:
    """Members act on their own messages; privileged roles act on any message of the room."""

    if message.room_id != membership.room_id:
        return False
    if message.sender_id == membership.user_id:
        return True
    return role_capabilities(membership.role).is_privileged


def can_manage_member(actor: RoomMember, target: RoomMember) -> bool:
    """Decide whether ``actor`` may kick, ban or mute ``target``.

    The owner is never a valid target. Moderators may only act on plain
    members, admins on moderators and members.
    """

    if target.role == RoomRole.OWNER or actor.user_id == target.user_id:
        return False
    actor_caps = role_capabilities(actor.role)
    target_caps = role_capabilities(target.role)
    if actor_caps.is_owner:
        return True
    if actor_caps.is_admin:
        return not target_caps.is_admin
    if actor_caps.is_moderator:
        return not target_caps.is_moderator
    return False


__all__ = [
    "ASSIGNABLE_ROLES",
    "PRIVILEGED_ROLES",
    "ROLE_CAPABILITIES",
    "RoleCapabilities",
    "can_act_on_message",
    "can_manage_member",
    "get_membership",
    "get_room",
    "is_privileged",
    "require_active_member",
    "require_owner",
    "require_privileged",
    "require_room",
    "role_capabilities",
]
