"""Unit tests for room membership and role checks."""

from __future__ import annotations

import pytest

from app.models import Message, RoomKind, RoomMember, RoomReference, RoomRole
from app.services.errors import ForbiddenError, NotFoundError
from app.services.permissions import (
    PRIVILEGED_ROLES,
    can_act_on_message,
    can_manage_member,
    get_membership,
    is_privileged,
    require_active_member,
    require_owner,
    require_privileged,
    require_room,
    role_capabilities,
)


@pytest.fixture()
def people(make_user):
    return {
        "owner": make_user("owner"),
        "admin": make_user("admin"),
        "moderator": make_user("moderator"),
        "member": make_user("member"),
        "outsider": make_user("outsider"),
    }


@pytest.fixture()
def room(make_room, people):
    return make_room(
        people["owner"],
        members={
            people["admin"]: RoomRole.ADMIN,
            people["moderator"]: RoomRole.MODERATOR,
            people["member"]: RoomRole.MEMBER,
        },
    )


def test_roles_are_cumulative():
    owner = role_capabilities(RoomRole.OWNER)
    admin = role_capabilities("admin")

    assert owner.is_owner and owner.is_admin and owner.is_moderator
    assert admin.is_admin and admin.is_moderator and not admin.is_owner
    assert not role_capabilities(RoomRole.MEMBER).is_privileged
    assert not role_capabilities("unknown").is_privileged
    assert PRIVILEGED_ROLES == {RoomRole.OWNER, RoomRole.ADMIN, RoomRole.MODERATOR}


def test_require_room_checks_kind(db_session, room):
    assert require_room(RoomReference(RoomKind.GROUP, room.id), db_session).id == room.id

    with pytest.raises(NotFoundError):
        require_room(RoomReference(RoomKind.DIRECT, room.id), db_session)


def test_inactive_membership_is_treated_as_absent(db_session, room, people):
    membership = get_membership(room.id, people["member"].id, db_session)
    membership.active = False
    db_session.commit()

    assert get_membership(room.id, people["member"].id, db_session) is None
    assert get_membership(room.id, people["member"].id, db_session, active_only=False) is not None
    with pytest.raises(ForbiddenError):
        require_active_member(room.id, people["member"].id, db_session)


def test_privilege_checks(db_session, room, people):
    assert is_privileged(room.id, people["moderator"].id, db_session)
    assert not is_privileged(room.id, people["member"].id, db_session)
    assert not is_privileged(room.id, people["outsider"].id, db_session)

    with pytest.raises(ForbiddenError, match="Insufficient permissions"):
        require_privileged(room.id, people["member"].id, db_session)
    with pytest.raises(ForbiddenError, match="Only the room owner"):
        require_owner(room.id, people["admin"].id, db_session)
    assert require_owner(room.id, people["owner"].id, db_session).role == RoomRole.OWNER


@pytest.mark.parametrize(
    ("actor_role", "own", "allowed"),
    [
        (RoomRole.MEMBER, True, True),
        (RoomRole.MEMBER, False, False),
        (RoomRole.MODERATOR, False, True),
        (RoomRole.ADMIN, False, True),
        (RoomRole.OWNER, False, True),
    ],
)
def test_can_act_on_message(actor_role, own, allowed):
    actor = RoomMember(room_id=1, user_id=10, role=actor_role)
    message = Message(room_id=1, sender_id=10 if own else 20, time=0)

    assert can_act_on_message(actor, message) is allowed


def test_cannot_act_on_message_from_another_room():
    actor = RoomMember(room_id=1, user_id=10, role=RoomRole.OWNER)

    assert not can_act_on_message(actor, Message(room_id=2, sender_id=10, time=0))


@pytest.mark.parametrize(
    ("actor_role", "target_role", "allowed"),
    [
        (RoomRole.OWNER, RoomRole.ADMIN, True),
        (RoomRole.ADMIN, RoomRole.MODERATOR, True),
        (RoomRole.ADMIN, RoomRole.ADMIN, False),
        (RoomRole.MODERATOR, RoomRole.MEMBER, True),
        (RoomRole.MODERATOR, RoomRole.MODERATOR, False),
        (RoomRole.MEMBER, RoomRole.MEMBER, False),
        (RoomRole.ADMIN, RoomRole.OWNER, False),
    ],
)
def test_can_manage_member(actor_role, target_role, allowed):
    actor = RoomMember(room_id=1, user_id=1, role=actor_role)
    target = RoomMember(room_id=1, user_id=2, role=target_role)

    assert can_manage_member(actor, target) is allowed
