"""Tests for pinned slot, watermarks, typing and moderation lists."""

from __future__ import annotations

import pytest
from sqlalchemy.orm.exc import StaleDataError

from app.core.crypto import encrypt_for_storage
from app.models import RoomRole, RoomState
from app.services.errors import ForbiddenError, NotFoundError, TransientStorageError
from app.services.message_store import MessageStore
from app.services.permissions import get_membership
from app.services.room_state import RoomStateService
from parley.realtime import TypingStatusStore


@pytest.fixture()
def owner(make_user):
    return make_user("owner")


@pytest.fixture()
def member(make_user):
    return make_user("member", display_name="Member")


@pytest.fixture()
def room(make_room, owner, member):
    return make_room(owner, members={member: RoomRole.MEMBER})


@pytest.fixture()
def state(db_session):
    return RoomStateService(db_session, TypingStatusStore(ttl_seconds=30))


@pytest.fixture()
def message(db_session, room, owner):
    created = MessageStore(db_session).append(
        room, owner.id, encrypt_for_storage("pin me", 100), time=100
    )
    db_session.commit()
    return created


def test_pin_replaces_previous_pin(state, db_session, room, owner, message):
    second = MessageStore(db_session).append(
        room, owner.id, encrypt_for_storage("newer", 101), time=101
    )

    state.set_pinned(room, message.id, pinned_by_id=owner.id, at_time=200)
    state.set_pinned(room, second.id, pinned_by_id=owner.id, at_time=201)
    db_session.commit()

    assert state.get_pinned(room).id == second.id


def test_pin_requires_message_of_same_room(state, make_room, owner, message):
    other = make_room(owner, title="Other")

    with pytest.raises(NotFoundError):
        state.set_pinned(other, message.id, pinned_by_id=owner.id, at_time=1)


def test_clear_pinned_if_only_matches_pinned_message(state, db_session, room, owner, message):
    state.set_pinned(room, message.id, pinned_by_id=owner.id, at_time=1)

    assert state.clear_pinned_if(room, message.id + 1) is False
    assert state.clear_pinned_if(room, message.id) is True
    assert state.get_pinned(room) is None
    assert state.clear_pinned(room) is False


def test_watermarks_update_membership(state, db_session, room, member):
    state.record_seen(room, member.id, 500)
    state.set_clear_watermark(room, member.id, 600)
    db_session.commit()

    membership = get_membership(room.id, member.id, db_session)
    assert membership.last_seen == 500
    assert membership.cleared_at == 600
    assert state.visibility_floor(room, member.id) == 600


def test_seen_requires_active_membership(state, room, make_user):
    stranger = make_user("stranger")

    with pytest.raises(ForbiddenError):
        state.record_seen(room, stranger.id, 1)


@pytest.mark.anyio("asyncio")
async def test_typing_snapshot_reports_changes(state, room, member):
    users, changed = await state.record_typing(room, member.id, "Member", True)
    assert changed is True
    assert users == [{"id": member.id, "display_name": "Member"}]

    _, changed = await state.record_typing(room, member.id, "Member", True)
    assert changed is False

    users, changed = await state.record_typing(room, member.id, "Member", False)
    assert changed is True
    assert users == []


def test_settings_compare_and_swap(state, db_session, room):
    current = state.ensure(room)
    version = current.version

    updated = state.update_settings(room, expected_version=version, slowmode_seconds=10)
    db_session.commit()

    assert updated.slowmode_seconds == 10
    assert state.slowmode_seconds(room) == 10
    with pytest.raises(TransientStorageError):
        state.update_settings(room, expected_version=version, slowmode_seconds=20)


def test_concurrent_state_write_raises_stale_data(session_factory, room):
    first = session_factory()
    second = session_factory()
    try:
        row_a = first.get(RoomState, room.id)
        row_b = second.get(RoomState, room.id)

        row_a.slowmode_seconds = 5
        first.commit()

        row_b.slowmode_seconds = 7
        with pytest.raises(StaleDataError):
            second.commit()
    finally:
        first.close()
        second.close()


def test_ban_mute_and_join_request_lists(state, db_session, room, owner, member, make_user):
    applicant = make_user("applicant")

    assert state.add_ban(room, member.id, banned_by_id=owner.id) is True
    assert state.add_ban(room, member.id, banned_by_id=owner.id) is False
    assert state.is_banned(room, member.id)
    assert state.remove_ban(room, member.id) is True
    assert state.remove_ban(room, member.id) is False

    assert state.add_mute(room, member.id, muted_by_id=owner.id) is True
    assert state.is_muted(room, member.id)
    assert state.remove_mute(room, member.id) is True

    assert state.add_join_request(room, applicant.id, at_time=10) is True
    assert state.add_join_request(room, applicant.id, at_time=11) is False
    assert [request.user_id for request in state.list_join_requests(room)] == [applicant.id]
    assert state.pop_join_request(room, applicant.id).user_id == applicant.id
    with pytest.raises(NotFoundError):
        state.pop_join_request(room, applicant.id)
    assert state.drop_join_request(room, applicant.id) is False
