"""Tests for message persistence and history paging."""

from __future__ import annotations

import pytest

from app.core.crypto import encrypt_for_storage
from app.services.errors import ChatValidationError, NotFoundError
from app.services.message_store import MessageStore


@pytest.fixture()
def owner(make_user):
    return make_user("owner")


@pytest.fixture()
def room(make_room, owner):
    return make_room(owner)


@pytest.fixture()
def store(db_session):
    return MessageStore(db_session)


@pytest.fixture()
def seed(store, db_session, room, owner):
    def factory(count: int, *, start_time: int = 1000, text: str = "message") -> list[int]:
        ids = []
        for index in range(count):
            timestamp = start_time + index
            message = store.append(
                room,
                owner.id,
                encrypt_for_storage(f"{text} {index}", timestamp),
                time=timestamp,
            )
            ids.append(message.id)
        db_session.commit()
        return ids

    return factory


def test_append_assigns_increasing_ids(seed):
    ids = seed(3)

    assert ids == sorted(ids)
    assert len(set(ids)) == 3


def test_append_rejects_unknown_fields(store, room, owner):
    with pytest.raises(ValueError):
        store.append(room, owner.id, encrypt_for_storage("x", 1), time=1, extras={"sender_id": 9})


def test_latest_page_is_ordered_oldest_first(store, room, seed):
    ids = seed(5)

    page = store.fetch_page(room, limit=3)

    assert [message.id for message in page.messages] == ids[2:]
    assert page.has_more is True


def test_before_anchor_pages_into_older_messages(store, room, seed):
    ids = seed(5)

    page = store.fetch_page(room, before_id=ids[2], limit=10)

    assert [message.id for message in page.messages] == ids[:2]
    assert page.has_more is False


def test_after_anchor_pages_forward(store, room, seed):
    ids = seed(5)

    page = store.fetch_page(room, after_id=ids[1], limit=2)

    assert [message.id for message in page.messages] == ids[2:4]
    assert page.has_more is True


def test_exact_anchor_returns_single_message(store, room, seed):
    ids = seed(3)

    page = store.fetch_page(room, exact_id=ids[1], limit=30)

    assert [message.id for message in page.messages] == [ids[1]]


def test_multiple_anchors_are_rejected(store, room, seed):
    ids = seed(2)

    with pytest.raises(ChatValidationError):
        store.fetch_page(room, before_id=ids[1], after_id=ids[0], limit=10)


def test_visibility_floor_hides_messages_at_or_before_watermark(store, room, seed):
    ids = seed(4, start_time=1000)

    page = store.fetch_page(room, limit=10, visibility_floor=1001)

    assert [message.id for message in page.messages] == ids[2:]


def test_pages_do_not_leak_between_rooms(store, make_room, owner, room, seed):
    seed(2)
    other = make_room(owner, title="Other")

    assert store.fetch_page(other, limit=10).messages == []
    assert store.count_in_room(other) == 0


def test_mutate_only_touches_body_fields(store, db_session, seed):
    [message_id] = seed(1)

    with pytest.raises(ValueError):
        store.mutate(message_id, time=5)

    updated = store.mutate(message_id, text_preview="changed", edited=True)
    db_session.commit()

    assert updated.edited is True
    assert updated.time == 1000


def test_remove_and_missing_message(store, db_session, seed):
    [message_id] = seed(1)

    store.remove(message_id)
    db_session.commit()

    assert store.get(message_id) is None
    with pytest.raises(NotFoundError):
        store.remove(message_id)


def test_remove_all_clears_room(store, db_session, room, seed):
    seed(3)

    assert store.remove_all(room) == 3
    db_session.commit()
    assert store.count_in_room(room) == 0


def test_count_excludes_sender(store, db_session, room, seed, make_user):
    seed(2, start_time=1000)
    other = make_user("other")
    store.append(room, other.id, encrypt_for_storage("hi", 2000), time=2000)
    db_session.commit()

    assert store.count_in_room(room, exclude_sender_id=other.id) == 2
    assert store.count_in_room(room, after_time=1001) == 1
    assert store.count_in_room(room, sender_id=other.id) == 1


def test_search_uses_preview_newest_first(store, room, seed):
    ids = seed(3, text="Hello world")
    seed(1, start_time=5000, text="unrelated")

    results = store.search_preview(room, "hello", limit=2)

    assert [message.id for message in results] == [ids[2], ids[1]]


def test_search_escapes_wildcards(store, room, seed):
    seed(2, text="plain")
    seed(1, start_time=3000, text="100% sure")

    assert len(store.search_preview(room, "%", limit=10)) == 1
    assert store.search_preview(room, "_", limit=10) == []


def test_last_sent_by(store, room, seed, owner):
    ids = seed(2)

    assert store.last_sent_by(room, owner.id).id == ids[-1]
