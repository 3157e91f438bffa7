from __future__ import annotations

from datetime import timedelta

import pytest

from app.core.crypto import decrypt_message
from app.models import Message, RoomRole
from app.schemas import MessageRead


@pytest.fixture()
def owner(make_user):
    return make_user("owner", display_name="Owner")


@pytest.fixture()
def member(make_user):
    return make_user("member", display_name="Member")


@pytest.fixture()
def room(make_room, owner, member):
    return make_room(owner, members={member: RoomRole.MEMBER})


@pytest.fixture()
def base_url(room) -> str:
    return f"/api/rooms/group/{room.id}"


def test_health_and_root(client):
    assert client.get("/health").json()["status"] == "ok"
    assert client.get("/api/").json() == {"message": "Welcome to the Parley API"}


def test_requests_without_token_are_rejected(client, base_url):
    response = client.get(f"{base_url}/messages")

    assert response.status_code == 401


def test_expired_token_is_rejected(client, access_token, base_url, owner):
    token = access_token(owner.id, timedelta(seconds=-5))

    response = client.get(f"{base_url}/messages", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Token has expired"


def test_send_and_read_history(client, auth_headers, base_url, owner, member):
    created = client.post(
        f"{base_url}/messages", json={"text": "hello there"}, headers=auth_headers(owner)
    )
    assert created.status_code == 201
    body = created.json()
    assert body["sender_id"] == owner.id
    assert body["text"] and body["text"] != "hello there"
    assert body["iv"] and body["tag"]

    history = client.get(f"{base_url}/messages", headers=auth_headers(member))
    assert history.status_code == 200
    items = history.json()["items"]
    assert [item["id"] for item in items] == [body["id"]]
    assert decrypt_message(MessageRead.model_validate(items[0])) == "hello there"


def test_outsider_gets_forbidden(client, auth_headers, base_url, make_user):
    outsider = make_user("outsider")

    response = client.get(f"{base_url}/messages", headers=auth_headers(outsider))

    assert response.status_code == 403


def test_wrong_room_kind_is_not_found(client, auth_headers, room, owner):
    response = client.get(f"/api/rooms/channel_post/{room.id}/messages", headers=auth_headers(owner))

    assert response.status_code == 404


def test_history_with_two_anchors_is_bad_request(client, auth_headers, base_url, owner):
    response = client.get(
        f"{base_url}/messages",
        params={"before_id": 5, "after_id": 1},
        headers=auth_headers(owner),
    )

    assert response.status_code == 400


def test_empty_message_is_bad_request(client, auth_headers, base_url, owner):
    response = client.post(f"{base_url}/messages", json={"text": ""}, headers=auth_headers(owner))

    assert response.status_code == 400


def test_slow_mode_returns_retry_after(client, auth_headers, base_url, owner, member):
    settings = client.get(f"{base_url}/settings", headers=auth_headers(owner)).json()
    updated = client.patch(
        f"{base_url}/settings",
        json={"expected_version": settings["version"], "slowmode_seconds": 60},
        headers=auth_headers(owner),
    )
    assert updated.status_code == 200
    assert updated.json()["slowmode_seconds"] == 60

    first = client.post(f"{base_url}/messages", json={"text": "one"}, headers=auth_headers(member))
    second = client.post(f"{base_url}/messages", json={"text": "two"}, headers=auth_headers(member))

    assert first.status_code == 201
    assert second.status_code == 429
    assert 0 < int(second.headers["Retry-After"]) <= 60


def test_stale_settings_version_is_unavailable(client, auth_headers, base_url, owner):
    version = client.get(f"{base_url}/settings", headers=auth_headers(owner)).json()["version"]
    payload = {"expected_version": version, "slowmode_seconds": 5}

    assert client.patch(f"{base_url}/settings", json=payload, headers=auth_headers(owner)).status_code == 200
    assert client.patch(f"{base_url}/settings", json=payload, headers=auth_headers(owner)).status_code == 503


def test_edit_delete_and_pin_flow(client, auth_headers, base_url, db_session, owner, member):
    sent = client.post(f"{base_url}/messages", json={"text": "draft"}, headers=auth_headers(member)).json()

    edited = client.patch(
        f"/api/messages/{sent['id']}", json={"text": "final"}, headers=auth_headers(member)
    )
    assert edited.status_code == 200
    assert edited.json()["time"] == sent["time"]
    assert client.patch(
        f"/api/messages/{sent['id']}", json={"text": "mine"}, headers=auth_headers(owner)
    ).status_code == 403

    assert client.post(
        f"{base_url}/pin", json={"message_id": sent["id"]}, headers=auth_headers(member)
    ).status_code == 403
    pinned = client.post(f"{base_url}/pin", json={"message_id": sent["id"]}, headers=auth_headers(owner))
    assert pinned.status_code == 200
    history = client.get(f"{base_url}/messages", headers=auth_headers(member)).json()
    assert history["pinned_message"]["id"] == sent["id"]

    deleted = client.delete(f"/api/messages/{sent['id']}", headers=auth_headers(owner))
    assert deleted.json() == {"id": sent["id"], "unpinned": True}
    assert db_session.get(Message, sent["id"]) is None
    assert client.delete(f"{base_url}/pin", headers=auth_headers(owner)).status_code == 204


def test_seen_and_unread(client, auth_headers, base_url, owner, member):
    client.post(f"{base_url}/messages", json={"text": "ping"}, headers=auth_headers(owner))

    assert client.get(f"{base_url}/unread", headers=auth_headers(member)).json()["unread"] == 1

    receipt = client.post(f"{base_url}/seen", headers=auth_headers(member))
    assert receipt.json()["user_id"] == member.id


def test_typing_and_user_action(client, auth_headers, base_url, member):
    typing = client.post(f"{base_url}/typing", json={"is_typing": True}, headers=auth_headers(member))
    assert typing.status_code == 200
    assert typing.json()["users"] == [{"id": member.id, "display_name": "Member"}]

    action = client.post(
        f"{base_url}/actions", json={"action": "recording_voice"}, headers=auth_headers(member)
    )
    assert action.status_code == 202


def test_clear_history_scopes(client, auth_headers, base_url, owner, member):
    client.post(f"{base_url}/messages", json={"text": "old news"}, headers=auth_headers(owner))

    denied = client.post(f"{base_url}/clear-history", json={"scope": "all"}, headers=auth_headers(member))
    assert denied.status_code == 403

    own = client.post(f"{base_url}/clear-history", json={"scope": "self"}, headers=auth_headers(member))
    assert own.json()["scope"] == "self"

    everyone = client.post(f"{base_url}/clear-history", json={"scope": "all"}, headers=auth_headers(owner))
    assert everyone.json() == {"scope": "all", "deleted_count": 1, "cleared_at": None}


def test_search_requires_two_characters(client, auth_headers, base_url, owner):
    client.post(f"{base_url}/messages", json={"text": "Quarterly report"}, headers=auth_headers(owner))

    short = client.get(f"{base_url}/search", params={"q": "q"}, headers=auth_headers(owner))
    found = client.get(f"{base_url}/search", params={"q": "report"}, headers=auth_headers(owner))

    assert short.status_code == 400
    assert len(found.json()["items"]) == 1


def test_member_routes(client, auth_headers, owner, member, make_user):
    newcomer = make_user("newcomer")

    created = client.post("/api/rooms", json={"title": "Crew"}, headers=auth_headers(owner))
    assert created.status_code == 201
    url = f"/api/rooms/group/{created.json()['id']}/members"

    assert client.post(f"{url}/join", headers=auth_headers(member)).json()["role"] == "member"
    assert client.post(f"{url}/join-requests", headers=auth_headers(newcomer)).json() == {"created": True}
    approved = client.post(
        f"{url}/join-requests/approve", json={"user_id": newcomer.id}, headers=auth_headers(owner)
    )
    assert approved.status_code == 200

    promoted = client.post(
        f"{url}/role", json={"user_id": member.id, "role": "moderator"}, headers=auth_headers(owner)
    )
    assert promoted.json()["role"] == "moderator"
    assert client.post(f"{url}/mute", json={"user_id": newcomer.id}, headers=auth_headers(member)).status_code == 204
    assert client.post(f"{url}/remove", json={"user_id": newcomer.id}, headers=auth_headers(member)).status_code == 204
    assert client.post(f"{url}/leave", headers=auth_headers(owner)).status_code == 403

    listed = client.get(url, headers=auth_headers(owner)).json()
    assert sorted(entry["user"]["id"] for entry in listed) == sorted([owner.id, member.id])


def test_metrics_endpoint_reports_operations(client, auth_headers, base_url, owner):
    client.post(f"{base_url}/messages", json={"text": "count me"}, headers=auth_headers(owner))

    response = client.get("/metrics")

    assert response.status_code == 200
    assert 'messaging_operations_total{operation="send",outcome="ok"} 1' in response.text
