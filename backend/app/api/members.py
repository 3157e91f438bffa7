"""HTTP endpoints for rooms, memberships and moderation."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from app.api.deps import (
    get_current_user,
    get_member_management,
    raise_for_outcome,
    room_reference,
)
from app.models import RoomReference, User
from app.schemas import (
    JoinRequestRead,
    MemberTarget,
    RoomCreate,
    RoomMemberRead,
    RoomMemberRoleUpdate,
    RoomRead,
    RoomSettingsRead,
    RoomSettingsUpdate,
)
from app.services.members import MemberManagement

router = APIRouter(prefix="/rooms", tags=["rooms"])

MEMBERS_PATH = "/{kind}/{room_id}/members"


def _no_content() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("", response_model=RoomRead, status_code=status.HTTP_201_CREATED)
async def create_room(
    payload: RoomCreate,
    members: MemberManagement = Depends(get_member_management),
    current_user: User = Depends(get_current_user),
) -> RoomRead:
    """Create a room owned by the current user."""

    return raise_for_outcome(await members.create_room(current_user.id, payload))


@router.get(MEMBERS_PATH, response_model=list[RoomMemberRead])
async def list_members(
    room: RoomReference = Depends(room_reference),
    members: MemberManagement = Depends(get_member_management),
    current_user: User = Depends(get_current_user),
) -> list[RoomMemberRead]:
    return raise_for_outcome(await members.list_members(current_user.id, room))


@router.post(f"{MEMBERS_PATH}/join", response_model=RoomMemberRead)
async def join_room(
    room: RoomReference = Depends(room_reference),
    members: MemberManagement = Depends(get_member_management),
    current_user: User = Depends(get_current_user),
) -> RoomMemberRead:
    return raise_for_outcome(await members.join(current_user.id, room))


@router.post(f"{MEMBERS_PATH}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_room(
    room: RoomReference = Depends(room_reference),
    members: MemberManagement = Depends(get_member_management),
    current_user: User = Depends(get_current_user),
) -> Response:
    raise_for_outcome(await members.leave(current_user.id, room))
    return _no_content()


@router.post(f"{MEMBERS_PATH}/add", response_model=RoomMemberRead)
async def add_member(
    payload: MemberTarget,
    room: RoomReference = Depends(room_reference),
    members: MemberManagement = Depends(get_member_management),
    current_user: User = Depends(get_current_user),
) -> RoomMemberRead:
    return raise_for_outcome(await members.add_member(current_user.id, room, payload.user_id))


@router.post(f"{MEMBERS_PATH}/remove", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    payload: MemberTarget,
    room: RoomReference = Depends(room_reference),
    members: MemberManagement = Depends(get_member_management),
    current_user: User = Depends(get_current_user),
) -> Response:
    raise_for_outcome(await members.remove_member(current_user.id, room, payload.user_id))
    return _no_content()


@router.post(f"{MEMBERS_PATH}/role", response_model=RoomMemberRead)
async def update_member_role(
    payload: RoomMemberRoleUpdate,
    room: RoomReference = Depends(room_reference),
    members: MemberManagement = Depends(get_member_management),
    current_user: User = Depends(get_current_user),
) -> RoomMemberRead:
    """Change the role of a member. Only the owner may do this."""

    outcome = await members.set_role(current_user.id, room, payload.user_id, payload.role)
    return raise_for_outcome(outcome)


@router.post(f"{MEMBERS_PATH}/ban", status_code=status.HTTP_204_NO_CONTENT)
async def ban_member(
    payload: MemberTarget,
    room: RoomReference = Depends(room_reference),
    members: MemberManagement = Depends(get_member_management),
    current_user: User = Depends(get_current_user),
) -> Response:
    raise_for_outcome(await members.ban(current_user.id, room, payload.user_id))
    return _no_content()


@router.post(f"{MEMBERS_PATH}/unban", status_code=status.HTTP_204_NO_CONTENT)
async def unban_member(
    payload: MemberTarget,
    room: RoomReference = Depends(room_reference),
    members: MemberManagement = Depends(get_member_management),
    current_user: User = Depends(get_current_user),
) -> Response:
    raise_for_outcome(await members.unban(current_user.id, room, payload.user_id))
    return _no_content()


@router.post(f"{MEMBERS_PATH}/mute", status_code=status.HTTP_204_NO_CONTENT)
async def mute_member(
    payload: MemberTarget,
    room: RoomReference = Depends(room_reference),
    members: MemberManagement = Depends(get_member_management),
    current_user: User = Depends(get_current_user),
) -> Response:
    raise_for_outcome(await members.mute(current_user.id, room, payload.user_id))
    return _no_content()


@router.post(f"{MEMBERS_PATH}/unmute", status_code=status.HTTP_204_NO_CONTENT)
async def unmute_member(
    payload: MemberTarget,
    room: RoomReference = Depends(room_reference),
    members: MemberManagement = Depends(get_member_management),
    current_user: User = Depends(get_current_user),
) -> Response:
    raise_for_outcome(await members.unmute(current_user.id, room, payload.user_id))
    return _no_content()


@router.post(f"{MEMBERS_PATH}/join-requests", status_code=status.HTTP_202_ACCEPTED)
async def request_join(
    room: RoomReference = Depends(room_reference),
    members: MemberManagement = Depends(get_member_management),
    current_user: User = Depends(get_current_user),
) -> dict[str, bool]:
    created = raise_for_outcome(await members.request_join(current_user.id, room))
    return {"created": created}


@router.get(f"{MEMBERS_PATH}/join-requests", response_model=list[JoinRequestRead])
async def list_join_requests(
    room: RoomReference = Depends(room_reference),
    members: MemberManagement = Depends(get_member_management),
    current_user: User = Depends(get_current_user),
) -> list[JoinRequestRead]:
    return raise_for_outcome(await members.list_join_requests(current_user.id, room))


@router.post(f"{MEMBERS_PATH}/join-requests/approve", response_model=RoomMemberRead)
async def approve_join_request(
    payload: MemberTarget,
    room: RoomReference = Depends(room_reference),
    members: MemberManagement = Depends(get_member_management),
    current_user: User = Depends(get_current_user),
) -> RoomMemberRead:
    outcome = await members.approve_join_request(current_user.id, room, payload.user_id)
    return raise_for_outcome(outcome)


@router.post(f"{MEMBERS_PATH}/join-requests/reject", status_code=status.HTTP_204_NO_CONTENT)
async def reject_join_request(
    payload: MemberTarget,
    room: RoomReference = Depends(room_reference),
    members: MemberManagement = Depends(get_member_management),
    current_user: User = Depends(get_current_user),
) -> Response:
    raise_for_outcome(await members.reject_join_request(current_user.id, room, payload.user_id))
    return _no_content()


@router.get("/{kind}/{room_id}/settings", response_model=RoomSettingsRead)
async def read_room_settings(
    room: RoomReference = Depends(room_reference),
    members: MemberManagement = Depends(get_member_management),
    current_user: User = Depends(get_current_user),
) -> RoomSettingsRead:
    return raise_for_outcome(await members.get_settings(current_user.id, room))


@router.patch("/{kind}/{room_id}/settings", response_model=RoomSettingsRead)
async def update_room_settings(
    payload: RoomSettingsUpdate,
    room: RoomReference = Depends(room_reference),
    members: MemberManagement = Depends(get_member_management),
    current_user: User = Depends(get_current_user),
) -> RoomSettingsRead:
    """Update room settings; a stale ``expected_version`` is rejected with 503."""

    return raise_for_outcome(await members.update_settings(current_user.id, room, payload))
