"""HTTP endpoints for room messages."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import ValidationError

from app.api.deps import (
    get_current_user,
    get_message_lifecycle,
    raise_for_outcome,
    room_reference,
)
from app.models import RoomReference, User
from app.schemas import (
    ClearHistoryRequest,
    ClearHistoryResult,
    EditRequest,
    HistoryPage,
    HistoryRequest,
    MessageDeleted,
    MessageEditedEvent,
    MessageRead,
    PinRequest,
    SearchPage,
    SearchRequest,
    SeenReceipt,
    SendRequest,
    TypingRequest,
    TypingState,
    UnreadCount,
    UserActionRequest,
)
from app.services.messaging import MessageLifecycle

router = APIRouter(tags=["messages"])

ROOM_PATH = "/rooms/{kind}/{room_id}"


@router.get(f"{ROOM_PATH}/messages", response_model=HistoryPage)
async def read_history(
    before_id: int | None = Query(default=None, ge=1),
    after_id: int | None = Query(default=None, ge=0),
    message_id: int | None = Query(default=None, ge=1),
    limit: int | None = Query(default=None, ge=1),
    room: RoomReference = Depends(room_reference),
    lifecycle: MessageLifecycle = Depends(get_message_lifecycle),
    current_user: User = Depends(get_current_user),
) -> HistoryPage:
    """Return a page of history, oldest first, anchored to at most one message id."""

    try:
        request = HistoryRequest(
            before_id=before_id, after_id=after_id, message_id=message_id, limit=limit
        )
    except ValidationError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only one of before_id, after_id or message_id may be given",
        ) from None
    return raise_for_outcome(await lifecycle.history(current_user.id, room, request))


@router.post(
    f"{ROOM_PATH}/messages",
    response_model=MessageRead,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    payload: SendRequest,
    room: RoomReference = Depends(room_reference),
    lifecycle: MessageLifecycle = Depends(get_message_lifecycle),
    current_user: User = Depends(get_current_user),
) -> MessageRead:
    return raise_for_outcome(await lifecycle.send(current_user.id, room, payload))


@router.patch("/messages/{message_id}", response_model=MessageEditedEvent)
async def edit_message(
    message_id: int,
    payload: EditRequest,
    lifecycle: MessageLifecycle = Depends(get_message_lifecycle),
    current_user: User = Depends(get_current_user),
) -> MessageEditedEvent:
    """Edit the text of one of the caller's messages."""

    return raise_for_outcome(await lifecycle.edit(current_user.id, message_id, payload))


@router.delete("/messages/{message_id}", response_model=MessageDeleted)
async def delete_message(
    message_id: int,
    lifecycle: MessageLifecycle = Depends(get_message_lifecycle),
    current_user: User = Depends(get_current_user),
) -> MessageDeleted:
    return raise_for_outcome(await lifecycle.delete(current_user.id, message_id))


@router.post(f"{ROOM_PATH}/pin", response_model=MessageRead)
async def pin_message(
    payload: PinRequest,
    room: RoomReference = Depends(room_reference),
    lifecycle: MessageLifecycle = Depends(get_message_lifecycle),
    current_user: User = Depends(get_current_user),
) -> MessageRead:
    return raise_for_outcome(await lifecycle.pin(current_user.id, room, payload.message_id))


@router.delete(f"{ROOM_PATH}/pin", status_code=status.HTTP_204_NO_CONTENT)
async def unpin_message(
    room: RoomReference = Depends(room_reference),
    lifecycle: MessageLifecycle = Depends(get_message_lifecycle),
    current_user: User = Depends(get_current_user),
) -> Response:
    raise_for_outcome(await lifecycle.unpin(current_user.id, room))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(f"{ROOM_PATH}/seen", response_model=SeenReceipt)
async def mark_seen(
    room: RoomReference = Depends(room_reference),
    lifecycle: MessageLifecycle = Depends(get_message_lifecycle),
    current_user: User = Depends(get_current_user),
) -> SeenReceipt:
    return raise_for_outcome(await lifecycle.seen(current_user.id, room))


@router.post(f"{ROOM_PATH}/typing", response_model=TypingState)
async def report_typing(
    payload: TypingRequest,
    room: RoomReference = Depends(room_reference),
    lifecycle: MessageLifecycle = Depends(get_message_lifecycle),
    current_user: User = Depends(get_current_user),
) -> TypingState:
    return raise_for_outcome(await lifecycle.typing(current_user.id, room, payload.is_typing))


@router.post(f"{ROOM_PATH}/actions", status_code=status.HTTP_202_ACCEPTED)
async def report_user_action(
    payload: UserActionRequest,
    room: RoomReference = Depends(room_reference),
    lifecycle: MessageLifecycle = Depends(get_message_lifecycle),
    current_user: User = Depends(get_current_user),
) -> dict[str, int | str]:
    return raise_for_outcome(await lifecycle.user_action(current_user.id, room, payload))


@router.post(f"{ROOM_PATH}/clear-history", response_model=ClearHistoryResult)
async def clear_history(
    payload: ClearHistoryRequest,
    room: RoomReference = Depends(room_reference),
    lifecycle: MessageLifecycle = Depends(get_message_lifecycle),
    current_user: User = Depends(get_current_user),
) -> ClearHistoryResult:
    """Hide history for the caller (``self``) or delete it for everyone (``all``)."""

    if payload.scope == "all":
        outcome = await lifecycle.clear_history_all(current_user.id, room)
    else:
        outcome = await lifecycle.clear_history_self(current_user.id, room)
    return raise_for_outcome(outcome)


@router.get(f"{ROOM_PATH}/search", response_model=SearchPage)
async def search_messages(
    q: str = Query(..., max_length=100),
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    room: RoomReference = Depends(room_reference),
    lifecycle: MessageLifecycle = Depends(get_message_lifecycle),
    current_user: User = Depends(get_current_user),
) -> SearchPage:
    request = SearchRequest(query=q, limit=limit, offset=offset)
    return raise_for_outcome(await lifecycle.search(current_user.id, room, request))


@router.get(f"{ROOM_PATH}/unread", response_model=UnreadCount)
async def read_unread_count(
    room: RoomReference = Depends(room_reference),
    lifecycle: MessageLifecycle = Depends(get_message_lifecycle),
    current_user: User = Depends(get_current_user),
) -> UnreadCount:
    return raise_for_outcome(await lifecycle.unread_count(current_user.id, room))
