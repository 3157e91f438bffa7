"""FastAPI dependencies for the API layer."""

from typing import Any, TypeVar

from fastapi import Depends, HTTPException, Path, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.core.security import decode_access_token
from app.database import get_db
from app.models import RoomKind, RoomReference, User
from app.services import Outcome
from app.services.members import MemberManagement
from app.services.messaging import MessageLifecycle
from parley.realtime import get_room_manager, get_typing_store

T = TypeVar("T")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Retrieve the current user from the JWT token."""

    return get_user_from_token(token, db)


def get_user_from_token(token: str, db: Session) -> User:
    """Resolve a user from a JWT token or raise an HTTP 401 error."""

    payload = decode_access_token(token)
    sub = payload.get("sub")
    if sub is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )

    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from None

    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return user


def room_reference(
    kind: RoomKind = Path(..., description="Room kind: direct, group or channel_post"),
    room_id: int = Path(..., ge=1),
) -> RoomReference:
    return RoomReference(kind=kind, id=room_id)


def get_message_lifecycle(db: Session = Depends(get_db)) -> MessageLifecycle:
    return MessageLifecycle(db, get_room_manager(), typing_store=get_typing_store())


def get_member_management(db: Session = Depends(get_db)) -> MemberManagement:
    return MemberManagement(db, get_room_manager())


def raise_for_outcome(outcome: Outcome[T]) -> T:
    """Return the value of a successful outcome or translate the rejection into HTTP."""

    if outcome.ok:
        return outcome.value  # type: ignore[return-value]

    headers: dict[str, Any] | None = None
    if outcome.retry_after is not None:
        headers = {"Retry-After": str(outcome.retry_after)}
    raise HTTPException(status_code=outcome.status_code, detail=outcome.reason, headers=headers)
