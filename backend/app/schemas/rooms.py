"""Schemas for rooms, memberships and moderation lists."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, constr

from app.models import RoomKind, RoomRole
from app.schemas.messages import MessageAuthor, RoomRef


class RoomCreate(BaseModel):
    """Payload for creating a room; the caller becomes its owner."""

    kind: RoomKind = RoomKind.GROUP
    title: constr(strip_whitespace=True, max_length=128) = ""
    external_ref: int | None = Field(default=None, description="Post id for channel post threads")
    member_ids: list[int] = Field(default_factory=list)


class RoomRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    kind: RoomKind
    title: str
    owner_id: int
    external_ref: int | None = None
    last_activity_at: int
    created_at: datetime


class RoomMemberRead(BaseModel):
    """Membership entry returned to clients."""

    model_config = ConfigDict(from_attributes=True)

    user: MessageAuthor
    role: RoomRole
    active: bool
    last_seen: int | None = None
    muted: bool = False


class MemberTarget(BaseModel):
    user_id: int = Field(..., ge=1)


class RoomMemberRoleUpdate(BaseModel):
    """Payload for updating a room member role."""

    user_id: int = Field(..., ge=1)
    role: RoomRole


class JoinRequestRead(BaseModel):
    user: MessageAuthor
    requested_at: int


class RoomSettingsUpdate(BaseModel):
    expected_version: int | None = Field(
        default=None, description="Version read by the client; mismatches are rejected"
    )
    slowmode_seconds: int | None = Field(default=None, ge=0, le=86400)


class RoomSettingsRead(BaseModel):
    room: RoomRef
    slowmode_seconds: int
    version: int
