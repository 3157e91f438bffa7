from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base
from app.models.enums import RoomKind, RoomRole


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


@dataclass(frozen=True, slots=True)
class RoomReference:
    """Tagged reference to a conversation scope (direct chat, group or post thread)."""

    kind: RoomKind
    id: int

    @property
    def key(self) -> str:
        """Identifier of the realtime room used for fan-out."""

        return f"{self.kind.value}:{self.id}"

    def to_payload(self) -> dict[str, int | str]:
        return {"kind": self.kind.value, "id": self.id}

    @classmethod
    def of(cls, room: "Room") -> "RoomReference":
        return cls(kind=room.kind, id=room.id)


class User(Base):
    """Application user."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    login: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(128))
    avatar_path: Mapped[str | None] = mapped_column(String(512))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    memberships: Mapped[list["RoomMember"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    messages: Mapped[list["Message"]] = relationship(back_populates="sender")

    @property
    def avatar_url(self) -> str | None:
        from app.core.storage import resolve_avatar_url

        return resolve_avatar_url(self)


class Room(Base):
    """Conversation scope: a direct chat, a group or a channel post thread."""

    __tablename__ = "rooms"

    id: Mapped[int] = mapped_column(primary_key=True)
    kind: Mapped[RoomKind] = mapped_column(
        SAEnum(RoomKind, name="room_kind", values_callable=_enum_values),
        default=RoomKind.GROUP,
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    owner_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    external_ref: Mapped[int | None] = mapped_column(Integer)
    last_activity_at: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    members: Mapped[list["RoomMember"]] = relationship(
        back_populates="room", cascade="all, delete-orphan"
    )
    state: Mapped["RoomState | None"] = relationship(
        back_populates="room", cascade="all, delete-orphan", uselist=False
    )

    @property
    def reference(self) -> RoomReference:
        return RoomReference.of(self)


class RoomMember(Base):
    """Link table between room and user with role and per-user read state."""

    __tablename__ = "room_members"
    __table_args__ = (UniqueConstraint("room_id", "user_id", name="uq_room_member"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[RoomRole] = mapped_column(
        SAEnum(RoomRole, name="room_role", values_callable=_enum_values),
        default=RoomRole.MEMBER,
        nullable=False,
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Epoch seconds; drives unread counters and seen receipts.
    last_seen: Mapped[int | None] = mapped_column(Integer)
    # Personal clear-history watermark, epoch seconds.
    cleared_at: Mapped[int | None] = mapped_column(Integer)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    room: Mapped[Room] = relationship(back_populates="members")
    user: Mapped[User] = relationship(back_populates="memberships")


class Message(Base):
    """Encrypted chat message scoped to a single room."""

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_room_id_id", "room_id", "id"),
        Index("ix_messages_room_sender", "room_id", "sender_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    sender_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    time: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    text_ecb: Mapped[str] = mapped_column(Text, nullable=False, default="")
    text_preview: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    iv: Mapped[str | None] = mapped_column(String(64))
    tag: Mapped[str | None] = mapped_column(String(64))
    cipher_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    media: Mapped[str | None] = mapped_column(String(512))
    media_file_name: Mapped[str | None] = mapped_column(String(255))
    stickers: Mapped[str | None] = mapped_column(String(512))
    lat: Mapped[str | None] = mapped_column(String(32))
    lng: Mapped[str | None] = mapped_column(String(32))
    contact: Mapped[str | None] = mapped_column(Text)
    # Plain id, the target may be deleted later.
    reply_to_id: Mapped[int | None] = mapped_column(Integer)
    forwarded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    sender: Mapped[User] = relationship(back_populates="messages")


class RoomState(Base):
    """Administrative state of a room: pinned slot and slow mode."""

    __tablename__ = "room_states"

    room_id: Mapped[int] = mapped_column(
        ForeignKey("rooms.id", ondelete="CASCADE"), primary_key=True
    )
    pinned_message_id: Mapped[int | None] = mapped_column(
        ForeignKey("messages.id", ondelete="SET NULL"), nullable=True
    )
    pinned_by_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    pinned_at: Mapped[int | None] = mapped_column(Integer)
    slowmode_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    room: Mapped[Room] = relationship(back_populates="state")
    pinned_message: Mapped[Message | None] = relationship(foreign_keys=[pinned_message_id])

    __mapper_args__ = {"version_id_col": version}


class RoomBan(Base):
    """User banned from a room."""

    __tablename__ = "room_bans"
    __table_args__ = (UniqueConstraint("room_id", "user_id", name="uq_room_ban"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    banned_by_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class RoomMute(Base):
    """User who may read but not post in a room."""

    __tablename__ = "room_mutes"
    __table_args__ = (UniqueConstraint("room_id", "user_id", name="uq_room_mute"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    muted_by_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class RoomJoinRequest(Base):
    """Pending request from a user to join a room."""

    __tablename__ = "room_join_requests"
    __table_args__ = (UniqueConstraint("room_id", "user_id", name="uq_room_join_request"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    requested_at: Mapped[int] = mapped_column(Integer, nullable=False)

    user: Mapped[User] = relationship()
