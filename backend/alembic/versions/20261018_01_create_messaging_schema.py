"""create messaging schema

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_01"
down_revision = None
branch_labels = None
depends_on = None


ROOM_KIND = sa.Enum("direct", "group", "channel_post", name="room_kind")
ROOM_ROLE = sa.Enum("owner", "admin", "moderator", "member", name="room_role")


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def _room_user_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "room_id",
            sa.Integer(),
            sa.ForeignKey("rooms.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("login", sa.String(length=64), nullable=False, unique=True),
        sa.Column("display_name", sa.String(length=128), nullable=True),
        sa.Column("avatar_path", sa.String(length=512), nullable=True),
        _created_at(),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "rooms",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("kind", ROOM_KIND, nullable=False, server_default="group"),
        sa.Column("title", sa.String(length=128), nullable=False, server_default=""),
        sa.Column(
            "owner_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("external_ref", sa.Integer(), nullable=True),
        sa.Column("last_activity_at", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "room_members",
        *_room_user_columns(),
        sa.Column("role", ROOM_ROLE, nullable=False, server_default="member"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_seen", sa.Integer(), nullable=True),
        sa.Column("cleared_at", sa.Integer(), nullable=True),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("room_id", "user_id", name="uq_room_member"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column(
            "room_id",
            sa.Integer(),
            sa.ForeignKey("rooms.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "sender_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("time", sa.Integer(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("text_ecb", sa.Text(), nullable=False),
        sa.Column("text_preview", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("iv", sa.String(length=64), nullable=True),
        sa.Column("tag", sa.String(length=64), nullable=True),
        sa.Column("cipher_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("media", sa.String(length=512), nullable=True),
        sa.Column("media_file_name", sa.String(length=255), nullable=True),
        sa.Column("stickers", sa.String(length=512), nullable=True),
        sa.Column("lat", sa.String(length=32), nullable=True),
        sa.Column("lng", sa.String(length=32), nullable=True),
        sa.Column("contact", sa.Text(), nullable=True),
        sa.Column("reply_to_id", sa.Integer(), nullable=True),
        sa.Column("forwarded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("edited", sa.Boolean(), nullable=False, server_default=sa.false()),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_messages_room_id_id", "messages", ["room_id", "id"])
    op.create_index("ix_messages_room_sender", "messages", ["room_id", "sender_id"])

    op.create_table(
        "room_states",
        sa.Column(
            "room_id",
            sa.Integer(),
            sa.ForeignKey("rooms.id", ondelete="CASCADE"),
            primary_key=True,
            nullable=False,
        ),
        sa.Column(
            "pinned_message_id",
            sa.Integer(),
            sa.ForeignKey("messages.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "pinned_by_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("pinned_at", sa.Integer(), nullable=True),
        sa.Column("slowmode_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "room_bans",
        *_room_user_columns(),
        sa.Column(
            "banned_by_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _created_at(),
        sa.UniqueConstraint("room_id", "user_id", name="uq_room_ban"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "room_mutes",
        *_room_user_columns(),
        sa.Column(
            "muted_by_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _created_at(),
        sa.UniqueConstraint("room_id", "user_id", name="uq_room_mute"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "room_join_requests",
        *_room_user_columns(),
        sa.Column("requested_at", sa.Integer(), nullable=False),
        sa.UniqueConstraint("room_id", "user_id", name="uq_room_join_request"),
        mysql_charset="utf8mb4",
    )


def downgrade() -> None:
    op.drop_table("room_join_requests")
    op.drop_table("room_mutes")
    op.drop_table("room_bans")
    op.drop_table("room_states")
    op.drop_index("ix_messages_room_sender", table_name="messages")
    op.drop_index("ix_messages_room_id_id", table_name="messages")
    op.drop_table("messages")
    op.drop_table("room_members")
    op.drop_table("rooms")
    op.drop_table("users")

    ROOM_ROLE.drop(op.get_bind(), checkfirst=False)
    ROOM_KIND.drop(op.get_bind(), checkfirst=False)
