"""Create core tables (SQLite-friendly).

Revision ID: 0001_core_tables
Revises:
Create Date: 2026-10-17

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001_core_tables"
down_revision = None
branch_labels = None
depends_on = None


def _uuid_type() -> sa.types.TypeEngine:
    """Portable UUID column type.

    PostgreSQL gets a real UUID column; SQLite stores UUIDs as strings.
    """

    return sa.String(36).with_variant(postgresql.UUID(as_uuid=True), "postgresql")


def upgrade() -> None:
    uuid_t = _uuid_type()

    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True, nullable=False),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=False),
        sa.Column("hashed_password", sa.Text(), nullable=False),
        sa.Column(
            "profile_picture_url", sa.Text(), nullable=False, server_default=""
        ),
        sa.Column(
            "sharing_enabled", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "user_locations",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("accuracy", sa.Float(), nullable=True),
        sa.Column("geohash", sa.String(12), nullable=False),
        sa.Column("reported_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id", name="pk_user_locations"),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name="fk_user_locations_user_id_users",
            ondelete="CASCADE",
        ),
    )
    # Prefix range scans: geohash >= :lower AND geohash < :upper.
    op.create_index("ix_user_locations_geohash", "user_locations", ["geohash"])

    op.create_table(
        "buzzes",
        sa.Column("id", uuid_t, nullable=False),
        sa.Column("sender_id", sa.String(64), nullable=False),
        sa.Column("receiver_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("sender_name", sa.Text(), nullable=False),
        sa.Column("sender_picture_url", sa.Text(), nullable=False),
        sa.Column("receiver_name", sa.Text(), nullable=False),
        sa.Column("receiver_picture_url", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_buzzes"),
        sa.ForeignKeyConstraint(
            ["sender_id"],
            ["users.id"],
            name="fk_buzzes_sender_id_users",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["receiver_id"],
            ["users.id"],
            name="fk_buzzes_receiver_id_users",
            ondelete="CASCADE",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'declined')",
            name="ck_buzzes_status_valid",
        ),
    )
    op.create_index("ix_buzzes_sender_id", "buzzes", ["sender_id"])
    op.create_index("ix_buzzes_receiver_id", "buzzes", ["receiver_id"])
    op.create_index(
        "ix_buzzes_receiver_status", "buzzes", ["receiver_id", "status", "created_at"]
    )
    # At most one pending buzz per (sender, receiver).
    op.create_index(
        "uq_buzzes_pending_pair",
        "buzzes",
        ["sender_id", "receiver_id"],
        unique=True,
        sqlite_where=sa.text("status = 'pending'"),
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "chats",
        sa.Column("id", sa.String(160), nullable=False),
        sa.Column("participant_a", sa.String(64), nullable=False),
        sa.Column("participant_b", sa.String(64), nullable=False),
        sa.Column("participant_info", sa.JSON(), nullable=False),
        sa.Column("last_message_text", sa.Text(), nullable=False),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("unread_a", sa.Integer(), nullable=False),
        sa.Column("unread_b", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_chats"),
        sa.ForeignKeyConstraint(
            ["participant_a"],
            ["users.id"],
            name="fk_chats_participant_a_users",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["participant_b"],
            ["users.id"],
            name="fk_chats_participant_b_users",
            ondelete="CASCADE",
        ),
    )
    op.create_index("ix_chats_participant_a", "chats", ["participant_a"])
    op.create_index("ix_chats_participant_b", "chats", ["participant_b"])

    op.create_table(
        "chat_messages",
        sa.Column("id", uuid_t, nullable=False),
        sa.Column("chat_id", sa.String(160), nullable=False),
        sa.Column("sender_id", sa.String(64), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_chat_messages"),
        sa.ForeignKeyConstraint(
            ["chat_id"],
            ["chats.id"],
            name="fk_chat_messages_chat_id_chats",
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_chat_messages_chat_created_at", "chat_messages", ["chat_id", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_chat_messages_chat_created_at", table_name="chat_messages")
    op.drop_table("chat_messages")

    op.drop_index("ix_chats_participant_b", table_name="chats")
    op.drop_index("ix_chats_participant_a", table_name="chats")
    op.drop_table("chats")

    op.drop_index("uq_buzzes_pending_pair", table_name="buzzes")
    op.drop_index("ix_buzzes_receiver_status", table_name="buzzes")
    op.drop_index("ix_buzzes_receiver_id", table_name="buzzes")
    op.drop_index("ix_buzzes_sender_id", table_name="buzzes")
    op.drop_table("buzzes")

    op.drop_index("ix_user_locations_geohash", table_name="user_locations")
    op.drop_table("user_locations")

    op.drop_table("users")
