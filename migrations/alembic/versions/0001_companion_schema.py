"""Companion schema - users, profiles, api keys, grants, chats, messages

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates the whole chat schema. Access grants (subscriptions, free access
periods) are plain records; messages are append-only and ordered per chat by
(created_at, seq).
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        sa.UUID(),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _timestamp_column(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.TIMESTAMP(timezone=True),
        server_default=None if nullable else sa.text("now()"),
        nullable=nullable,
    )


def upgrade() -> None:
    # Enable pgcrypto extension for gen_random_uuid()
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # ==========================================================================
    # users table
    # ==========================================================================
    op.create_table(
        "users",
        _id_column(),
        _timestamp_column("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )

    # ==========================================================================
    # profiles table
    # ==========================================================================
    op.create_table(
        "profiles",
        _id_column(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("age", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("personality", sa.Text(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("webhook_url", sa.Text(), nullable=False),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("length(name) BETWEEN 1 AND 100", name="ck_profiles_name_length"),
        sa.CheckConstraint("age >= 18", name="ck_profiles_age_adult"),
    )

    # ==========================================================================
    # profile_api_keys table
    # ==========================================================================
    op.create_table(
        "profile_api_keys",
        _id_column(),
        sa.Column("profile_id", sa.UUID(), nullable=False),
        sa.Column("api_key_hash", sa.Text(), nullable=False),
        sa.Column("key_prefix", sa.Text(), nullable=False),
        sa.Column("active", sa.Boolean(), server_default="true", nullable=False),
        _timestamp_column("created_at"),
        _timestamp_column("last_used_at", nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["profile_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("api_key_hash", name="uq_profile_api_keys_api_key_hash"),
    )
    op.create_index(
        "ix_profile_api_keys_profile_active", "profile_api_keys", ["profile_id", "active"]
    )

    # ==========================================================================
    # subscriptions table
    # ==========================================================================
    op.create_table(
        "subscriptions",
        _id_column(),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("profile_id", sa.UUID(), nullable=False),
        sa.Column("active", sa.Boolean(), server_default="true", nullable=False),
        _timestamp_column("expires_at", nullable=True),
        sa.Column("stripe_subscription_id", sa.Text(), nullable=True),
        _timestamp_column("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["profile_id"], ["profiles.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_subscriptions_user_profile", "subscriptions", ["user_id", "profile_id"])

    # ==========================================================================
    # free_access_periods table
    # ==========================================================================
    op.create_table(
        "free_access_periods",
        _id_column(),
        sa.Column("profile_id", sa.UUID(), nullable=False),
        # NULL = window open to every user
        sa.Column("user_id", sa.UUID(), nullable=True),
        _timestamp_column("start_time"),
        sa.Column("end_time", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("active", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("created_by", sa.UUID(), nullable=True),
        _timestamp_column("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["profile_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint("end_time > start_time", name="ck_free_access_periods_window"),
    )

    # ==========================================================================
    # chats table
    # ==========================================================================
    op.create_table(
        "chats",
        _id_column(),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("profile_id", sa.UUID(), nullable=False),
        sa.Column("next_seq", sa.Integer(), server_default="1", nullable=False),
        _timestamp_column("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["profile_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "profile_id", name="uix_chats_user_profile"),
        sa.CheckConstraint("next_seq >= 1", name="ck_chats_next_seq_positive"),
    )

    # ==========================================================================
    # messages table
    # ==========================================================================
    op.create_table(
        "messages",
        _id_column(),
        sa.Column("chat_id", sa.UUID(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("sender_type", sa.Text(), nullable=False),
        sa.Column("message_type", sa.Text(), server_default="text", nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        _timestamp_column("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["chat_id"], ["chats.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("chat_id", "seq", name="uix_messages_chat_seq"),
        sa.CheckConstraint("sender_type IN ('user', 'ai')", name="ck_messages_sender_type"),
        sa.CheckConstraint(
            "message_type IN ('text', 'audio')", name="ck_messages_message_type"
        ),
    )
    op.create_index("ix_messages_chat_order", "messages", ["chat_id", "created_at", "seq"])


def downgrade() -> None:
    op.drop_index("ix_messages_chat_order", table_name="messages")
    op.drop_table("messages")
    op.drop_table("chats")
    op.drop_table("free_access_periods")
    op.drop_index("ix_subscriptions_user_profile", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_index("ix_profile_api_keys_profile_active", table_name="profile_api_keys")
    op.drop_table("profile_api_keys")
    op.drop_table("profiles")
    op.drop_table("users")
