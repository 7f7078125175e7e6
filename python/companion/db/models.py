"""SQLAlchemy ORM models for Companion.

Defines all database tables using SQLAlchemy 2.x declarative patterns.

Column types are kept portable (Uuid, UTCDateTime, Text + CHECK constraints
instead of native enums) so the same metadata runs on PostgreSQL in
deployment and on SQLite in the test suite. Primary keys and timestamps get
their values client-side; the Alembic migration adds matching server defaults
for rows written outside the ORM.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always round-trips as UTC.

    PostgreSQL stores TIMESTAMPTZ natively; SQLite drops tzinfo, so values
    read back without one are tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Enums
# =============================================================================


class SenderType(str, PyEnum):
    """Who authored a message."""

    user = "user"
    ai = "ai"


class MessageType(str, PyEnum):
    """Message payload kind. Audio messages carry a storage URL as content."""

    text = "text"
    audio = "audio"


# =============================================================================
# Models
# =============================================================================


class User(Base):
    """User account model.

    The user ID matches the Supabase auth user ID (sub claim).
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    # Relationships
    chats: Mapped[list["Chat"]] = relationship(
        "Chat", back_populates="user", cascade="all, delete-orphan"
    )
    subscriptions: Mapped[list["Subscription"]] = relationship(
        "Subscription", back_populates="user", cascade="all, delete-orphan"
    )


class Profile(Base):
    """Profile model - the counterpart a user subscribes to and chats with.

    Replies are produced by an external AI backend reachable at webhook_url.
    """

    __tablename__ = "profiles"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    age: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    personality: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    webhook_url: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("length(name) BETWEEN 1 AND 100", name="ck_profiles_name_length"),
        CheckConstraint("age >= 18", name="ck_profiles_age_adult"),
    )

    # Relationships
    api_keys: Mapped[list["ProfileApiKey"]] = relationship(
        "ProfileApiKey", back_populates="profile", cascade="all, delete-orphan"
    )
    chats: Mapped[list["Chat"]] = relationship(
        "Chat", back_populates="profile", cascade="all, delete-orphan"
    )


class ProfileApiKey(Base):
    """API key that authorizes inbound webhook calls on behalf of a profile.

    Only the SHA-256 digest of the key is stored. key_prefix keeps the first
    characters of the plaintext for display.
    """

    __tablename__ = "profile_api_keys"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    profile_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    api_key_hash: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    key_prefix: Mapped[str] = mapped_column(Text, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (Index("ix_profile_api_keys_profile_active", "profile_id", "active"),)

    # Relationships
    profile: Mapped["Profile"] = relationship("Profile", back_populates="api_keys")


class Subscription(Base):
    """Paid subscription of a user to a profile.

    Grants access while active and not expired (expires_at NULL = open-ended).
    """

    __tablename__ = "subscriptions"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    profile_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (Index("ix_subscriptions_user_profile", "user_id", "profile_id"),)

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="subscriptions")
    profile: Mapped["Profile"] = relationship("Profile")


class FreeAccessPeriod(Base):
    """Time window during which a profile can be chatted with for free.

    user_id NULL opens the window to every user.
    """

    __tablename__ = "free_access_periods"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    profile_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=True,
    )
    start_time: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_free_access_periods_window"),
    )

    # Relationships
    profile: Mapped["Profile"] = relationship("Profile")


class Chat(Base):
    """Chat model - the conversation between one user and one profile.

    Created lazily on the first qualifying access check. next_seq is the
    per-chat message counter (see services.seq).
    """

    __tablename__ = "chats"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    profile_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    next_seq: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "profile_id", name="uix_chats_user_profile"),
        CheckConstraint("next_seq >= 1", name="ck_chats_next_seq_positive"),
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="chats")
    profile: Mapped["Profile"] = relationship("Profile", back_populates="chats")
    messages: Mapped[list["Message"]] = relationship(
        "Message", back_populates="chat", cascade="all, delete-orphan"
    )


class Message(Base):
    """Message model - a single append-only message in a chat.

    Ordered by (created_at, seq) within a chat.
    """

    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    chat_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("chats.id", ondelete="CASCADE"),
        nullable=False,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    sender_type: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(Text, nullable=False, default="text")
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("sender_type IN ('user', 'ai')", name="ck_messages_sender_type"),
        CheckConstraint("message_type IN ('text', 'audio')", name="ck_messages_message_type"),
        UniqueConstraint("chat_id", "seq", name="uix_messages_chat_seq"),
        Index("ix_messages_chat_order", "chat_id", "created_at", "seq"),
    )

    # Relationships
    chat: Mapped["Chat"] = relationship("Chat", back_populates="messages")
