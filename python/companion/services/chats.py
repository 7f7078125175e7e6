"""Chat and Message service layer.

All user-facing operations:
- Enforce owner-only access
- Use E_NOT_FOUND for chats the viewer does not own (prevent probing)
- Return messages in canonical order: created_at ASC, seq ASC

Service functions correspond 1:1 with route handlers.
Routes are transport-only and call exactly one service function.
"""

import base64
import json
from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from companion.db.models import Chat, Message, Profile, utcnow
from companion.db.session import transaction
from companion.errors import ApiErrorCode, InvalidRequestError, NotFoundError
from companion.logging import get_logger
from companion.realtime import (
    MESSAGE_INSERTED,
    chat_messages_topic,
    make_event,
    user_messages_topic,
)
from companion.schemas.chat import ChatOut, MessageOut, PageInfo, ProfileSummary
from companion.services.access import require_access
from companion.services.seq import assign_next_message_seq

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

# Pagination limits
DEFAULT_LIMIT = 50
MIN_LIMIT = 1
MAX_LIMIT = 100


# =============================================================================
# Cursor Encoding/Decoding
# =============================================================================


def encode_message_cursor(created_at: datetime, seq: int) -> str:
    """Encode a cursor for message pagination.

    Cursor payload: {"created_at": "<iso>", "seq": <int>}
    Encoding: base64url without padding
    """
    payload = {"created_at": created_at.isoformat(), "seq": seq}
    json_bytes = json.dumps(payload).encode("utf-8")
    return base64.urlsafe_b64encode(json_bytes).decode("ascii").rstrip("=")


def decode_message_cursor(cursor: str) -> tuple[datetime, int]:
    """Decode a cursor for message pagination.

    Returns:
        Tuple of (created_at, seq)

    Raises:
        InvalidRequestError(E_INVALID_CURSOR): If cursor is malformed or unparseable.
    """
    try:
        padding = 4 - len(cursor) % 4
        if padding != 4:
            cursor += "=" * padding

        payload = json.loads(base64.urlsafe_b64decode(cursor).decode("utf-8"))
        created_at = datetime.fromisoformat(payload["created_at"])
        seq = int(payload["seq"])
        if created_at.tzinfo is None:
            raise ValueError("naive timestamp")
        return created_at, seq
    except Exception:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_CURSOR, "Invalid cursor") from None


# =============================================================================
# Helper Functions
# =============================================================================


def clamp_limit(limit: int) -> int:
    """Clamp limit to valid range [MIN_LIMIT, MAX_LIMIT]."""
    return min(max(limit, MIN_LIMIT), MAX_LIMIT)


def get_chat_for_viewer_or_404(db: Session, viewer_id: UUID, chat_id: UUID) -> Chat:
    """Load chat and verify ownership.

    Raises:
        NotFoundError(E_NOT_FOUND): If the chat doesn't exist OR viewer is not the owner.
    """
    chat = db.get(Chat, chat_id)
    if chat is None or chat.user_id != viewer_id:
        raise NotFoundError(ApiErrorCode.E_NOT_FOUND, "Chat not found")
    return chat


def message_to_out(message: Message) -> MessageOut:
    """Convert Message ORM model to MessageOut schema."""
    return MessageOut(
        id=message.id,
        chat_id=message.chat_id,
        seq=message.seq,
        sender_type=message.sender_type,
        message_type=message.message_type,
        content=message.content,
        created_at=message.created_at,
    )


def chat_to_out(chat: Chat, last_message: Message | None = None) -> ChatOut:
    """Convert Chat ORM model (with profile loaded) to ChatOut schema."""
    return ChatOut(
        id=chat.id,
        profile=ProfileSummary.model_validate(chat.profile),
        created_at=chat.created_at,
        last_message=message_to_out(last_message) if last_message else None,
    )


def insert_message(
    db: Session,
    chat_id: UUID,
    *,
    sender_type: str,
    message_type: str,
    content: str,
) -> Message:
    """Append a message to a chat.

    Must be called within a transaction: the chat row is locked while the
    seq is assigned.
    """
    seq = assign_next_message_seq(db, chat_id)
    message = Message(
        chat_id=chat_id,
        seq=seq,
        sender_type=sender_type,
        message_type=message_type,
        content=content,
        created_at=utcnow(),
    )
    db.add(message)
    db.flush()
    return message


def publish_message_inserted(broker, chat: Chat, message: MessageOut) -> None:
    """Notify subscribers of the chat and of the chat's owner."""
    event = make_event(MESSAGE_INSERTED, message.model_dump(mode="json"))
    broker.publish(chat_messages_topic(chat.id), event)
    broker.publish(user_messages_topic(chat.user_id), event)


# =============================================================================
# Service Functions
# =============================================================================


def open_chat(db: Session, viewer_id: UUID, profile_id: UUID) -> ChatOut:
    """Return the viewer's chat with a profile, creating it on first access.

    Idempotent: at most one chat exists per (user, profile). Concurrent first
    opens converge on the same row.

    Raises:
        NotFoundError(E_PROFILE_NOT_FOUND): If the profile doesn't exist.
        ForbiddenError(E_ACCESS_DENIED): If the viewer has no access grant.
    """
    profile = db.get(Profile, profile_id)
    if profile is None:
        raise NotFoundError(ApiErrorCode.E_PROFILE_NOT_FOUND, "Profile not found")

    require_access(db, viewer_id, profile_id)

    stmt = select(Chat).where(Chat.user_id == viewer_id, Chat.profile_id == profile_id)
    chat = db.scalar(stmt)
    if chat is None:
        try:
            with transaction(db):
                chat = Chat(user_id=viewer_id, profile_id=profile_id, next_seq=1)
                db.add(chat)
            logger.info("chat_created", chat_id=str(chat.id), profile_id=str(profile_id))
        except IntegrityError:
            # Lost race on the (user_id, profile_id) unique constraint
            chat = db.scalar(stmt)
            if chat is None:
                raise

    last = db.scalar(
        select(Message)
        .where(Message.chat_id == chat.id)
        .order_by(Message.created_at.desc(), Message.seq.desc())
        .limit(1)
    )
    return chat_to_out(chat, last)


def get_chat(db: Session, viewer_id: UUID, chat_id: UUID) -> ChatOut:
    """Get a chat by ID.

    Raises:
        NotFoundError(E_NOT_FOUND): If chat doesn't exist or viewer is not the owner.
    """
    chat = get_chat_for_viewer_or_404(db, viewer_id, chat_id)
    last = db.scalar(
        select(Message)
        .where(Message.chat_id == chat.id)
        .order_by(Message.created_at.desc(), Message.seq.desc())
        .limit(1)
    )
    return chat_to_out(chat, last)


def list_chats(db: Session, viewer_id: UUID) -> list[ChatOut]:
    """List the viewer's chats, most recent activity first.

    Activity is the last message's timestamp, or the chat's creation time
    for chats without messages.
    """
    chats = db.scalars(
        select(Chat).where(Chat.user_id == viewer_id).options(selectinload(Chat.profile))
    ).all()
    if not chats:
        return []

    # Latest message per chat: highest seq
    latest_seq = (
        select(Message.chat_id, func.max(Message.seq).label("max_seq"))
        .where(Message.chat_id.in_([c.id for c in chats]))
        .group_by(Message.chat_id)
        .subquery()
    )
    last_messages = db.scalars(
        select(Message).join(
            latest_seq,
            and_(Message.chat_id == latest_seq.c.chat_id, Message.seq == latest_seq.c.max_seq),
        )
    ).all()
    last_by_chat = {m.chat_id: m for m in last_messages}

    def activity(chat: Chat) -> datetime:
        last = last_by_chat.get(chat.id)
        return last.created_at if last else chat.created_at

    ordered = sorted(chats, key=activity, reverse=True)
    return [chat_to_out(chat, last_by_chat.get(chat.id)) for chat in ordered]


def list_messages(
    db: Session,
    viewer_id: UUID,
    chat_id: UUID,
    limit: int = DEFAULT_LIMIT,
    cursor: str | None = None,
) -> tuple[list[MessageOut], PageInfo]:
    """List messages in a chat, oldest first.

    Args:
        db: Database session.
        viewer_id: The ID of the viewer.
        chat_id: The ID of the chat.
        limit: Maximum number of results (clamped to 1-100).
        cursor: Opaque pagination cursor.

    Returns:
        Tuple of (messages, page_info).

    Raises:
        NotFoundError(E_NOT_FOUND): If chat doesn't exist or viewer is not the owner.
        InvalidRequestError(E_INVALID_CURSOR): If cursor is malformed.
    """
    get_chat_for_viewer_or_404(db, viewer_id, chat_id)

    limit = clamp_limit(limit)

    stmt = select(Message).where(Message.chat_id == chat_id)
    if cursor:
        cursor_created_at, cursor_seq = decode_message_cursor(cursor)
        # (created_at, seq) > (cursor.created_at, cursor.seq)
        stmt = stmt.where(
            or_(
                Message.created_at > cursor_created_at,
                and_(Message.created_at == cursor_created_at, Message.seq > cursor_seq),
            )
        )

    rows = db.scalars(
        stmt.order_by(Message.created_at.asc(), Message.seq.asc()).limit(limit + 1)
    ).all()

    has_more = len(rows) > limit
    if has_more:
        rows = rows[:limit]

    messages = [message_to_out(row) for row in rows]

    next_cursor = None
    if has_more and messages:
        last = messages[-1]
        next_cursor = encode_message_cursor(last.created_at, last.seq)

    return messages, PageInfo(next_cursor=next_cursor)
