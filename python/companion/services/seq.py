"""Sequence assignment helper for message ordering.

Each chat has a `next_seq` counter (starts at 1). Assignment locks the chat
row, reads next_seq and increments it, so messages inserted within the same
clock tick still have a strict total order of (created_at, seq).

Must be called within an existing transaction context.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from companion.db.models import Chat
from companion.logging import get_logger

logger = get_logger(__name__)


def assign_next_message_seq(db: Session, chat_id: UUID) -> int:
    """Atomically assign the next message sequence number for a chat.

    This function does NOT open or commit its own transaction.

    Args:
        db: Database session (must be in a transaction)
        chat_id: UUID of the chat to assign seq for

    Returns:
        The sequence number to use for the new message

    Raises:
        ValueError: If the chat does not exist
    """
    # FOR UPDATE on PostgreSQL; SQLite serializes writers on its own
    current_seq = db.scalar(select(Chat.next_seq).where(Chat.id == chat_id).with_for_update())

    if current_seq is None:
        raise ValueError(f"Chat {chat_id} not found")

    db.execute(
        update(Chat)
        .where(Chat.id == chat_id)
        .values(next_seq=Chat.next_seq + 1)
        .execution_options(synchronize_session=False)
    )

    logger.debug("assigned_message_seq", chat_id=str(chat_id), seq=current_seq)

    return current_seq
