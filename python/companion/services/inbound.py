"""Inbound delivery from the AI backend.

The AI backend pushes replies and typing status for a profile, authenticated
by that profile's API key. Every call is scoped to chats of that profile: a
chat that is missing and a chat of another profile are reported the same way,
and in both cases nothing is written or broadcast.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from companion.db.models import Chat, MessageType, SenderType
from companion.db.session import transaction
from companion.errors import ApiErrorCode, InvalidRequestError
from companion.logging import get_logger, set_chat_id
from companion.realtime import (
    TYPING_START,
    TYPING_STOP,
    chat_typing_topic,
    make_event,
)
from companion.schemas.chat import MessageOut
from companion.services.chats import insert_message, message_to_out, publish_message_inserted
from companion.services.redact import safe_kv

logger = get_logger(__name__)

RECEIVED_MESSAGE = "Message received and stored successfully"


def get_chat_for_profile_or_400(db: Session, profile_id: UUID, chat_id: UUID) -> Chat:
    """Load a chat and verify it belongs to the authenticated profile.

    Raises:
        InvalidRequestError(E_CHAT_NOT_FOUND): If the chat doesn't exist or
            belongs to another profile.
    """
    chat = db.get(Chat, chat_id)
    if chat is None or chat.profile_id != profile_id:
        logger.info("inbound_chat_rejected", chat_id=str(chat_id))
        raise InvalidRequestError(
            ApiErrorCode.E_CHAT_NOT_FOUND, "Chat not found or access denied"
        )
    return chat


def receive_message(
    db: Session, broker, profile_id: UUID, chat_id: UUID, text: str
) -> MessageOut:
    """Store an AI reply in the chat and notify subscribers.

    Returns:
        The stored message.
    """
    chat = get_chat_for_profile_or_400(db, profile_id, chat_id)
    set_chat_id(str(chat_id))

    with transaction(db):
        message = insert_message(
            db,
            chat.id,
            sender_type=SenderType.ai.value,
            message_type=MessageType.text.value,
            content=text,
        )
    out = message_to_out(message)

    publish_message_inserted(broker, chat, out)

    logger.info(
        "inbound_message_stored",
        **safe_kv(message_id=str(out.id), seq=out.seq, message_chars=len(text)),
    )
    return out


def set_typing_status(
    db: Session, broker, profile_id: UUID, chat_id: UUID, is_typing: bool
) -> str:
    """Broadcast a typing start/stop for the chat. Nothing is persisted.

    Returns:
        Human-readable confirmation for the caller.
    """
    chat = get_chat_for_profile_or_400(db, profile_id, chat_id)
    set_chat_id(str(chat_id))

    event_type = TYPING_START if is_typing else TYPING_STOP
    broker.publish(
        chat_typing_topic(chat.id),
        make_event(event_type, {"chatId": str(chat.id), "womanId": str(profile_id)}),
    )

    logger.info("inbound_typing_broadcast", event_type=event_type)
    state = "started" if is_typing else "stopped"
    return f"Typing status {state} for chat {chat.id}"
