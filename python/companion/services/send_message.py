"""Send message service - the outbound path of a chat.

Phase 0 - Pre-Validation (no DB writes):
- Text non-empty after trim and within MAX_MESSAGE_CHARS
- Audio base64-decodable, non-empty, within MAX_AUDIO_BYTES, audio/* MIME type

Phase 1 - Authorize (no DB writes):
- Chat exists and is owned by the viewer (masked 404)
- Access grant re-checked (E_ACCESS_DENIED)

Phase 2 - Upload (audio only, no DB transaction held):
- Store the clip; its public URL becomes the message content

Phase 3 - Persist (single DB transaction):
- Lock chat row, assign seq, insert user message
- Publish message_inserted after commit
- On failure the uploaded clip is deleted before the error propagates

Phase 4 - Relay (fire-and-forget):
- Hand the webhook call to the dispatcher; the response is not awaited

Invariants:
- Nothing is written when access is denied
- A failed insert leaves no stored audio behind
- The relay outcome never changes the stored message or the response
"""

from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from companion.config import get_settings
from companion.db.models import MessageType, Profile, SenderType
from companion.db.session import transaction
from companion.errors import ApiError, ApiErrorCode, InvalidRequestError
from companion.logging import get_logger, set_chat_id
from companion.schemas.chat import MessageOut, SendMessageRequest
from companion.services.access import require_access
from companion.services.chats import (
    get_chat_for_viewer_or_404,
    insert_message,
    message_to_out,
    publish_message_inserted,
)
from companion.services.dispatch import BestEffortDispatcher
from companion.services.redact import safe_kv
from companion.services.relay import RelayRequest, relay_to_webhook
from companion.storage import StorageClientBase, StorageError, build_audio_path, normalize_mime

logger = get_logger(__name__)


def validate_text(content: str, max_chars: int) -> str:
    """Return the trimmed text or raise.

    Raises:
        InvalidRequestError(E_MESSAGE_EMPTY): If nothing is left after trimming.
        InvalidRequestError(E_MESSAGE_TOO_LONG): If longer than max_chars.
    """
    text = content.strip()
    if not text:
        raise InvalidRequestError(ApiErrorCode.E_MESSAGE_EMPTY, "Message is empty")
    if len(text) > max_chars:
        raise InvalidRequestError(
            ApiErrorCode.E_MESSAGE_TOO_LONG,
            f"Message exceeds {max_chars} characters",
        )
    return text


def validate_audio(body: SendMessageRequest, max_bytes: int) -> tuple[bytes, str]:
    """Decode and check an audio payload.

    Returns:
        Tuple of (audio bytes, normalized MIME type).
    """
    mime = normalize_mime(body.audio_type or "")
    if not mime.startswith("audio/") or mime == "audio/":
        raise InvalidRequestError(ApiErrorCode.E_AUDIO_INVALID, "audio_type must be audio/*")

    try:
        audio = body.decoded_audio()
    except ValueError:
        raise InvalidRequestError(
            ApiErrorCode.E_AUDIO_INVALID, "audio_data is not valid base64"
        ) from None

    if not audio:
        raise InvalidRequestError(ApiErrorCode.E_AUDIO_INVALID, "Audio recording is empty")
    if len(audio) > max_bytes:
        raise InvalidRequestError(
            ApiErrorCode.E_AUDIO_TOO_LARGE, f"Audio exceeds {max_bytes} bytes"
        )
    return audio, mime


def send_message(
    db: Session,
    viewer_id: UUID,
    chat_id: UUID,
    body: SendMessageRequest,
    *,
    broker,
    storage: StorageClientBase,
    dispatcher: BestEffortDispatcher,
    http_client: httpx.AsyncClient,
) -> MessageOut:
    """Persist the viewer's message, notify subscribers, and relay it.

    Returns:
        The stored message. Returned as soon as it is committed; the relay
        runs in the background.

    Raises:
        InvalidRequestError: On empty/oversized/malformed payloads.
        NotFoundError(E_NOT_FOUND): If the chat is missing or not the viewer's.
        ForbiddenError(E_ACCESS_DENIED): If the viewer lost access to the profile.
        ApiError(E_STORAGE_ERROR): If the audio upload fails.
    """
    settings = get_settings()
    set_chat_id(str(chat_id))

    # Phase 0: validate
    audio: bytes | None = None
    mime: str | None = None
    text: str | None = None
    if body.is_audio:
        audio, mime = validate_audio(body, settings.max_audio_bytes)
    else:
        text = validate_text(body.content or "", settings.max_message_chars)

    # Phase 1: authorize
    chat = get_chat_for_viewer_or_404(db, viewer_id, chat_id)
    require_access(db, viewer_id, chat.profile_id)
    profile = db.get(Profile, chat.profile_id)

    # Phase 2: upload
    audio_path = None
    if audio is not None:
        audio_path = build_audio_path(chat.id, mime)
        try:
            storage.upload_object(audio_path, audio, content_type=mime)
        except StorageError as e:
            logger.error("audio_upload_failed", storage_code=e.code)
            raise ApiError(ApiErrorCode.E_STORAGE_ERROR, "Failed to store audio") from e
        content = storage.public_url(audio_path)
        message_type = MessageType.audio.value
    else:
        content = text
        message_type = MessageType.text.value

    # Phase 3: persist
    try:
        with transaction(db):
            message = insert_message(
                db,
                chat.id,
                sender_type=SenderType.user.value,
                message_type=message_type,
                content=content,
            )
    except Exception:
        if audio_path is not None:
            _discard_upload(storage, audio_path)
        raise
    out = message_to_out(message)
    publish_message_inserted(broker, chat, out)

    logger.info(
        "message_sent",
        **safe_kv(
            message_id=str(out.id),
            seq=out.seq,
            message_type=message_type,
            message_chars=len(text or ""),
            audio_bytes=len(audio or b""),
        ),
    )

    # Phase 4: relay
    relay = RelayRequest(
        webhook_url=profile.webhook_url,
        chat_id=chat.id,
        user_id=viewer_id,
        character_name=profile.name,
        character_personality=profile.personality,
        message_type=message_type,
        text=text,
        audio=audio,
        audio_type=mime,
        audio_filename=audio_path.rsplit("/", 1)[1] if audio_path else "audio.webm",
    )
    dispatcher.dispatch(
        f"relay:{out.id}", relay_to_webhook, http_client, relay, settings.webhook_timeout_s
    )

    return out


def _discard_upload(storage: StorageClientBase, path: str) -> None:
    try:
        storage.delete_object(path)
    except StorageError as e:
        logger.error("audio_cleanup_failed", storage_code=e.code)

