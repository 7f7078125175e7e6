"""Outbound webhook relay to a profile's AI backend.

Called after the user's message is persisted. The relay is at-most-once and
best-effort: network errors and non-2xx answers are logged, never raised,
never retried, and never affect the stored message. The reply, if any,
arrives later through the inbound receive-message endpoint.

Wire format:
- text:  JSON {chatId, message, character: {name, personality}, user_id, messageType}
- audio: multipart form with an `audio` file part and fields chatId,
         character (JSON string), user_id, messageType
"""

import json
from dataclasses import dataclass
from uuid import UUID

import httpx

from companion.logging import get_logger
from companion.services.redact import safe_kv

logger = get_logger(__name__)


@dataclass(frozen=True)
class RelayRequest:
    """Everything needed to forward one user message to the AI backend."""

    webhook_url: str
    chat_id: UUID
    user_id: UUID
    character_name: str
    character_personality: str | None
    message_type: str  # "text" | "audio"
    text: str | None = None
    audio: bytes | None = None
    audio_type: str | None = None
    audio_filename: str = "audio.webm"

    @property
    def character(self) -> dict:
        return {"name": self.character_name, "personality": self.character_personality}


def build_text_payload(req: RelayRequest) -> dict:
    return {
        "chatId": str(req.chat_id),
        "message": req.text,
        "character": req.character,
        "user_id": str(req.user_id),
        "messageType": "text",
    }


def build_audio_form(req: RelayRequest) -> tuple[dict, dict]:
    """Return (data, files) for an httpx multipart request."""
    data = {
        "chatId": str(req.chat_id),
        "character": json.dumps(req.character),
        "user_id": str(req.user_id),
        "messageType": "audio",
    }
    files = {
        "audio": (req.audio_filename, req.audio or b"", req.audio_type or "audio/webm"),
    }
    return data, files


async def relay_to_webhook(
    client: httpx.AsyncClient, req: RelayRequest, timeout_s: float = 30.0
) -> bool:
    """POST the message to the profile's webhook.

    Returns:
        True if the webhook answered 2xx, False otherwise.
    """
    log_fields = safe_kv(
        chat_id=str(req.chat_id),
        message_type=req.message_type,
        message_chars=len(req.text or ""),
        audio_bytes=len(req.audio or b""),
    )
    logger.info("relay.started", **log_fields)

    try:
        if req.message_type == "audio":
            data, files = build_audio_form(req)
            response = await client.post(
                req.webhook_url, data=data, files=files, timeout=timeout_s
            )
        else:
            response = await client.post(
                req.webhook_url, json=build_text_payload(req), timeout=timeout_s
            )
    except httpx.HTTPError as e:
        logger.warning("relay.failed", error_type=type(e).__name__, **log_fields)
        return False

    if not response.is_success:
        logger.warning(
            "relay.rejected",
            status_code=response.status_code,
            response_chars=len(response.text),
            **log_fields,
        )
        return False

    logger.info("relay.delivered", status_code=response.status_code, **log_fields)
    return True
