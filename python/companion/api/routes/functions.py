"""Inbound webhook routes under /functions/*.

Called by a profile's AI backend, authenticated by x-api-key (not by user
JWT; the auth middleware skips this prefix).

Success body: {"success": true, "message": "..."}
Error envelope: {"error": {"code": "...", "message": "...", "request_id": "..."}}

Errors use the same envelope as every other route, so "error" is an object,
not a bare string. Callers that only want text read error.message; code is
stable and safe to branch on.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from companion.api.deps import get_broker, get_db
from companion.auth.api_key import ProfileCaller, get_profile_caller
from companion.realtime import Broker
from companion.responses import function_result
from companion.schemas.functions import ReceiveMessageRequest, SetTypingStatusRequest
from companion.services import inbound as inbound_service

router = APIRouter(prefix="/functions", tags=["functions"])


@router.post("/receive-message")
def receive_message(
    body: ReceiveMessageRequest,
    caller: Annotated[ProfileCaller, Depends(get_profile_caller)],
    db: Annotated[Session, Depends(get_db)],
    broker: Annotated[Broker, Depends(get_broker)],
) -> dict:
    """Store an AI reply in a chat of the calling profile.

    Errors:
        E_API_KEY_MISSING / E_API_KEY_INVALID (401): Key absent, unknown, or inactive.
        E_CHAT_NOT_FOUND (400): Chat missing or owned by another profile.
        E_INVALID_REQUEST (400): chatId or message missing.
    """
    inbound_service.receive_message(db, broker, caller.profile_id, body.chat_id, body.message)
    return function_result(inbound_service.RECEIVED_MESSAGE)


@router.post("/set-typing-status")
def set_typing_status(
    body: SetTypingStatusRequest,
    caller: Annotated[ProfileCaller, Depends(get_profile_caller)],
    db: Annotated[Session, Depends(get_db)],
    broker: Annotated[Broker, Depends(get_broker)],
) -> dict:
    """Broadcast that the profile started or stopped typing in a chat.

    Errors:
        E_API_KEY_MISSING / E_API_KEY_INVALID (401): Key absent, unknown, or inactive.
        E_CHAT_NOT_FOUND (400): Chat missing or owned by another profile.
        E_INVALID_REQUEST (400): chatId missing or isTyping not a boolean.
    """
    message = inbound_service.set_typing_status(
        db, broker, caller.profile_id, body.chat_id, body.is_typing
    )
    return function_result(message)
