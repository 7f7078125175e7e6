"""Chats, messages, and access API routes.

Routes are transport-only: each calls exactly one service function.
All routes require authentication.

Response envelope: {"data": ...} or {"data": [...], "page": {...}}
Error envelope: {"error": {"code": "...", "message": "...", "request_id": "..."}}
"""

from typing import Annotated
from uuid import UUID

import httpx
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from companion.api.deps import get_broker, get_db, get_dispatcher, get_http_client, get_storage
from companion.auth.middleware import Viewer, get_viewer
from companion.realtime import Broker
from companion.responses import success_response
from companion.schemas.chat import SendMessageRequest
from companion.services import access as access_service
from companion.services import chats as chats_service
from companion.services import send_message as send_message_service
from companion.services.dispatch import BestEffortDispatcher
from companion.storage import StorageClientBase

router = APIRouter(tags=["chats"])


@router.get("/chats")
def list_chats(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """List the viewer's chats, most recent activity first."""
    chats = chats_service.list_chats(db=db, viewer_id=viewer.user_id)
    return success_response([c.model_dump(mode="json") for c in chats])


@router.post("/profiles/{profile_id}/chat")
def open_chat(
    profile_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Open (or lazily create) the viewer's chat with a profile.

    Errors:
        E_PROFILE_NOT_FOUND (404): Profile does not exist.
        E_ACCESS_DENIED (403): No subscription and no open free-access window.
    """
    chat = chats_service.open_chat(db=db, viewer_id=viewer.user_id, profile_id=profile_id)
    return success_response(chat.model_dump(mode="json"))


@router.get("/profiles/{profile_id}/access")
def get_access(
    profile_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Report whether the viewer may chat with a profile, and through which grant."""
    result = access_service.get_access(db=db, viewer_id=viewer.user_id, profile_id=profile_id)
    return success_response(result.model_dump(mode="json"))


@router.get("/chats/{chat_id}")
def get_chat(
    chat_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Get a chat by ID.

    Errors:
        E_NOT_FOUND (404): Chat does not exist or is not the viewer's.
    """
    chat = chats_service.get_chat(db=db, viewer_id=viewer.user_id, chat_id=chat_id)
    return success_response(chat.model_dump(mode="json"))


@router.get("/chats/{chat_id}/messages")
def list_messages(
    chat_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    limit: int = Query(default=50, ge=1, le=100, description="Maximum results (1-100)"),
    cursor: str | None = Query(default=None, description="Pagination cursor"),
) -> dict:
    """List messages in a chat, ordered by created_at ASC, seq ASC.

    Errors:
        E_NOT_FOUND (404): Chat does not exist or is not the viewer's.
        E_INVALID_CURSOR (400): Cursor is malformed or unparseable.
    """
    messages, page = chats_service.list_messages(
        db=db,
        viewer_id=viewer.user_id,
        chat_id=chat_id,
        limit=limit,
        cursor=cursor,
    )
    return {
        "data": [m.model_dump(mode="json") for m in messages],
        "page": page.model_dump(mode="json"),
    }


@router.post("/chats/{chat_id}/messages", status_code=201)
def send_message(
    chat_id: UUID,
    body: SendMessageRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    broker: Annotated[Broker, Depends(get_broker)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
    dispatcher: Annotated[BestEffortDispatcher, Depends(get_dispatcher)],
    http_client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> dict:
    """Send a text or audio message.

    The message is stored and broadcast before this returns. The relay to
    the profile's AI backend runs in the background; its reply arrives later
    through the change feed.

    Errors:
        E_MESSAGE_EMPTY / E_MESSAGE_TOO_LONG (400): Text payload rejected.
        E_AUDIO_INVALID / E_AUDIO_TOO_LARGE (400): Audio payload rejected.
        E_NOT_FOUND (404): Chat does not exist or is not the viewer's.
        E_ACCESS_DENIED (403): No subscription and no open free-access window.
        E_STORAGE_ERROR (500): Audio upload failed.
    """
    message = send_message_service.send_message(
        db,
        viewer.user_id,
        chat_id,
        body,
        broker=broker,
        storage=storage,
        dispatcher=dispatcher,
        http_client=http_client,
    )
    return success_response(message.model_dump(mode="json"))
