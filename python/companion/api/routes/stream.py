"""Change feed routes under /stream/* (Server-Sent Events).

- GET /stream/chats/{chat_id}/events?channel=messages|typing
- GET /stream/me/events   AI messages across all of the viewer's chats

Frame sequence:
    event: status            data: {"state": "live"}   once subscribed
    event: message_inserted  data: <message>
    event: typing_start      data: {"chatId", "womanId"}
    event: typing_stop       data: {"chatId", "womanId"}
    : keepalive                                         every STREAM_KEEPALIVE_S

The feed is a change notification channel, not a log: events published
while no stream is connected are gone, and clients re-read the message list
from GET /chats/{chat_id}/messages.
"""

import json
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Annotated, Any, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from companion.api.deps import get_broker, session_factory_for
from companion.auth.middleware import Viewer, get_viewer
from companion.config import get_settings
from companion.logging import get_logger
from companion.realtime import (
    Broker,
    chat_messages_topic,
    chat_typing_topic,
    user_messages_topic,
)
from companion.services.chats import get_chat_for_viewer_or_404

logger = get_logger(__name__)

router = APIRouter(prefix="/stream", tags=["streaming"])

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "X-Accel-Buffering": "no",
}


def format_sse_event(event: str, data: dict) -> str:
    """Format a single SSE frame."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def feed_events(
    broker: Broker,
    topic: str,
    *,
    keepalive_s: float,
    is_disconnected: Callable[[], Awaitable[bool]],
    event_filter: Callable[[dict[str, Any]], bool] | None = None,
) -> AsyncIterator[str]:
    """Yield SSE frames for one topic until the client disconnects.

    The status frame is sent only after the broker subscription exists, so
    a client that has seen it will not miss later publishes.
    """
    async with broker.subscribe(topic) as subscription:
        logger.info("feed_subscribed", topic=topic)
        yield format_sse_event("status", {"state": "live"})

        try:
            while not await is_disconnected():
                event = await subscription.next_event(timeout=keepalive_s)
                if event is None:
                    yield ": keepalive\n\n"
                    continue
                if event_filter is not None and not event_filter(event):
                    continue
                yield format_sse_event(event["type"], event["data"])
        finally:
            logger.info("feed_closed", topic=topic)


def _is_ai_message(event: dict[str, Any]) -> bool:
    return event.get("data", {}).get("sender_type") == "ai"


def _ensure_chat_owner(request: Request, viewer_id: UUID, chat_id: UUID) -> None:
    db = session_factory_for(request)()
    try:
        get_chat_for_viewer_or_404(db, viewer_id, chat_id)
    finally:
        db.close()


@router.get("/chats/{chat_id}/events")
async def stream_chat_events(
    chat_id: UUID,
    request: Request,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    broker: Annotated[Broker, Depends(get_broker)],
    channel: Literal["messages", "typing"] = Query(default="messages"),
) -> StreamingResponse:
    """Subscribe to one chat's message or typing notifications.

    Errors:
        E_NOT_FOUND (404): Chat does not exist or is not the viewer's.
    """
    await run_in_threadpool(_ensure_chat_owner, request, viewer.user_id, chat_id)

    topic = chat_messages_topic(chat_id) if channel == "messages" else chat_typing_topic(chat_id)
    return StreamingResponse(
        feed_events(
            broker,
            topic,
            keepalive_s=get_settings().stream_keepalive_s,
            is_disconnected=request.is_disconnected,
        ),
        media_type="text/event-stream; charset=utf-8",
        headers=SSE_HEADERS,
    )


@router.get("/me/events")
async def stream_my_events(
    request: Request,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    broker: Annotated[Broker, Depends(get_broker)],
) -> StreamingResponse:
    """Subscribe to AI messages in every chat of the viewer (for notifications)."""
    return StreamingResponse(
        feed_events(
            broker,
            user_messages_topic(viewer.user_id),
            keepalive_s=get_settings().stream_keepalive_s,
            is_disconnected=request.is_disconnected,
            event_filter=_is_ai_message,
        ),
        media_type="text/event-stream; charset=utf-8",
        headers=SSE_HEADERS,
    )
