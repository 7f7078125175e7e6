"""Change feed subscription and typing channel for one open chat.

The message feed is a change trigger only: a message_inserted frame makes
the session re-read the whole list, the frame's payload is never rendered.

State machine of ChangeFeedSubscription:

    CONNECTING --status: live--> LIVE
    CONNECTING --window expires--> TIMED_OUT
    CONNECTING | LIVE --stream fails or ends--> ERROR
    any --close()--> CLOSED

There is no reconnect. Anything other than LIVE hands delivery to the
fallback poller; reopening the chat builds a new subscription.
"""

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from uuid import UUID

from companion.client.api import CompanionApi
from companion.logging import get_logger
from companion.realtime import MESSAGE_INSERTED, TYPING_START, TYPING_STOP

logger = get_logger(__name__)

# Seconds to wait for the server's status: live frame
DEFAULT_LIVE_TIMEOUT_S = 10.0


class FeedState(str, Enum):
    CONNECTING = "connecting"
    LIVE = "live"
    ERROR = "error"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


class ChangeFeedSubscription:
    """Message insert notifications for one chat."""

    def __init__(
        self,
        api: CompanionApi,
        chat_id: UUID,
        on_change: Callable[[], Awaitable[None]],
        on_state: Callable[[FeedState], None] | None = None,
        *,
        live_timeout_s: float = DEFAULT_LIVE_TIMEOUT_S,
    ):
        self._api = api
        self._chat_id = chat_id
        self._on_change = on_change
        self._on_state = on_state
        self._live_timeout_s = live_timeout_s
        self._state = FeedState.CONNECTING
        self._task: asyncio.Task | None = None
        self._watchdog: asyncio.TimerHandle | None = None

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def is_live(self) -> bool:
        return self._state == FeedState.LIVE

    def start(self) -> None:
        if self._task is not None:
            return
        self._set_state(FeedState.CONNECTING)
        loop = asyncio.get_running_loop()
        self._watchdog = loop.call_later(self._live_timeout_s, self._on_live_timeout)
        self._task = loop.create_task(self._consume())

    async def close(self) -> None:
        self._cancel_watchdog()
        self._set_state(FeedState.CLOSED)
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _consume(self) -> None:
        try:
            async for frame in self._api.chat_events(self._chat_id, "messages"):
                if frame.event == "status" and frame.data.get("state") == "live":
                    self._cancel_watchdog()
                    self._set_state(FeedState.LIVE)
                elif frame.event == MESSAGE_INSERTED:
                    await self._notify_change()
            logger.warning("feed_stream_ended", chat_id=str(self._chat_id))
            self._fail(FeedState.ERROR)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "feed_stream_failed",
                chat_id=str(self._chat_id),
                error_type=type(exc).__name__,
            )
            self._fail(FeedState.ERROR)

    async def _notify_change(self) -> None:
        try:
            await self._on_change()
        except Exception:
            logger.exception("feed_change_handler_failed", chat_id=str(self._chat_id))

    def _on_live_timeout(self) -> None:
        self._watchdog = None
        if self._state != FeedState.CONNECTING:
            return
        logger.warning(
            "feed_live_timeout",
            chat_id=str(self._chat_id),
            timeout_s=self._live_timeout_s,
        )
        self._fail(FeedState.TIMED_OUT)
        if self._task is not None:
            self._task.cancel()

    def _fail(self, state: FeedState) -> None:
        self._cancel_watchdog()
        if self._state in (FeedState.CLOSED, FeedState.TIMED_OUT):
            return
        self._set_state(state)

    def _cancel_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _set_state(self, state: FeedState) -> None:
        if state == self._state and self._task is not None:
            return
        self._state = state
        logger.info("feed_state_changed", chat_id=str(self._chat_id), state=state.value)
        if self._on_state is not None:
            self._on_state(state)


class TypingChannel:
    """Typing start/stop broadcasts for one chat. Best effort."""

    def __init__(
        self,
        api: CompanionApi,
        chat_id: UUID,
        on_typing: Callable[[bool], None],
    ):
        self._api = api
        self._chat_id = chat_id
        self._on_typing = on_typing
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._consume())

    async def close(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _consume(self) -> None:
        try:
            async for frame in self._api.chat_events(self._chat_id, "typing"):
                if frame.event == TYPING_START:
                    self._on_typing(True)
                elif frame.event == TYPING_STOP:
                    self._on_typing(False)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "typing_channel_failed",
                chat_id=str(self._chat_id),
                error_type=type(exc).__name__,
            )
