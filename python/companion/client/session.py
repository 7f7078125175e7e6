"""Chat session: the controller behind one open chat view.

Every path that can change what is shown funnels into resync():
- a message_inserted frame on the change feed
- a fallback poller tick (only while the feed is not live)
- completion of a send

resync() re-reads the full history and hands it to the timeline, so feed
and poll updates can never disagree on order or duplicate a message.
Overlapping resyncs resolve as last-started-wins.

Sends are not optimistic: the user's own message appears through resync
like any other. Access is re-checked before every send, so a grant that
starts while the chat is open takes effect on the next send.
"""

from collections.abc import Callable
from uuid import UUID

from companion.client.api import ApiClientError, CompanionApi
from companion.client.audio import AudioClip
from companion.client.feed import (
    DEFAULT_LIVE_TIMEOUT_S,
    ChangeFeedSubscription,
    FeedState,
    TypingChannel,
)
from companion.client.notifications import FocusState, Notifier
from companion.client.poller import DEFAULT_POLL_INTERVAL_S, FallbackPoller
from companion.client.timeline import MessageTimeline, TimelineUpdate
from companion.logging import get_logger
from companion.schemas.chat import AccessOut, MessageOut, ProfileSummary

logger = get_logger(__name__)


class SendRejectedError(Exception):
    """A send refused locally, before any network call."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ChatSession:
    def __init__(
        self,
        api: CompanionApi,
        chat_id: UUID,
        profile: ProfileSummary | None,
        notifier: Notifier,
        focus: FocusState,
        *,
        on_update: Callable[[TimelineUpdate], None] | None = None,
        on_typing: Callable[[bool], None] | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_S,
        live_timeout_s: float = DEFAULT_LIVE_TIMEOUT_S,
        timeline: MessageTimeline | None = None,
    ):
        self.api = api
        self.chat_id = chat_id
        self.profile = profile
        self.notifier = notifier
        self.focus = focus
        self.timeline = timeline or MessageTimeline()
        self.access: AccessOut | None = None
        self.draft = ""
        self._on_update = on_update
        self._on_typing = on_typing
        self._sending = False
        self._closed = False
        self._resync_started = 0
        self._resync_applied = 0

        self.feed = ChangeFeedSubscription(
            api,
            chat_id,
            on_change=self.resync,
            on_state=self._on_feed_state,
            live_timeout_s=live_timeout_s,
        )
        self.typing_channel = TypingChannel(api, chat_id, on_typing=self._typing_changed)
        self.poller = FallbackPoller(self.resync, interval=poll_interval)

    @property
    def messages(self) -> list[MessageOut]:
        return self.timeline.messages

    @property
    def typing(self) -> bool:
        return self.timeline.typing

    @property
    def sending(self) -> bool:
        return self._sending

    async def start(self) -> None:
        """Load history, then open the feed and typing channel.

        The poller runs from the start and is stopped once the feed reports live.
        """
        self.focus.current_chat_id = self.chat_id
        if self.profile is not None:
            try:
                self.access = await self.api.check_access(self.profile.id)
            except ApiClientError as exc:
                logger.warning("access_check_failed", code=exc.code)
        await self._resync_logged()
        if self._closed:
            return
        self.feed.start()
        self.typing_channel.start()
        if not self.feed.is_live:
            self.poller.start()

    async def resync(self) -> None:
        """Re-read the canonical history and render it."""
        if self._closed:
            return
        self._resync_started += 1
        ticket = self._resync_started

        messages = await self.api.fetch_messages(self.chat_id)

        if self._closed or ticket < self._resync_applied:
            return
        self._resync_applied = ticket
        update = self.timeline.apply(messages)

        if update.new_ai_message is not None:
            self.notifier.play_tone()
            self.notifier.notify_new_message(
                self.chat_id,
                update.new_ai_message,
                self.focus,
                sender_name=self.profile.name if self.profile else None,
            )
        if self._on_update is not None:
            self._on_update(update)

    async def send_text(self, text: str | None = None) -> MessageOut:
        """Send the given text, or the current draft.

        Raises:
            SendRejectedError: Empty text, a send in flight, no profile, or no access.
            ApiClientError: The server refused the message.
        """
        content = (self.draft if text is None else text).strip()
        if not content:
            raise SendRejectedError("empty")
        self._check_can_send()

        self._sending = True
        try:
            await self._require_access()
            message = await self.api.send_text(self.chat_id, content)
        finally:
            self._sending = False

        if not self._closed:
            self.draft = ""
            await self._resync_logged()
        return message

    async def send_audio(self, clip: AudioClip) -> MessageOut:
        """Send a confirmed recording.

        Raises:
            SendRejectedError: A send in flight, no profile, or no access.
            ApiClientError: The server refused the message.
        """
        self._check_can_send()

        self._sending = True
        try:
            await self._require_access()
            message = await self.api.send_audio(self.chat_id, clip.data, clip.mime_type)
        finally:
            self._sending = False

        if not self._closed:
            await self._resync_logged()
        return message

    async def close(self) -> None:
        """Tear down feed, typing channel and poller. Late results are dropped."""
        self._closed = True
        self.poller.stop()
        await self.feed.close()
        await self.typing_channel.close()
        if self.focus.current_chat_id == self.chat_id:
            self.focus.current_chat_id = None

    def _check_can_send(self) -> None:
        if self._closed:
            raise SendRejectedError("closed")
        if self._sending:
            raise SendRejectedError("in_flight")
        if self.profile is None:
            raise SendRejectedError("no_profile")

    async def _require_access(self) -> None:
        """Re-check the grant before a send.

        A failed check lets the send through; the server enforces access anyway.
        """
        try:
            self.access = await self.api.check_access(self.profile.id)
        except ApiClientError as exc:
            logger.warning("access_check_failed", code=exc.code)
            return
        if not self.access.has_access:
            raise SendRejectedError("access_denied")

    def _typing_changed(self, is_typing: bool) -> None:
        self.timeline.set_typing(is_typing)
        if self._on_typing is not None:
            self._on_typing(is_typing)

    async def _resync_logged(self) -> None:
        try:
            await self.resync()
        except ApiClientError as exc:
            logger.warning("resync_failed", chat_id=str(self.chat_id), code=exc.code)

    def _on_feed_state(self, state: FeedState) -> None:
        if self._closed or state == FeedState.CLOSED:
            self.poller.stop()
        elif state == FeedState.LIVE:
            self.poller.stop()
        else:
            self.poller.start()
