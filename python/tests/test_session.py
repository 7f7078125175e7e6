"""Tests for the chat session controller.

Covers:
- Initial load, feed hand-off and the fallback poller
- New AI message side effects (sound, suppressed notification)
- Send gating and draft handling
- Overlapping resyncs and teardown
"""

import asyncio
from uuid import uuid4

import pytest

from companion.client.api import ApiClientError, SseFrame
from companion.client.audio import AudioClip
from companion.client.feed import FeedState
from companion.client.notifications import (
    FocusState,
    NotificationPermission,
    Notifier,
    SettingsStore,
)
from companion.client.session import ChatSession, SendRejectedError
from companion.client.timeline import ScrollAction
from companion.realtime import TYPING_START, TYPING_STOP
from companion.schemas.chat import ProfileSummary
from tests.helpers import eventually
from tests.support.fake_api import END_OF_STREAM, FakeApi
from tests.support.fake_sinks import RecordingNotificationSink, RecordingSoundSink


class Harness:
    def __init__(self, tmp_path, *, has_access=True, window_focused=True):
        self.api = FakeApi(uuid4(), has_access=has_access)
        self.profile = ProfileSummary(id=uuid4(), name="Lena")
        self.sound = RecordingSoundSink()
        self.popups = RecordingNotificationSink()
        self.notifier = Notifier(
            SettingsStore(tmp_path / "notifications.json"),
            self.sound,
            self.popups,
            permission=NotificationPermission.GRANTED,
        )
        self.focus = FocusState(window_focused=window_focused)
        self.updates = []

    def session(self, **kwargs) -> ChatSession:
        kwargs.setdefault("poll_interval", 0.02)
        kwargs.setdefault("live_timeout_s", 5.0)
        kwargs.setdefault("profile", self.profile)
        return ChatSession(
            self.api,
            self.api.chat_id,
            notifier=self.notifier,
            focus=self.focus,
            on_update=self.updates.append,
            **kwargs,
        )


@pytest.fixture
def h(tmp_path):
    return Harness(tmp_path)


class TestStart:
    @pytest.mark.asyncio
    async def test_loads_history_without_side_effects(self, h):
        h.api.insert("earlier", "user")
        h.api.insert("reply", "ai")
        session = h.session()

        await session.start()

        assert [m.content for m in session.messages] == ["earlier", "reply"]
        assert h.updates[0].scroll == ScrollAction.INSTANT
        assert h.sound.played == []
        assert h.focus.current_chat_id == h.api.chat_id
        assert session.access.has_access
        await session.close()

    @pytest.mark.asyncio
    async def test_poller_runs_until_feed_is_live(self, h):
        session = h.session(poll_interval=10)
        await session.start()
        assert session.poller.running

        h.api.go_live()
        await eventually(lambda: session.feed.is_live)

        assert not session.poller.running
        await session.close()

    @pytest.mark.asyncio
    async def test_access_check_failure_is_tolerated(self, h):
        h.api.access_error = ApiClientError("E_NETWORK", "refused")
        session = h.session()

        await session.start()

        assert session.access is None
        await session.send_text("still allowed")
        assert h.api.sent == [("text", "still allowed")]
        await session.close()

    @pytest.mark.asyncio
    async def test_history_failure_is_tolerated(self, h):
        h.api.fetch_error = ApiClientError("E_HTTP_500", "boom", 500)
        session = h.session()

        await session.start()

        assert session.messages == []
        await session.close()


class TestDelivery:
    @pytest.mark.asyncio
    async def test_feed_notification_renders_new_message(self, h):
        session = h.session()
        await session.start()
        h.api.go_live()
        await eventually(lambda: session.feed.is_live)

        h.api.announce(h.api.insert("hi there", "ai"))
        await eventually(lambda: len(session.messages) == 1)

        assert h.updates[-1].new_ai_message.content == "hi there"
        assert len(h.sound.played) == 1
        assert h.popups.shown == []
        await session.close()

    @pytest.mark.asyncio
    async def test_poller_delivers_when_feed_never_goes_live(self, h):
        session = h.session(poll_interval=0.05)
        await session.start()
        assert session.feed.state == FeedState.CONNECTING

        h.api.insert("arrived by webhook", "ai")
        await eventually(lambda: len(session.messages) == 1, timeout=0.5)

        assert session.messages[0].content == "arrived by webhook"
        assert len(h.sound.played) == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_feed_failure_resumes_polling(self, h):
        session = h.session(poll_interval=0.02)
        await session.start()
        h.api.go_live()
        await eventually(lambda: session.feed.is_live)
        assert not session.poller.running

        h.api.push("messages", END_OF_STREAM)
        await eventually(lambda: session.feed.state == FeedState.ERROR)
        assert session.poller.running

        h.api.insert("late", "ai")
        await eventually(lambda: len(session.messages) == 1)
        await session.close()

    @pytest.mark.asyncio
    async def test_notification_when_window_unfocused(self, tmp_path):
        h = Harness(tmp_path, window_focused=False)
        session = h.session()
        await session.start()

        h.api.insert("ping", "ai")
        await session.resync()

        assert h.popups.shown == [
            {"title": "New message from Lena", "body": "ping", "tag": f"chat-{h.api.chat_id}"}
        ]
        await session.close()

    @pytest.mark.asyncio
    async def test_duplicate_triggers_render_once(self, h):
        session = h.session()
        await session.start()
        h.api.insert("once", "ai")

        await asyncio.gather(session.resync(), session.resync(), session.resync())

        assert len(session.messages) == 1
        assert len(h.sound.played) == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_typing_indicator(self, h):
        session = h.session()
        await session.start()

        h.api.push("typing", SseFrame(TYPING_START, {"chatId": str(h.api.chat_id)}))
        await eventually(lambda: session.typing)

        h.api.insert("done typing", "ai")
        await session.resync()
        assert not session.typing
        await session.close()

    @pytest.mark.asyncio
    async def test_typing_changes_reach_host(self, h):
        changes = []
        session = h.session(on_typing=changes.append)
        await session.start()

        h.api.push("typing", SseFrame(TYPING_START, {"chatId": str(h.api.chat_id)}))
        h.api.push("typing", SseFrame(TYPING_STOP, {"chatId": str(h.api.chat_id)}))
        await eventually(lambda: len(changes) == 2)

        assert changes == [True, False]
        assert not session.typing
        await session.close()


class GatedApi(FakeApi):
    """Each fetch returns the list as it was when the call started, once released."""

    def __init__(self, chat_id):
        super().__init__(chat_id)
        self.gates: list[asyncio.Event] = []

    async def fetch_messages(self, chat_id):
        snapshot = list(self.messages)
        gate = asyncio.Event()
        self.gates.append(gate)
        await gate.wait()
        return snapshot


class TestOverlappingResyncs:
    @pytest.mark.asyncio
    async def test_stale_result_is_dropped(self, h):
        h.api = GatedApi(h.api.chat_id)
        session = h.session()

        h.api.insert("first", "user")
        older = asyncio.create_task(session.resync())
        await eventually(lambda: len(h.api.gates) == 1)
        h.api.insert("second", "ai")
        newer = asyncio.create_task(session.resync())
        await eventually(lambda: len(h.api.gates) == 2)

        h.api.gates[1].set()
        await newer
        h.api.gates[0].set()
        await older

        assert [m.content for m in session.messages] == ["first", "second"]
        assert len(h.updates) == 1


class TestSend:
    @pytest.mark.asyncio
    async def test_sends_draft_and_clears_it(self, h):
        session = h.session()
        await session.start()
        session.draft = "  hello  "

        message = await session.send_text()

        assert message.content == "hello"
        assert h.api.sent == [("text", "hello")]
        assert session.draft == ""
        assert [m.content for m in session.messages] == ["hello"]
        assert not session.sending
        await session.close()

    @pytest.mark.asyncio
    async def test_whitespace_rejected_locally(self, h):
        session = h.session()
        await session.start()

        with pytest.raises(SendRejectedError) as exc_info:
            await session.send_text("   ")

        assert exc_info.value.reason == "empty"
        assert h.api.sent == []
        await session.close()

    @pytest.mark.asyncio
    async def test_refused_without_access(self, tmp_path):
        h = Harness(tmp_path, has_access=False)
        session = h.session()
        await session.start()

        with pytest.raises(SendRejectedError) as exc_info:
            await session.send_text("hi")

        assert exc_info.value.reason == "access_denied"
        assert h.api.sent == []
        await session.close()

    @pytest.mark.asyncio
    async def test_grant_gained_while_open_is_honored(self, tmp_path):
        h = Harness(tmp_path, has_access=False)
        session = h.session()
        await session.start()
        assert not session.access.has_access

        h.api.has_access = True
        await session.send_text("hi")

        assert h.api.sent == [("text", "hi")]
        assert session.access.has_access
        await session.close()

    @pytest.mark.asyncio
    async def test_grant_lost_while_open_is_refused(self, h):
        session = h.session()
        await session.start()

        h.api.has_access = False
        with pytest.raises(SendRejectedError) as exc_info:
            await session.send_audio(AudioClip(b"webm-bytes", "audio/webm", 1.0))

        assert exc_info.value.reason == "access_denied"
        assert h.api.sent == []
        assert not session.sending
        await session.close()

    @pytest.mark.asyncio
    async def test_refused_without_profile(self, h):
        session = h.session(profile=None)
        await session.start()

        with pytest.raises(SendRejectedError) as exc_info:
            await session.send_text("hi")
        assert exc_info.value.reason == "no_profile"
        await session.close()

    @pytest.mark.asyncio
    async def test_one_send_at_a_time(self, h):
        release = asyncio.Event()
        original = h.api.send_text

        async def slow_send(chat_id, content):
            await release.wait()
            return await original(chat_id, content)

        h.api.send_text = slow_send
        session = h.session()
        await session.start()

        first = asyncio.create_task(session.send_text("one"))
        await eventually(lambda: session.sending)
        with pytest.raises(SendRejectedError) as exc_info:
            await session.send_text("two")
        assert exc_info.value.reason == "in_flight"

        release.set()
        await first
        assert h.api.sent == [("text", "one")]
        await session.close()

    @pytest.mark.asyncio
    async def test_server_rejection_keeps_draft(self, h):
        h.api.send_error = ApiClientError("E_ACCESS_DENIED", "No access", 403)
        session = h.session()
        await session.start()
        session.draft = "keep me"

        with pytest.raises(ApiClientError):
            await session.send_text()

        assert session.draft == "keep me"
        assert not session.sending
        await session.close()

    @pytest.mark.asyncio
    async def test_send_audio(self, h):
        session = h.session()
        await session.start()
        clip = AudioClip(b"webm-bytes", "audio/webm;codecs=opus", 1.5)

        await session.send_audio(clip)

        assert h.api.sent == [("audio", b"webm-bytes", "audio/webm;codecs=opus")]
        assert session.messages[-1].message_type == "audio"
        await session.close()


class TestClose:
    @pytest.mark.asyncio
    async def test_teardown(self, h):
        session = h.session()
        await session.start()

        await session.close()

        assert not session.poller.running
        assert session.feed.state == FeedState.CLOSED
        assert h.focus.current_chat_id is None

        h.api.insert("after close", "ai")
        fetches = h.api.fetch_calls
        await session.resync()
        assert h.api.fetch_calls == fetches
        assert session.messages == []

    @pytest.mark.asyncio
    async def test_send_after_close_rejected(self, h):
        session = h.session()
        await session.start()
        await session.close()

        with pytest.raises(SendRejectedError) as exc_info:
            await session.send_text("hi")
        assert exc_info.value.reason == "closed"
