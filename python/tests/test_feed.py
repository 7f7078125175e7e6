"""Tests for the change feed subscription and typing channel."""

import asyncio
from uuid import uuid4

import pytest

from companion.client.api import ApiClientError, SseFrame
from companion.client.feed import ChangeFeedSubscription, FeedState, TypingChannel
from companion.realtime import TYPING_START, TYPING_STOP
from tests.helpers import eventually
from tests.support.fake_api import END_OF_STREAM, FakeApi


@pytest.fixture
def api():
    return FakeApi(uuid4())


class Recorder:
    def __init__(self):
        self.changes = 0
        self.states: list[FeedState] = []

    async def on_change(self):
        self.changes += 1

    def on_state(self, state: FeedState):
        self.states.append(state)


def _feed(api, recorder, **kwargs) -> ChangeFeedSubscription:
    return ChangeFeedSubscription(
        api, api.chat_id, recorder.on_change, recorder.on_state, **kwargs
    )


class TestChangeFeed:
    @pytest.mark.asyncio
    async def test_live_after_status_frame(self, api):
        recorder = Recorder()
        feed = _feed(api, recorder)
        feed.start()
        assert feed.state == FeedState.CONNECTING

        api.go_live()
        await eventually(lambda: feed.is_live)

        assert recorder.states == [FeedState.CONNECTING, FeedState.LIVE]
        await feed.close()

    @pytest.mark.asyncio
    async def test_insert_triggers_change(self, api):
        recorder = Recorder()
        feed = _feed(api, recorder)
        feed.start()
        api.go_live()

        api.announce(api.insert("hi"))
        api.announce(api.insert("again"))
        await eventually(lambda: recorder.changes == 2)

        await feed.close()

    @pytest.mark.asyncio
    async def test_other_frames_ignored(self, api):
        recorder = Recorder()
        feed = _feed(api, recorder)
        feed.start()
        api.go_live()
        api.push("messages", SseFrame("something_else", {}))
        api.announce(api.insert())
        await eventually(lambda: recorder.changes == 1)

        await feed.close()

    @pytest.mark.asyncio
    async def test_stream_end_is_error(self, api):
        recorder = Recorder()
        feed = _feed(api, recorder)
        feed.start()
        api.go_live()
        api.push("messages", END_OF_STREAM)

        await eventually(lambda: feed.state == FeedState.ERROR)
        await feed.close()

    @pytest.mark.asyncio
    async def test_stream_failure_is_error(self, api):
        recorder = Recorder()
        feed = _feed(api, recorder)
        feed.start()
        api.push("messages", ApiClientError("E_NETWORK", "refused"))

        await eventually(lambda: feed.state == FeedState.ERROR)
        assert FeedState.LIVE not in recorder.states
        await feed.close()

    @pytest.mark.asyncio
    async def test_times_out_without_status(self, api):
        recorder = Recorder()
        feed = _feed(api, recorder, live_timeout_s=0.02)
        feed.start()

        await eventually(lambda: feed.state == FeedState.TIMED_OUT)

        api.go_live()
        api.announce(api.insert())
        await asyncio.sleep(0.02)
        assert api.channel("messages").qsize() == 2
        assert feed.state == FeedState.TIMED_OUT
        assert recorder.changes == 0
        await feed.close()

    @pytest.mark.asyncio
    async def test_handler_failure_keeps_feed_running(self, api):
        calls = []

        async def on_change():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("render failed")

        feed = ChangeFeedSubscription(api, api.chat_id, on_change)
        feed.start()
        api.go_live()
        api.announce(api.insert())
        api.announce(api.insert())

        await eventually(lambda: len(calls) == 2)
        assert feed.is_live
        await feed.close()

    @pytest.mark.asyncio
    async def test_close(self, api):
        recorder = Recorder()
        feed = _feed(api, recorder)
        feed.start()
        api.go_live()
        await eventually(lambda: feed.is_live)

        await feed.close()

        assert feed.state == FeedState.CLOSED
        assert recorder.states[-1] == FeedState.CLOSED


class TestTypingChannel:
    @pytest.mark.asyncio
    async def test_start_and_stop_frames(self, api):
        seen = []
        channel = TypingChannel(api, api.chat_id, seen.append)
        channel.start()

        data = {"chatId": str(api.chat_id), "womanId": str(uuid4())}
        api.push("typing", SseFrame("status", {"state": "live"}))
        api.push("typing", SseFrame(TYPING_START, data))
        api.push("typing", SseFrame(TYPING_STOP, data))

        await eventually(lambda: seen == [True, False])
        assert api.opened == ["typing"]
        await channel.close()

    @pytest.mark.asyncio
    async def test_failure_is_absorbed(self, api):
        seen = []
        channel = TypingChannel(api, api.chat_id, seen.append)
        channel.start()
        api.push("typing", ApiClientError("E_NETWORK", "refused"))

        await eventually(lambda: channel._task.done())
        assert seen == []
        await channel.close()
