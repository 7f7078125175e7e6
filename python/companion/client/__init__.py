"""Client side of the chat: API access, change feed, reconciliation and side effects."""

from companion.client.api import ApiClientError, CompanionApi, SseFrame, parse_sse_lines
from companion.client.audio import (
    AudioClip,
    AudioConstraints,
    AudioRecorder,
    MicrophonePermissionError,
    RecorderState,
    RecorderStateError,
)
from companion.client.feed import ChangeFeedSubscription, FeedState, TypingChannel
from companion.client.notifications import (
    FocusState,
    GlobalMessageWatcher,
    NotificationPermission,
    NotificationSettings,
    Notifier,
    SettingsStore,
    synthesize_tone,
)
from companion.client.poller import FallbackPoller
from companion.client.session import ChatSession, SendRejectedError
from companion.client.timeline import MessageTimeline, ScrollAction, TimelineUpdate

__all__ = [
    "ApiClientError",
    "AudioClip",
    "AudioConstraints",
    "AudioRecorder",
    "ChangeFeedSubscription",
    "ChatSession",
    "CompanionApi",
    "FallbackPoller",
    "FeedState",
    "FocusState",
    "GlobalMessageWatcher",
    "MessageTimeline",
    "MicrophonePermissionError",
    "NotificationPermission",
    "NotificationSettings",
    "Notifier",
    "RecorderState",
    "RecorderStateError",
    "ScrollAction",
    "SendRejectedError",
    "SettingsStore",
    "SseFrame",
    "TimelineUpdate",
    "TypingChannel",
    "parse_sse_lines",
    "synthesize_tone",
]
