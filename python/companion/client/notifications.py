"""Notification side effects: sound cue, system notifications, settings.

All state is held by explicit objects handed to the chat session at
construction (SettingsStore, FocusState, Notifier); nothing here is a
module-level singleton. Sinks are protocols so the host environment
decides how a tone is played or a notification is shown.

Rules:
- A new AI message in the open, focused chat never raises a notification
- Sound and notifications are best effort: sink failures are logged only
"""

import asyncio
import io
import math
import struct
import wave
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol
from uuid import UUID

from pydantic import BaseModel, ValidationError

from companion.client.api import CompanionApi
from companion.logging import get_logger
from companion.realtime import MESSAGE_INSERTED
from companion.schemas.chat import MessageOut

logger = get_logger(__name__)

AUDIO_MESSAGE_PREVIEW = "Audio message"


class NotificationSettings(BaseModel):
    desktop_notifications: bool = True
    push_notifications_for_messages: bool = True
    sound_enabled: bool = True


class SettingsStore:
    """NotificationSettings persisted as a JSON file."""

    def __init__(self, path: Path | str):
        self._path = Path(path)
        self._settings = self._load()

    @property
    def settings(self) -> NotificationSettings:
        return self._settings

    def _load(self) -> NotificationSettings:
        if not self._path.exists():
            return NotificationSettings()
        try:
            return NotificationSettings.model_validate_json(self._path.read_text())
        except (OSError, ValidationError) as exc:
            logger.warning(
                "notification_settings_unreadable",
                path=str(self._path),
                error_type=type(exc).__name__,
            )
            return NotificationSettings()

    def update(self, **changes: bool) -> NotificationSettings:
        """Apply changes and write the merged settings back to disk."""
        merged = self._settings.model_dump() | changes
        self._settings = NotificationSettings.model_validate(merged)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(self._settings.model_dump_json(indent=2))
        return self._settings


def synthesize_tone(
    frequency_hz: float = 880.0,
    duration_s: float = 0.2,
    sample_rate: int = 44100,
    volume: float = 0.3,
) -> bytes:
    """Render a short sine tone as 16-bit mono WAV bytes.

    A linear fade in and out over the first and last 10 ms keeps the tone
    from clicking.
    """
    n_samples = int(sample_rate * duration_s)
    fade = max(1, int(sample_rate * 0.01))
    frames = bytearray()
    for i in range(n_samples):
        envelope = min(1.0, i / fade, (n_samples - 1 - i) / fade)
        sample = volume * envelope * math.sin(2 * math.pi * frequency_hz * i / sample_rate)
        frames += struct.pack("<h", int(sample * 32767))

    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(bytes(frames))
    return buffer.getvalue()


class NotificationPermission(str, Enum):
    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"


class SoundSink(Protocol):
    def play(self, wav: bytes) -> None: ...


class NotificationSink(Protocol):
    def request_permission(self) -> NotificationPermission: ...

    def show(self, title: str, *, body: str, tag: str) -> None: ...


@dataclass
class FocusState:
    """What the user is looking at right now."""

    current_chat_id: UUID | None = None
    window_focused: bool = True

    def is_viewing(self, chat_id: UUID) -> bool:
        return self.window_focused and self.current_chat_id == chat_id


class Notifier:
    def __init__(
        self,
        settings_store: SettingsStore,
        sound_sink: SoundSink,
        notification_sink: NotificationSink,
        permission: NotificationPermission = NotificationPermission.DEFAULT,
    ):
        self._settings_store = settings_store
        self._sound_sink = sound_sink
        self._notification_sink = notification_sink
        self.permission = permission
        self._tone: bytes | None = None

    def request_permission(self) -> NotificationPermission:
        if self.permission == NotificationPermission.DEFAULT:
            self.permission = self._notification_sink.request_permission()
        return self.permission

    def play_tone(self) -> bool:
        if not self._settings_store.settings.sound_enabled:
            return False
        if self._tone is None:
            self._tone = synthesize_tone()
        try:
            self._sound_sink.play(self._tone)
        except Exception as exc:
            logger.warning("notification_sound_failed", error_type=type(exc).__name__)
            return False
        return True

    def notify_new_message(
        self,
        chat_id: UUID,
        message: MessageOut,
        focus: FocusState,
        sender_name: str | None = None,
    ) -> bool:
        """Raise a system notification for an AI message unless the user is looking at it.

        Returns:
            True if a notification was shown.
        """
        if focus.is_viewing(chat_id):
            return False

        settings = self._settings_store.settings
        if not (settings.desktop_notifications and settings.push_notifications_for_messages):
            return False
        if self.permission != NotificationPermission.GRANTED:
            return False

        body = AUDIO_MESSAGE_PREVIEW if message.message_type == "audio" else message.content
        try:
            self._notification_sink.show(
                f"New message from {sender_name or 'Unknown'}",
                body=body,
                tag=f"chat-{chat_id}",
            )
        except Exception as exc:
            logger.warning("notification_show_failed", error_type=type(exc).__name__)
            return False
        return True


class GlobalMessageWatcher:
    """Notifies about AI messages arriving in chats other than the open one.

    The open chat is left to its ChatSession, which sees the same message
    through its own resync.
    """

    def __init__(
        self,
        api: CompanionApi,
        notifier: Notifier,
        focus: FocusState,
        sender_names: dict[UUID, str] | None = None,
    ):
        self._api = api
        self._notifier = notifier
        self._focus = focus
        self._sender_names = sender_names if sender_names is not None else {}
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

    def handle_message(self, message: MessageOut) -> bool:
        if message.sender_type != "ai":
            return False
        if message.chat_id == self._focus.current_chat_id:
            return False
        return self._notifier.notify_new_message(
            message.chat_id,
            message,
            self._focus,
            sender_name=self._sender_names.get(message.chat_id),
        )

    async def _consume(self) -> None:
        try:
            async for frame in self._api.my_events():
                if frame.event != MESSAGE_INSERTED:
                    continue
                try:
                    message = MessageOut.model_validate(frame.data)
                except ValidationError:
                    logger.warning("global_watcher_bad_frame")
                    continue
                self.handle_message(message)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("global_watcher_failed", error_type=type(exc).__name__)
