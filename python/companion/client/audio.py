"""Voice message recorder.

States:

    IDLE --start()--> RECORDING --stop()--> REVIEWING --confirm()--> IDLE
                          |                     |
                          +------cancel()-------+-----> IDLE

A clip is only handed out by confirm(); sending it ends the review.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from companion.logging import get_logger

logger = get_logger(__name__)

DEFAULT_RECORDING_MIME = "audio/webm;codecs=opus"


@dataclass(frozen=True)
class AudioConstraints:
    channel_count: int = 1
    sample_rate: int = 44100
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True


class RecorderState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    REVIEWING = "reviewing"


class MicrophonePermissionError(Exception):
    """Microphone access was refused or no input device is available."""


class RecorderStateError(Exception):
    """Operation not allowed in the recorder's current state."""


@dataclass(frozen=True)
class AudioClip:
    data: bytes
    mime_type: str
    duration_s: float

    @property
    def size(self) -> int:
        return len(self.data)


class Capture(Protocol):
    """A running capture on the microphone."""

    mime_type: str

    async def finish(self) -> bytes:
        """Stop capturing, release the device, and return the encoded recording."""
        ...


class Microphone(Protocol):
    async def open(self, constraints: AudioConstraints) -> Capture:
        """Start capturing.

        Raises:
            PermissionError: If access to the device is denied.
        """
        ...


class AudioRecorder:
    def __init__(
        self,
        microphone: Microphone,
        constraints: AudioConstraints | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._microphone = microphone
        self.constraints = constraints or AudioConstraints()
        self._clock = clock
        self.state = RecorderState.IDLE
        self._capture: Capture | None = None
        self._started_at = 0.0
        self._clip: AudioClip | None = None

    @property
    def clip(self) -> AudioClip | None:
        return self._clip

    async def start(self) -> None:
        """Open the microphone and begin recording.

        Raises:
            MicrophonePermissionError: Access denied; the recorder stays IDLE.
            RecorderStateError: Not IDLE.
        """
        self._require(RecorderState.IDLE)
        try:
            self._capture = await self._microphone.open(self.constraints)
        except (PermissionError, OSError) as exc:
            logger.warning("microphone_unavailable", error_type=type(exc).__name__)
            raise MicrophonePermissionError(
                "Microphone access failed. Please allow microphone access."
            ) from exc
        self._started_at = self._clock()
        self.state = RecorderState.RECORDING

    async def stop(self) -> AudioClip:
        """Finish recording and hold the clip for review."""
        self._require(RecorderState.RECORDING)
        capture, self._capture = self._capture, None
        data = await capture.finish()
        self._clip = AudioClip(
            data=data,
            mime_type=capture.mime_type or DEFAULT_RECORDING_MIME,
            duration_s=self._clock() - self._started_at,
        )
        self.state = RecorderState.REVIEWING
        logger.info("audio_recorded", audio_bytes=len(data))
        return self._clip

    async def cancel(self) -> None:
        """Discard the recording in progress or under review."""
        if self.state == RecorderState.RECORDING:
            capture, self._capture = self._capture, None
            await capture.finish()
        self._clip = None
        self.state = RecorderState.IDLE

    def confirm(self) -> AudioClip:
        """Hand out the reviewed clip for sending and return to IDLE."""
        self._require(RecorderState.REVIEWING)
        clip, self._clip = self._clip, None
        self.state = RecorderState.IDLE
        return clip

    def _require(self, state: RecorderState) -> None:
        if self.state != state:
            raise RecorderStateError(f"Recorder is {self.state.value}, expected {state.value}")
