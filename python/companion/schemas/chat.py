"""Chat, message, and access Pydantic schemas.

Contains request and response models for the user-facing chat endpoints.
"""

import base64
import binascii
from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, model_validator

# Valid sender types - must match DB constraint
SENDER_TYPES = Literal["user", "ai"]

# Valid message types - must match DB constraint
MESSAGE_TYPES = Literal["text", "audio"]


# =============================================================================
# Response Schemas
# =============================================================================


class MessageOut(BaseModel):
    """Response schema for a message.

    Messages are append-only and ordered by (created_at, seq) within a chat.
    Audio messages carry the public URL of the recording as content.
    """

    id: UUID
    chat_id: UUID
    seq: int
    sender_type: str  # "user" | "ai"
    message_type: str  # "text" | "audio"
    content: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProfileSummary(BaseModel):
    """The slice of a profile shown next to a chat."""

    id: UUID
    name: str
    image_url: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ChatOut(BaseModel):
    """Response schema for a chat between the viewer and one profile."""

    id: UUID
    profile: ProfileSummary
    created_at: datetime
    last_message: MessageOut | None = None


class PageInfo(BaseModel):
    """Pagination information for list responses."""

    next_cursor: str | None = None


class AccessOut(BaseModel):
    """The viewer's access grants for a profile."""

    profile_id: UUID
    has_access: bool
    has_subscription: bool
    has_free_access: bool


# =============================================================================
# Request Schemas
# =============================================================================


class SendMessageRequest(BaseModel):
    """Request body for POST /chats/{chat_id}/messages.

    Exactly one of:
    - content: text message
    - audio_data + audio_type: base64-encoded recording and its MIME type
    """

    content: str | None = None
    audio_data: str | None = None
    audio_type: str | None = None

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def validate_payload(self) -> "SendMessageRequest":
        has_text = self.content is not None
        has_audio = self.audio_data is not None
        if has_text == has_audio:
            raise ValueError("Provide either content or audio_data")
        if has_audio and not self.audio_type:
            raise ValueError("audio_type is required with audio_data")
        return self

    @property
    def is_audio(self) -> bool:
        return self.audio_data is not None

    def decoded_audio(self) -> bytes:
        """Decode audio_data, accepting an optional data: URL prefix.

        Raises:
            ValueError: If the payload is not valid base64.
        """
        data = self.audio_data or ""
        if data.startswith("data:") and "," in data:
            data = data.split(",", 1)[1]
        try:
            return base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError):
            raise ValueError("audio_data is not valid base64") from None
