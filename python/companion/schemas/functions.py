"""Schemas for the inbound webhook endpoints (/functions/*).

Field names follow the wire contract used by the AI backend (camelCase).
"""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, StrictBool


class ReceiveMessageRequest(BaseModel):
    """Body of POST /functions/receive-message."""

    chat_id: UUID = Field(alias="chatId")
    message: str = Field(min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class SetTypingStatusRequest(BaseModel):
    """Body of POST /functions/set-typing-status."""

    chat_id: UUID = Field(alias="chatId")
    is_typing: StrictBool = Field(alias="isTyping")

    model_config = ConfigDict(populate_by_name=True)
