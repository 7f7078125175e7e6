"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from companion.schemas.chat import (
    AccessOut,
    ChatOut,
    MessageOut,
    PageInfo,
    ProfileSummary,
    SendMessageRequest,
)
from companion.schemas.functions import ReceiveMessageRequest, SetTypingStatusRequest

__all__ = [
    # Chat schemas
    "AccessOut",
    "ChatOut",
    "MessageOut",
    "PageInfo",
    "ProfileSummary",
    "SendMessageRequest",
    # Inbound webhook schemas
    "ReceiveMessageRequest",
    "SetTypingStatusRequest",
]
