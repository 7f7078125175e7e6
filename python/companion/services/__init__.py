"""Business logic services.

This module contains service-layer functions that implement business logic.
Services are called by route handlers and orchestrate database operations.
"""

from companion.services.access import has_access, has_free_access, has_subscription
from companion.services.bootstrap import ensure_user
from companion.services.chats import get_chat, list_chats, list_messages, open_chat

__all__ = [
    "ensure_user",
    "has_access",
    "has_free_access",
    "has_subscription",
    "get_chat",
    "list_chats",
    "list_messages",
    "open_chat",
]
