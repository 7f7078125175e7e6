"""Database module for Companion.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from companion.db.engine import create_db_engine, get_engine
from companion.db.models import (
    Base,
    Chat,
    FreeAccessPeriod,
    Message,
    MessageType,
    Profile,
    ProfileApiKey,
    SenderType,
    Subscription,
    User,
)
from companion.db.session import get_db, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "get_db",
    "transaction",
    # Base
    "Base",
    # Enums
    "SenderType",
    "MessageType",
    # Models
    "User",
    "Profile",
    "ProfileApiKey",
    "Subscription",
    "FreeAccessPeriod",
    "Chat",
    "Message",
]
