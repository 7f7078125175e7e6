"""Realtime change notifications (broker + topics)."""

from companion.realtime.broker import (
    MESSAGE_INSERTED,
    TYPING_START,
    TYPING_STOP,
    Broker,
    InMemoryBroker,
    RedisBroker,
    chat_messages_topic,
    chat_typing_topic,
    create_broker,
    make_event,
    user_messages_topic,
)

__all__ = [
    "MESSAGE_INSERTED",
    "TYPING_START",
    "TYPING_STOP",
    "Broker",
    "InMemoryBroker",
    "RedisBroker",
    "chat_messages_topic",
    "chat_typing_topic",
    "create_broker",
    "make_event",
    "user_messages_topic",
]
