"""Realtime broker for change notifications.

Topics:
    chat:{chat_id}:messages   message_inserted events of one chat
    chat:{chat_id}:typing     typing_start / typing_stop events of one chat
    user:{user_id}:messages   message_inserted events across a user's chats

Events are plain dicts {"type": str, "data": dict}. Delivery is ephemeral:
nothing is persisted and nothing is replayed, so a subscriber that connects
after a publish never sees it. The database remains the source of truth and
clients re-derive state from it.

publish() is synchronous and safe to call from worker threads (sync route
handlers run in a threadpool). Subscriptions are consumed on an event loop.
"""

import asyncio
import json
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Protocol
from uuid import UUID

from companion.logging import get_logger

logger = get_logger(__name__)

# Per-subscriber buffer; a consumer this far behind starts losing events
SUBSCRIBER_QUEUE_SIZE = 256

MESSAGE_INSERTED = "message_inserted"
TYPING_START = "typing_start"
TYPING_STOP = "typing_stop"


def chat_messages_topic(chat_id: UUID | str) -> str:
    return f"chat:{chat_id}:messages"


def chat_typing_topic(chat_id: UUID | str) -> str:
    return f"chat:{chat_id}:typing"


def user_messages_topic(user_id: UUID | str) -> str:
    return f"user:{user_id}:messages"


def make_event(event_type: str, data: dict[str, Any]) -> dict[str, Any]:
    return {"type": event_type, "data": data}


class Subscription(Protocol):
    """A live subscription to one topic."""

    async def next_event(self, timeout: float | None = None) -> dict[str, Any] | None:
        """Wait for the next event. Returns None when the timeout elapses."""
        ...


class Broker(Protocol):
    """Interface shared by the in-process and Redis brokers."""

    def publish(self, topic: str, event: dict[str, Any]) -> None: ...

    def subscribe(self, topic: str): ...

    async def close(self) -> None: ...


# =============================================================================
# In-process broker
# =============================================================================


class _QueueSubscription:
    def __init__(self, loop: asyncio.AbstractEventLoop):
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)

    def offer(self, topic: str, event: dict[str, Any]) -> None:
        # Runs on the subscriber's loop
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("broker_subscriber_overflow", topic=topic)

    async def next_event(self, timeout: float | None = None) -> dict[str, Any] | None:
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except TimeoutError:
            return None

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self

    async def __anext__(self) -> dict[str, Any]:
        return await self.queue.get()


class InMemoryBroker:
    """Single-process broker fanning events out to asyncio queues."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: dict[str, set[_QueueSubscription]] = {}

    def publish(self, topic: str, event: dict[str, Any]) -> None:
        with self._lock:
            subscribers = list(self._subscribers.get(topic, ()))

        for sub in subscribers:
            try:
                sub.loop.call_soon_threadsafe(sub.offer, topic, event)
            except RuntimeError:
                # Subscriber's loop already closed; it will unregister itself
                logger.debug("broker_subscriber_loop_closed", topic=topic)

        logger.debug(
            "broker_published",
            topic=topic,
            event_type=event.get("type"),
            subscribers=len(subscribers),
        )

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscribers.get(topic, ()))

    @asynccontextmanager
    async def subscribe(self, topic: str):
        sub = _QueueSubscription(asyncio.get_running_loop())
        with self._lock:
            self._subscribers.setdefault(topic, set()).add(sub)
        try:
            yield sub
        finally:
            with self._lock:
                subs = self._subscribers.get(topic)
                if subs is not None:
                    subs.discard(sub)
                    if not subs:
                        del self._subscribers[topic]

    async def close(self) -> None:
        with self._lock:
            self._subscribers.clear()


# =============================================================================
# Redis broker
# =============================================================================


class _RedisSubscription:
    def __init__(self, pubsub):
        self._pubsub = pubsub

    async def next_event(self, timeout: float | None = None) -> dict[str, Any] | None:
        message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=timeout)
        if message is None:
            return None
        try:
            return json.loads(message["data"])
        except (TypeError, ValueError):
            logger.warning("broker_malformed_event", channel=str(message.get("channel")))
            return None


class RedisBroker:
    """Broker backed by Redis pub/sub so several API processes share one feed.

    Publishing uses a synchronous client (callable from worker threads);
    subscriptions use redis.asyncio on the consuming event loop.
    """

    def __init__(self, redis_url: str, sync_client=None, async_client=None):
        import redis
        import redis.asyncio as aioredis

        self._sync = sync_client or redis.Redis.from_url(
            redis_url, decode_responses=True, socket_timeout=5
        )
        self._async = async_client or aioredis.Redis.from_url(redis_url, decode_responses=True)

    def publish(self, topic: str, event: dict[str, Any]) -> None:
        try:
            self._sync.publish(topic, json.dumps(event))
        except Exception as e:
            # Realtime is an accelerator; the write already succeeded
            logger.warning("broker_publish_failed", topic=topic, error=str(e))

    @asynccontextmanager
    async def subscribe(self, topic: str):
        pubsub = self._async.pubsub()
        await pubsub.subscribe(topic)
        try:
            yield _RedisSubscription(pubsub)
        finally:
            await pubsub.unsubscribe(topic)
            await pubsub.aclose()

    async def close(self) -> None:
        self._sync.close()
        await self._async.aclose()


def create_broker(redis_url: str | None) -> Broker:
    """Redis broker when REDIS_URL is configured, in-process broker otherwise."""
    if redis_url:
        logger.info("realtime_broker_initialized", backend="redis")
        return RedisBroker(redis_url)
    logger.info("realtime_broker_initialized", backend="memory")
    return InMemoryBroker()
