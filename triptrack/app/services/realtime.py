"""
Realtime change feed.

Writers publish row-level change events on topics (`trip:{id}`,
`request:{id}`, `route:{id}`, `driver:{id}`); tracking sessions subscribe
to the topics they render. Delivery is at-least-once and ordered per topic.

Two backends:
- memory: in-process fan-out over asyncio queues (single worker, tests)
- redis: Redis pub/sub, for several API workers behind a load balancer
"""

import enum
import asyncio
import logging
from typing import Any, Dict, Iterable, Optional, Set

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ValidationError
from redis.exceptions import RedisError
from sqlalchemy import inspect

from triptrack.app.core.config import settings
from triptrack.app.core.redis_client import redis_client

logger = logging.getLogger("triptrack.realtime")


class ChangeOperation(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """One row-level change, as delivered to subscribers."""
    table: str
    operation: ChangeOperation
    row: Dict[str, Any] = {}
    topic: Optional[str] = None


class FeedDisconnected(Exception):
    """The subscription lost its connection; the subscriber must re-subscribe."""


def trip_topic(trip_id: int) -> str:
    return f"trip:{trip_id}"


def request_topic(request_id: int) -> str:
    return f"request:{request_id}"


def route_topic(route_id: int) -> str:
    return f"route:{route_id}"


def driver_topic(driver_id: int) -> str:
    return f"driver:{driver_id}"


def row_to_dict(obj) -> Dict[str, Any]:
    """
    Serialize the loaded column values of an ORM row.

    Only already-loaded attributes are read so that no lazy load is
    triggered on an async session.
    """
    state = inspect(obj)
    loaded = state.dict
    return jsonable_encoder({
        attr.key: loaded[attr.key]
        for attr in state.mapper.column_attrs
        if attr.key in loaded
    })


_CLOSED = object()
_DISCONNECTED = object()


class InMemorySubscription:
    """Async iterator over the events of the subscribed topics."""

    def __init__(self, feed: "InMemoryChangeFeed", topics: Iterable[str]):
        self.topics = frozenset(topics)
        self._feed = feed
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def _deliver(self, item) -> None:
        if not self._closed:
            self._queue.put_nowait(item)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self._closed:
            raise StopAsyncIteration
        if item is _DISCONNECTED:
            raise FeedDisconnected("In-memory feed disconnected")
        return item

    async def close(self) -> None:
        if self._closed:
            return
        self._feed._detach(self)
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed


class InMemoryChangeFeed:
    """Process-local feed."""

    def __init__(self):
        self._subscribers: Dict[str, Set[InMemorySubscription]] = {}

    async def publish(self, topic: str, event: ChangeEvent) -> None:
        event = event.model_copy(update={"topic": topic})
        for subscription in list(self._subscribers.get(topic, ())):
            subscription._deliver(event)

    async def subscribe(self, topics: Iterable[str]) -> InMemorySubscription:
        subscription = InMemorySubscription(self, topics)
        for topic in subscription.topics:
            self._subscribers.setdefault(topic, set()).add(subscription)
        return subscription

    def _detach(self, subscription: InMemorySubscription) -> None:
        for topic in subscription.topics:
            subscribers = self._subscribers.get(topic)
            if subscribers is None:
                continue
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscribers[topic]

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    def disconnect_all(self) -> None:
        """Drop every live subscription as if the connection was lost."""
        subscriptions = {sub for subs in self._subscribers.values() for sub in subs}
        self._subscribers.clear()
        for subscription in subscriptions:
            subscription._deliver(_DISCONNECTED)


class RedisSubscription:
    """Async iterator over a Redis pub/sub channel set."""

    # Poll interval so that close() is noticed while idle
    POLL_SECONDS = 1.0

    def __init__(self, pubsub, topics: Iterable[str]):
        self.topics = frozenset(topics)
        self._pubsub = pubsub
        self._closed = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        while True:
            if self._closed:
                raise StopAsyncIteration
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=self.POLL_SECONDS
                )
            except (RedisError, OSError) as exc:
                raise FeedDisconnected(str(exc)) from exc
            if message is None or message.get("type") != "message":
                continue
            try:
                return ChangeEvent.model_validate_json(message["data"])
            except ValidationError as exc:
                logger.warning("Skipping malformed change event on %s: %s", message.get("channel"), exc)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._pubsub.unsubscribe()
        except (RedisError, OSError) as exc:
            logger.warning("Failed to unsubscribe cleanly: %s", exc)
        await self._pubsub.aclose()

    @property
    def closed(self) -> bool:
        return self._closed


class RedisChangeFeed:
    """Feed shared by every API worker through Redis pub/sub."""

    def __init__(self, client):
        self._client = client

    async def publish(self, topic: str, event: ChangeEvent) -> None:
        event = event.model_copy(update={"topic": topic})
        await self._client.publish(topic, event.model_dump_json())

    async def subscribe(self, topics: Iterable[str]) -> RedisSubscription:
        pubsub = self._client.pubsub()
        try:
            await pubsub.subscribe(*topics)
        except (RedisError, OSError) as exc:
            await pubsub.aclose()
            raise FeedDisconnected(str(exc)) from exc
        return RedisSubscription(pubsub, topics)


_feed = None


def get_change_feed():
    """
    FastAPI dependency returning the process-wide change feed.

    The backend is chosen by `settings.change_feed_backend`.
    """
    global _feed
    if _feed is None:
        if settings.change_feed_backend == "redis":
            _feed = RedisChangeFeed(redis_client)
        else:
            _feed = InMemoryChangeFeed()
    return _feed


async def publish_change(
    feed,
    topics: Iterable[str],
    table: str,
    operation: ChangeOperation,
    row: Dict[str, Any]
) -> None:
    """
    Publish one change on several topics.

    Called after commit. A publish failure does not undo the write; viewers
    catch up on their next full reconcile.
    """
    if feed is None:
        return
    event = ChangeEvent(table=table, operation=operation, row=row)
    for topic in dict.fromkeys(topics):
        try:
            await feed.publish(topic, event)
        except (RedisError, OSError) as exc:
            logger.warning("Failed to publish %s %s on %s: %s", table, operation.value, topic, exc)
