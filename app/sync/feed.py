"""Change feed: "something changed" notifications keyed by topic.

Topics:
  - ``auctions``            every auction/bid change
  - ``auction:<id>``        changes touching one auction
  - ``consigner:<id>``      changes to auctions created by one consigner

Events never carry row data; subscribers pull a fresh snapshot instead.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass
from functools import lru_cache

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from core.config import get_settings
from core.redis import get_redis_connection

logger = logging.getLogger(__name__)

ALL_AUCTIONS = "auctions"


def auction_topic(auction_id: str) -> str:
    return f"auction:{auction_id}"


def consigner_topic(consigner_id: str) -> str:
    return f"consigner:{consigner_id}"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event: str  # INSERT / UPDATE / DELETE
    record_id: str | None = None
    auction_id: str | None = None
    consigner_id: str | None = None

    def topics(self) -> list[str]:
        topics = [ALL_AUCTIONS]
        if self.auction_id:
            topics.append(auction_topic(self.auction_id))
        if self.consigner_id:
            topics.append(consigner_topic(self.consigner_id))
        return topics

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, payload: str | bytes) -> "ChangeEvent":
        return cls(**json.loads(payload))


class ChannelDisconnected(Exception):
    """The push channel dropped; the subscriber should resubscribe."""


class Subscription:
    """Async iterator of change events for one topic."""

    topic: str

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:  # pragma: no cover - interface
        raise NotImplementedError

    async def close(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class ChangeFeed:
    """Interface of a change feed backend."""

    async def publish(self, event: ChangeEvent) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def subscribe(self, topic: str) -> Subscription:  # pragma: no cover - interface
        raise NotImplementedError


_CLOSED = object()
_DROPPED = object()


class _QueueSubscription(Subscription):
    def __init__(self, feed: "InMemoryChangeFeed", topic: str, maxsize: int) -> None:
        self.topic = topic
        self._feed = feed
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def push(self, item: object) -> None:
        if self._queue.full():
            if isinstance(item, ChangeEvent):
                # A pending notification already forces a full re-fetch
                return
            # Control markers must get through
            self._queue.get_nowait()
        self._queue.put_nowait(item)

    async def __anext__(self) -> ChangeEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if item is _DROPPED:
            raise ChannelDisconnected(f"channel {self.topic} dropped")
        return item  # type: ignore[return-value]

    async def close(self) -> None:
        self._feed._remove(self)
        self.push(_CLOSED)


class InMemoryChangeFeed(ChangeFeed):
    """Single-process fan-out over asyncio queues."""

    def __init__(self, maxsize: int = 100) -> None:
        self._maxsize = maxsize
        self._subscribers: dict[str, set[_QueueSubscription]] = defaultdict(set)

    async def publish(self, event: ChangeEvent) -> None:
        for topic in event.topics():
            for sub in list(self._subscribers.get(topic, ())):
                sub.push(event)

    async def subscribe(self, topic: str) -> Subscription:
        sub = _QueueSubscription(self, topic, self._maxsize)
        self._subscribers[topic].add(sub)
        return sub

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    def drop_all(self) -> None:
        """Disconnect every subscriber, as a broken transport would."""
        for topic, subs in list(self._subscribers.items()):
            for sub in list(subs):
                sub.push(_DROPPED)
            subs.clear()

    def _remove(self, sub: _QueueSubscription) -> None:
        self._subscribers.get(sub.topic, set()).discard(sub)


class _RedisSubscription(Subscription):
    def __init__(self, pubsub: aioredis.client.PubSub, topic: str, channel: str) -> None:
        self.topic = topic
        self._pubsub = pubsub
        self._channel = channel
        self._closed = False

    async def __anext__(self) -> ChangeEvent:
        while not self._closed:
            try:
                message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except (RedisError, OSError) as e:
                raise ChannelDisconnected(str(e)) from e
            if message is None:
                continue
            return ChangeEvent.from_json(message["data"])
        raise StopAsyncIteration

    async def close(self) -> None:
        self._closed = True
        try:
            await self._pubsub.unsubscribe(self._channel)
        except (RedisError, OSError) as e:
            # Connection already broken; nothing left to unsubscribe from
            logger.info("Unsubscribe failed", extra={"channel": self._channel, "error": str(e)})
        finally:
            await self._pubsub.aclose()


class RedisChangeFeed(ChangeFeed):
    """Change feed over Redis pub/sub, shared by every API worker."""

    CHANNEL_PREFIX = "changes:"

    def __init__(self, redis: aioredis.Redis | None = None) -> None:
        self._redis = redis or get_redis_connection()

    async def publish(self, event: ChangeEvent) -> None:
        payload = event.to_json()
        for topic in event.topics():
            await self._redis.publish(self.CHANNEL_PREFIX + topic, payload)

    async def subscribe(self, topic: str) -> Subscription:
        channel = self.CHANNEL_PREFIX + topic
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(channel)
        except (RedisError, OSError) as e:
            await pubsub.aclose()
            raise ChannelDisconnected(str(e)) from e
        return _RedisSubscription(pubsub, topic, channel)


@lru_cache
def get_change_feed() -> ChangeFeed:
    """Return the process-wide change feed selected by CHANGE_FEED_BACKEND."""
    backend = get_settings().change_feed_backend
    if backend == "redis":
        return RedisChangeFeed()
    return InMemoryChangeFeed()


async def publish_changes(*events: ChangeEvent, feed: ChangeFeed | None = None) -> None:
    """Publish change notifications after a committed mutation.

    The mutation is already durable at this point, so a transport failure is
    logged and left to the viewers' polling fallback.
    """
    feed = feed or get_change_feed()
    for event in events:
        try:
            await feed.publish(event)
        except (RedisError, OSError) as e:
            logger.warning(
                "Change feed publish failed",
                extra={"event": event.event, "auction_id": event.auction_id, "error": str(e)},
            )
