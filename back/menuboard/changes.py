"""
Order change feed.

Every committed order write is published as an OrderEvent on the
restaurant channel `orders:restaurant:{restaurant_id}`:
- RedisChangeFeed: Redis pub/sub, shared by every API worker
- LocalChangeFeed: asyncio queues inside one process (no Redis configured,
  or Redis unreachable at startup)
"""
import asyncio
import logging
from collections.abc import Iterable
from typing import Literal

import redis
import redis.asyncio as aioredis
from pydantic import BaseModel, ValidationError

from .errors import RealtimeChannelError
from .settings import settings

logger = logging.getLogger(__name__)

EventType = Literal["insert", "update", "delete"]


class OrderEvent(BaseModel):
    type: EventType
    restaurant_id: str
    order_id: str
    order: dict | None = None  # Wire shape of the order; None for deletes


def channel_for(restaurant_id: str) -> str:
    return f"orders:restaurant:{restaurant_id}"


class Subscription:
    """Cancelable async stream of order events for one restaurant."""

    def __init__(self, restaurant_id: str, event_types: Iterable[str]):
        self.restaurant_id = restaurant_id
        self.event_types = frozenset(event_types)
        self.closed = False

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> OrderEvent:
        raise NotImplementedError

    async def close(self) -> None:
        self.closed = True


class ChangeFeed:
    async def publish(self, event: OrderEvent) -> None:
        raise NotImplementedError

    async def subscribe(self, restaurant_id: str, event_types: Iterable[str] = ("insert",)) -> Subscription:
        raise NotImplementedError

    async def close(self) -> None:
        pass


# ============ IN-PROCESS ============

class _Dropped:
    def __init__(self, reason: str):
        self.reason = reason


class LocalSubscription(Subscription):
    def __init__(self, feed: "LocalChangeFeed", restaurant_id: str, event_types: Iterable[str]):
        super().__init__(restaurant_id, event_types)
        self._feed = feed
        self._queue: asyncio.Queue = asyncio.Queue()

    def deliver(self, event: OrderEvent) -> None:
        if not self.closed and event.type in self.event_types:
            self._queue.put_nowait(event)

    def drop(self, reason: str) -> None:
        self._queue.put_nowait(_Dropped(reason))

    async def __anext__(self) -> OrderEvent:
        if self.closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, _Dropped):
            self.closed = True
            self._feed._discard(self)
            raise RealtimeChannelError(item.reason)
        return item

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed._discard(self)
        self._queue.put_nowait(None)


class LocalChangeFeed(ChangeFeed):
    def __init__(self) -> None:
        self._subscriptions: dict[str, set[LocalSubscription]] = {}

    async def publish(self, event: OrderEvent) -> None:
        for subscription in list(self._subscriptions.get(event.restaurant_id, ())):
            subscription.deliver(event)

    async def subscribe(self, restaurant_id: str, event_types: Iterable[str] = ("insert",)) -> Subscription:
        subscription = LocalSubscription(self, restaurant_id, event_types)
        self._subscriptions.setdefault(restaurant_id, set()).add(subscription)
        return subscription

    def subscriber_count(self, restaurant_id: str) -> int:
        return len(self._subscriptions.get(restaurant_id, ()))

    def drop_connections(self, reason: str = "channel closed") -> None:
        """Fail every open subscription, as a transport drop would."""
        for subscriptions in list(self._subscriptions.values()):
            for subscription in list(subscriptions):
                subscription.drop(reason)

    def _discard(self, subscription: LocalSubscription) -> None:
        subscriptions = self._subscriptions.get(subscription.restaurant_id)
        if subscriptions is None:
            return
        subscriptions.discard(subscription)
        if not subscriptions:
            del self._subscriptions[subscription.restaurant_id]


# ============ REDIS ============

class RedisSubscription(Subscription):
    def __init__(self, pubsub, restaurant_id: str, event_types: Iterable[str]):
        super().__init__(restaurant_id, event_types)
        self._pubsub = pubsub

    async def __anext__(self) -> OrderEvent:
        while not self.closed:
            try:
                message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except (redis.RedisError, OSError) as e:
                raise RealtimeChannelError(f"Redis subscription dropped: {e}") from e
            if message is None or message["type"] != "message":
                continue
            try:
                event = OrderEvent.model_validate_json(message["data"])
            except ValidationError as e:
                logger.warning(f"Ignoring malformed message on {channel_for(self.restaurant_id)}: {e}")
                continue
            if event.type in self.event_types:
                return event
        raise StopAsyncIteration

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self._pubsub.unsubscribe()
            await self._pubsub.aclose()
        except (redis.RedisError, OSError) as e:
            logger.debug(f"Ignoring error while closing subscription for {self.restaurant_id}: {e}")


class RedisChangeFeed(ChangeFeed):
    def __init__(self, redis_url: str):
        self._client = aioredis.from_url(redis_url)

    async def publish(self, event: OrderEvent) -> None:
        try:
            await self._client.publish(channel_for(event.restaurant_id), event.model_dump_json())
        except (redis.RedisError, OSError) as e:
            raise RealtimeChannelError(f"Could not publish {event.type} for order {event.order_id}: {e}") from e

    async def subscribe(self, restaurant_id: str, event_types: Iterable[str] = ("insert",)) -> Subscription:
        pubsub = self._client.pubsub()
        try:
            await pubsub.subscribe(channel_for(restaurant_id))
        except (redis.RedisError, OSError) as e:
            raise RealtimeChannelError(f"Could not subscribe to {channel_for(restaurant_id)}: {e}") from e
        return RedisSubscription(pubsub, restaurant_id, event_types)

    async def close(self) -> None:
        await self._client.aclose()


_change_feed: ChangeFeed | None = None


def get_change_feed() -> ChangeFeed:
    global _change_feed
    if _change_feed is None:
        if settings.redis_url:
            try:
                client = redis.from_url(settings.redis_url)
                client.ping()
                client.close()
                _change_feed = RedisChangeFeed(settings.redis_url)
                logger.info("Order events published through Redis")
            except (redis.RedisError, OSError) as e:
                logger.warning(f"Redis unavailable ({e}); order events stay inside this process")
        if _change_feed is None:
            _change_feed = LocalChangeFeed()
    return _change_feed
