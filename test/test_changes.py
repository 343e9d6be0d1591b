import asyncio

import pytest
import redis

from menuboard.changes import LocalChangeFeed, OrderEvent, RedisSubscription, channel_for
from menuboard.errors import RealtimeChannelError

pytestmark = pytest.mark.anyio


class StubPubSub:
    """Replays queued pub/sub messages the way redis.asyncio hands them out."""

    def __init__(self, *messages):
        self.messages = list(messages)
        self.closed = False

    async def get_message(self, ignore_subscribe_messages=False, timeout=None):
        if not self.messages:
            await asyncio.sleep(0.01)
            return None
        message = self.messages.pop(0)
        if isinstance(message, Exception):
            raise message
        return message

    async def unsubscribe(self):
        pass

    async def aclose(self):
        self.closed = True


def message(data) -> dict:
    return {"type": "message", "channel": channel_for("r1").encode(), "data": data}


def event(order_id: str, event_type: str = "insert") -> str:
    return OrderEvent(type=event_type, restaurant_id="r1", order_id=order_id, order={"id": order_id}).model_dump_json()


class TestRedisSubscription:
    async def test_malformed_messages_are_skipped(self):
        subscription = RedisSubscription(
            StubPubSub(message(b"not json"), message('{"type": "insert"}'), message(event("o1"))),
            "r1",
            ("insert",),
        )

        received = await asyncio.wait_for(subscription.__anext__(), timeout=1)

        assert received.order_id == "o1"

    async def test_other_event_types_are_filtered(self):
        subscription = RedisSubscription(
            StubPubSub(message(event("o1", "update")), message(event("o2"))),
            "r1",
            ("insert",),
        )

        received = await asyncio.wait_for(subscription.__anext__(), timeout=1)

        assert received.order_id == "o2"

    async def test_connection_error_becomes_channel_error(self):
        subscription = RedisSubscription(StubPubSub(redis.ConnectionError("gone")), "r1", ("insert",))

        with pytest.raises(RealtimeChannelError):
            await subscription.__anext__()

    async def test_close_releases_pubsub(self):
        pubsub = StubPubSub()
        subscription = RedisSubscription(pubsub, "r1", ("insert",))

        await subscription.close()

        assert pubsub.closed
        with pytest.raises(StopAsyncIteration):
            await subscription.__anext__()


class TestLocalChangeFeed:
    async def test_events_reach_only_their_restaurant(self):
        changes = LocalChangeFeed()
        mine = await changes.subscribe("r1")
        other = await changes.subscribe("r2")

        await changes.publish(OrderEvent(type="insert", restaurant_id="r1", order_id="o1"))

        assert (await asyncio.wait_for(mine.__anext__(), timeout=1)).order_id == "o1"
        assert other._queue.empty()

    async def test_dropped_connection_raises_and_unsubscribes(self):
        changes = LocalChangeFeed()
        subscription = await changes.subscribe("r1")

        changes.drop_connections("network down")

        with pytest.raises(RealtimeChannelError):
            await subscription.__anext__()
        assert changes.subscriber_count("r1") == 0
