"""
Unit Tests for live change-event subscriptions
"""
import asyncio
import json
import pytest
from unittest.mock import AsyncMock, MagicMock

from schoolfeed.services.realtime import ChangeEvent, LocalChangeHub, RedisChangeSubscription


class FakePubSub:
    """Replays `messages`, then raises `error` or blocks until closed"""

    def __init__(self, messages=(), error=None, subscribe_error=None):
        self.messages = list(messages)
        self.error = error
        self.subscribe_error = subscribe_error
        self.patterns = []
        self.closed = False

    async def psubscribe(self, pattern):
        if self.subscribe_error:
            raise self.subscribe_error
        self.patterns.append(pattern)

    async def punsubscribe(self):
        self.patterns = []

    async def close(self):
        self.closed = True

    async def listen(self):
        for message in self.messages:
            yield message
        if self.error:
            raise self.error
        await asyncio.Event().wait()


def pmessage(entity, record=None):
    return {
        "type": "pmessage",
        "channel": f"sf:changes:{entity}",
        "data": json.dumps({"action": "INSERT", "record": record}),
    }


async def wait_for(condition, attempts=200):
    for _ in range(attempts):
        if condition():
            return
        await asyncio.sleep(0.005)


class TestLocalChangeHub:

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self):
        hub = LocalChangeHub()
        received = []

        def sync_handler(event):
            received.append(("sync", event.action))

        async def async_handler(event):
            received.append(("async", event.action))

        hub.subscribe("messages", sync_handler)
        hub.subscribe("messages", async_handler)
        await hub.publish("messages", "INSERT", {"id": 1})

        assert received == [("sync", "INSERT"), ("async", "INSERT")]

    @pytest.mark.asyncio
    async def test_only_matching_entity(self):
        hub = LocalChangeHub()
        received = []
        hub.subscribe("materials", received.append)

        await hub.publish("messages")
        assert received == []

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        hub = LocalChangeHub()
        received = []
        unsubscribe = hub.subscribe("messages", received.append)

        unsubscribe()
        await hub.publish("messages")

        assert received == []
        assert hub.handler_count("messages") == 0

    @pytest.mark.asyncio
    async def test_handler_error_is_isolated(self):
        hub = LocalChangeHub()
        received = []

        def broken(event):
            raise RuntimeError("handler bug")

        hub.subscribe("messages", broken)
        hub.subscribe("messages", received.append)
        await hub.publish("messages")

        assert len(received) == 1


class TestRedisChangeSubscription:

    def _subscription(self):
        client = MagicMock()
        client.publish = AsyncMock(return_value=1)
        return client, RedisChangeSubscription(client, channel_prefix="sf:changes:")

    @pytest.mark.asyncio
    async def test_publish_goes_to_entity_channel(self):
        client, subscription = self._subscription()
        await subscription.publish("materials", "DELETE", {"id": 4})

        client.publish.assert_awaited_once()
        channel, payload = client.publish.await_args.args
        assert channel == "sf:changes:materials"
        assert json.loads(payload) == {"action": "DELETE", "record": {"id": 4}}

    def test_parse_pattern_message(self):
        _, subscription = self._subscription()
        event = subscription.parse_message({
            "type": "pmessage",
            "channel": "sf:changes:messages_deleted",
            "data": json.dumps({"action": "*", "record": {"id": 12}}),
        })

        assert isinstance(event, ChangeEvent)
        assert event.entity == "messages_deleted"
        assert event.record == {"id": 12}

    def test_parse_ignores_foreign_channels_and_garbage(self):
        _, subscription = self._subscription()
        assert subscription.parse_message({"type": "pmessage", "channel": "other:x", "data": "{}"}) is None
        assert subscription.parse_message({"type": "psubscribe", "channel": "sf:changes:*", "data": 1}) is None
        assert subscription.parse_message({"type": "pmessage", "channel": "sf:changes:x", "data": "{bad"}) is None

    @pytest.mark.asyncio
    async def test_dispatch_reaches_subscribers(self):
        _, subscription = self._subscription()
        received = []
        subscription.subscribe("messages", received.append)

        await subscription.dispatch(ChangeEvent(entity="messages", action="INSERT"))
        assert [event.action for event in received] == ["INSERT"]


class TestRedisReconnect:

    def _subscription(self, *pubsubs):
        client = MagicMock()
        client.pubsub = MagicMock(side_effect=list(pubsubs))
        subscription = RedisChangeSubscription(
            client, channel_prefix="sf:changes:", reconnect_delay=0.01, max_reconnect_delay=0.02
        )
        return client, subscription

    @pytest.mark.asyncio
    async def test_listener_resubscribes_after_connection_error(self):
        broken = FakePubSub(messages=[pmessage("messages", {"id": 1})], error=ConnectionError("reset by peer"))
        healthy = FakePubSub(messages=[pmessage("messages", {"id": 2})])
        client, subscription = self._subscription(broken, healthy)
        received = []
        subscription.subscribe("messages", received.append)

        await subscription.start()
        await wait_for(lambda: len(received) == 2)

        assert [event.record for event in received] == [{"id": 1}, {"id": 2}]
        assert broken.closed
        assert healthy.patterns == ["sf:changes:*"]
        assert subscription.reconnects == 1
        assert client.pubsub.call_count == 2

        await subscription.close()
        assert healthy.closed

    @pytest.mark.asyncio
    async def test_failed_resubscribe_keeps_retrying(self):
        first = FakePubSub(error=ConnectionError("gone"))
        refused = FakePubSub(subscribe_error=ConnectionError("refused"))
        healthy = FakePubSub(messages=[pmessage("materials", {"id": 9})])
        client, subscription = self._subscription(first, refused, healthy)
        received = []
        subscription.subscribe("materials", received.append)

        await subscription.start()
        await wait_for(lambda: received)

        assert [event.record for event in received] == [{"id": 9}]
        assert refused.closed
        assert client.pubsub.call_count == 3

        await subscription.close()

    @pytest.mark.asyncio
    async def test_close_stops_reconnecting(self):
        client, subscription = self._subscription(
            FakePubSub(error=ConnectionError("gone")),
            *[FakePubSub(subscribe_error=ConnectionError("refused")) for _ in range(50)],
        )

        await subscription.start()
        await asyncio.sleep(0.03)
        await subscription.close()
        calls = client.pubsub.call_count
        await asyncio.sleep(0.03)

        assert client.pubsub.call_count == calls
        assert subscription._listener is None
