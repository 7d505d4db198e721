"""Event worker tests — classification at the boundary, loop resilience.

Learn: The worker never needs a real Redis here. handle_message() is
driven directly, and run() gets a tiny pub/sub double whose listen()
yields a fixed list of channel messages.
"""

import json

import pytest

from fanout.dispatcher.worker import EventWorker
from fanout.schemas.subscription import OperationRequest


class FakePubSub:
    def __init__(self, messages):
        self.messages = messages
        self.subscribed: list[str] = []
        self.closed = False

    async def subscribe(self, channel):
        self.subscribed.append(channel)

    async def unsubscribe(self, channel):
        self.subscribed.remove(channel)

    async def listen(self):
        for message in self.messages:
            yield message

    async def aclose(self):
        self.closed = True


class FakeRedis:
    def __init__(self, messages):
        self._pubsub = FakePubSub(messages)

    def pubsub(self):
        return self._pubsub


@pytest.fixture()
def worker(server):
    return EventWorker(server, FakeRedis([]), "fanout:events")


@pytest.mark.asyncio
async def test_event_is_dispatched(worker, registered, subscriptions, transport):
    await subscriptions.subscribe(["chat"], await registered("c1"), OperationRequest(query="chat"), "op-1")

    await worker.handle_message(json.dumps({"event": "chat", "payload": {"type": "greeting"}}))

    assert len(transport.messages_for("c1")) == 1
    assert worker.stats.received == 1
    assert worker.stats.dispatched == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("data", ["garbage", '{"name": "chat"}', '{"event": ""}'])
async def test_malformed_is_rejected(worker, transport, data):
    await worker.handle_message(data)

    assert worker.stats.rejected == 1
    assert worker.stats.dispatched == 0
    assert transport.sent == []


@pytest.mark.asyncio
async def test_frames_reach_the_server(worker, connections):
    frame = {"requestContext": {"connectionId": "c9", "routeKey": "$connect", "domainName": "gw.test"}}

    await worker.handle_message(json.dumps(frame))

    connection = await connections.hydrate("c9")
    assert connection.data.is_initialized is False
    assert worker.stats.dispatched == 1


@pytest.mark.asyncio
async def test_frame_failure_is_counted_not_raised(worker):
    frame = {
        "requestContext": {"connectionId": "ghost", "routeKey": "$default"},
        "body": '{"type": "connection_init"}',
    }

    await worker.handle_message(json.dumps(frame))

    assert worker.stats.errors == 1


@pytest.mark.asyncio
async def test_run_consumes_channel_and_cleans_up(server, registered, subscriptions, transport):
    await subscriptions.subscribe(["chat"], await registered("c1"), OperationRequest(query="chat"), "op-1")
    redis = FakeRedis(
        [
            {"type": "subscribe", "data": 1},
            {"type": "message", "data": "not json"},
            {"type": "message", "data": json.dumps({"event": "chat", "payload": {"n": 1}})},
            {"type": "message", "data": json.dumps({"event": "chat", "payload": {"n": 2}})},
        ]
    )
    worker = EventWorker(server, redis, "fanout:events")

    await worker.run()

    assert [m["payload"]["data"] for m in transport.messages_for("c1")] == [{"n": 1}, {"n": 2}]
    stats = worker.get_stats()
    assert stats["received"] == 3
    assert stats["rejected"] == 1
    assert stats["dispatched"] == 2
    assert stats["started_at"] is not None
    assert redis._pubsub.subscribed == []
    assert redis._pubsub.closed is True
