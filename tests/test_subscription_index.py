"""Subscription index tests — dedup, removal semantics, one-shot lookup.

Learn: The index is exercised directly (no transport, no executor).
Lookups go through subscribers_by_event, the same path the dispatcher
uses, so "zero subscribers" below means zero deliveries.
"""

import pytest

from fanout.errors import StreamConsumedError
from fanout.schemas.connection import Connection, ConnectionData
from fanout.schemas.subscription import OperationRequest, SubscriptionEvent
from fanout.services.subscription_manager import SubscriptionIndex


def _conn(connection_id: str, tenant: str = "acme") -> Connection:
    return Connection(
        id=connection_id,
        data=ConnectionData(endpoint="local", context={"tenant": tenant}, is_initialized=True),
    )


def _op(query: str = "chat") -> OperationRequest:
    return OperationRequest(query=query)


async def _lookup(index: SubscriptionIndex, name: str) -> list:
    batches = [batch async for batch in index.subscribers_by_event(SubscriptionEvent(event=name))]
    assert len(batches) == 1
    return batches[0]


@pytest.mark.asyncio
async def test_duplicate_subscribe_is_noop(subscriptions):
    """Same connection + same event twice → exactly one entry."""
    c1 = _conn("c1")
    await subscriptions.subscribe(["chat"], c1, _op(), "op-1")
    await subscriptions.subscribe(["chat"], c1, _op(), "op-2")

    subscribers = await _lookup(subscriptions, "chat")
    assert [s.connection.id for s in subscribers] == ["c1"]
    assert subscribers[0].operation_id == "op-1"


@pytest.mark.asyncio
async def test_subscribe_keeps_insertion_order(subscriptions):
    for cid in ("c1", "c2", "c3"):
        await subscriptions.subscribe(["chat"], _conn(cid), _op(), f"op-{cid}")

    subscribers = await _lookup(subscriptions, "chat")
    assert [s.connection.id for s in subscribers] == ["c1", "c2", "c3"]
    assert all(s.event == "chat" for s in subscribers)


@pytest.mark.asyncio
async def test_subscribe_with_no_names(subscriptions):
    await subscriptions.subscribe([], _conn("c1"), _op(), "op-1")
    assert await subscriptions.subscriptions.keys() == []


@pytest.mark.asyncio
async def test_subscribe_many_names(subscriptions):
    c1 = _conn("c1")
    await subscriptions.subscribe(["chat", "news"], c1, _op(), "op-1")

    assert [s.connection.id for s in await _lookup(subscriptions, "chat")] == ["c1"]
    assert [s.connection.id for s in await _lookup(subscriptions, "news")] == ["c1"]


@pytest.mark.asyncio
async def test_subscriber_references_the_connection(subscriptions):
    c1 = _conn("c1")
    await subscriptions.subscribe(["chat"], c1, _op(), "op-1")
    subscribers = await _lookup(subscriptions, "chat")
    assert subscribers[0].connection is c1


@pytest.mark.asyncio
async def test_unsubscribe_removes_only_that_event(subscriptions):
    c1, c2 = _conn("c1"), _conn("c2")
    await subscriptions.subscribe(["chat", "news"], c1, _op(), "op-1")
    await subscriptions.subscribe(["chat"], c2, _op(), "op-2")

    chat = await _lookup(subscriptions, "chat")
    await subscriptions.unsubscribe(chat[0])

    assert [s.connection.id for s in await _lookup(subscriptions, "chat")] == ["c2"]
    assert [s.connection.id for s in await _lookup(subscriptions, "news")] == ["c1"]


@pytest.mark.asyncio
async def test_unsubscribe_operation_keeps_other_operations(subscriptions):
    """Only the (connection, operation) pair goes; same connection stays elsewhere."""
    c1, c2 = _conn("c1"), _conn("c2")
    await subscriptions.subscribe(["chat"], c1, _op("chat"), "op-chat")
    await subscriptions.subscribe(["news"], c1, _op("news"), "op-news")
    # Another connection reusing the same operation id
    await subscriptions.subscribe(["chat"], c2, _op("chat"), "op-chat")

    await subscriptions.unsubscribe_operation("c1", "op-chat")

    assert [s.connection.id for s in await _lookup(subscriptions, "chat")] == ["c2"]
    news = await _lookup(subscriptions, "news")
    assert [(s.connection.id, s.operation_id) for s in news] == [("c1", "op-news")]


@pytest.mark.asyncio
async def test_unsubscribe_all_by_connection_id(subscriptions):
    """After the call no event yields a subscriber with that connection id."""
    c1, c2 = _conn("c1"), _conn("c2")
    await subscriptions.subscribe(["chat", "news", "alerts"], c1, _op(), "op-1")
    await subscriptions.subscribe(["chat"], c2, _op(), "op-2")

    await subscriptions.unsubscribe_all_by_connection_id("c1")

    for name in ("chat", "news", "alerts"):
        subscribers = await _lookup(subscriptions, name)
        assert all(s.connection.id != "c1" for s in subscribers)
    assert [s.connection.id for s in await _lookup(subscriptions, "chat")] == ["c2"]


@pytest.mark.asyncio
async def test_empty_keys_are_dropped(subscriptions):
    await subscriptions.subscribe(["chat", "news"], _conn("c1"), _op(), "op-1")
    await subscriptions.unsubscribe_all_by_connection_id("c1")
    assert await subscriptions.subscriptions.keys() == []


@pytest.mark.asyncio
async def test_unsubscribe_unknown_connection_is_noop(subscriptions):
    await subscriptions.subscribe(["chat"], _conn("c1"), _op(), "op-1")
    await subscriptions.unsubscribe_all_by_connection_id("nobody")
    await subscriptions.unsubscribe_operation("nobody", "op-1")
    assert len(await _lookup(subscriptions, "chat")) == 1


@pytest.mark.asyncio
async def test_unknown_event_yields_one_empty_batch(subscriptions):
    assert await _lookup(subscriptions, "nothing-here") == []


@pytest.mark.asyncio
async def test_subscribers_by_event_is_one_shot(subscriptions):
    await subscriptions.subscribe(["chat"], _conn("c1"), _op(), "op-1")
    stream = subscriptions.subscribers_by_event(SubscriptionEvent(event="chat"))

    batches = [batch async for batch in stream]
    assert len(batches) == 1

    with pytest.raises(StreamConsumedError):
        async for _ in stream:
            pass


@pytest.mark.asyncio
async def test_subscribers_by_event_reads_at_iteration_time(subscriptions):
    """The list is read when iteration starts, then frozen."""
    stream = subscriptions.subscribers_by_event(SubscriptionEvent(event="chat"))
    await subscriptions.subscribe(["chat"], _conn("c1"), _op(), "op-1")

    batch = await stream.first()
    await subscriptions.subscribe(["chat"], _conn("c2"), _op(), "op-2")

    assert [s.connection.id for s in batch] == ["c1"]


@pytest.mark.asyncio
async def test_tenant_scoped_keys():
    """Connection-side and event-side name functions partition the index."""
    index = SubscriptionIndex(
        name_from_connection=lambda name, conn: f"{conn.data.context['tenant']}:{name}",
        name_from_event=lambda event: f"{event.payload['tenant']}:{event.event}",
    )
    await index.subscribe(["chat"], _conn("c1", tenant="acme"), _op(), "op-1")
    await index.subscribe(["chat"], _conn("c2", tenant="globex"), _op(), "op-2")

    acme = await index.subscribers_by_event(
        SubscriptionEvent(event="chat", payload={"tenant": "acme"})
    ).first()
    globex = await index.subscribers_by_event(
        SubscriptionEvent(event="chat", payload={"tenant": "globex"})
    ).first()

    assert [s.connection.id for s in acme] == ["c1"]
    assert [s.connection.id for s in globex] == ["c2"]
    assert acme[0].event == "acme:chat"
